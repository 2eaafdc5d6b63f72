"""Capsule ORM model.

Only ``status`` and ``opened_at`` are ever updated after insert, and only by
``capsule_service.open_capsule``.
"""
import uuid
import enum
from sqlalchemy import Column, Integer, String, Text, Float, DateTime, JSON, Index, CheckConstraint, Enum as SAEnum
from geocapsule.database import Base


class UnlockMethod(str, enum.Enum):
    immediate = "immediate"
    time = "time"
    location = "location"


class CapsuleStatus(str, enum.Enum):
    sealed = "sealed"
    opened = "opened"


class Capsule(Base):
    __tablename__ = "capsules"
    __table_args__ = (
        Index("ix_capsules_user_created", "user_id", "created_at"),
        CheckConstraint("(unlock_method = 'time') = (unlock_time IS NOT NULL)", name="ck_capsules_unlock_time"),
        CheckConstraint("(status = 'opened') = (opened_at IS NOT NULL)", name="ck_capsules_opened_at"),
        {"sqlite_autoincrement": True},
    )

    # Surrogate key: monotonic insertion order, breaks created_at ties.
    seq = Column(Integer, primary_key=True, autoincrement=True)
    capsule_id = Column(String(36), nullable=False, unique=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(128), nullable=False)
    creator_name = Column(String(100), nullable=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    location_name = Column(String(255), nullable=True)
    unlock_method = Column(SAEnum(UnlockMethod), nullable=False, default=UnlockMethod.immediate)
    unlock_time = Column(DateTime(timezone=True), nullable=True)
    media_urls = Column(JSON, nullable=False, default=list)
    status = Column(SAEnum(CapsuleStatus), nullable=False, default=CapsuleStatus.sealed)
    created_at = Column(DateTime(timezone=True), nullable=False)
    opened_at = Column(DateTime(timezone=True), nullable=True)
