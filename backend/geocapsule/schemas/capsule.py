"""Pydantic schemas for Capsules.

``CapsuleRecord`` is the validated, immutable snapshot handed out by the
store; ORM rows never leave the service layer.
"""
from __future__ import annotations
import enum
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from geocapsule.clock import as_utc
from geocapsule.models.capsule import CapsuleStatus, UnlockMethod


class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    name: Optional[str] = None

    model_config = {"frozen": True}


class Position(BaseModel):
    """The caller's current position, as reported by the client device."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    model_config = {"frozen": True}


class CapsuleFields(BaseModel):
    title: str
    content: str
    location: Location
    unlock_method: UnlockMethod = UnlockMethod.immediate
    unlock_time: Optional[datetime] = None
    media_urls: list[str] = []

    @field_validator("title", "content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("unlock_time")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @model_validator(mode="after")
    def _unlock_time_matches_method(self) -> CapsuleFields:
        if self.unlock_method == UnlockMethod.time and self.unlock_time is None:
            raise ValueError("unlock_time is required when unlock_method is 'time'")
        if self.unlock_method != UnlockMethod.time and self.unlock_time is not None:
            raise ValueError("unlock_time is only allowed when unlock_method is 'time'")
        return self


class CapsuleCreate(CapsuleFields):
    creator_name: Optional[str] = None


class CapsuleRecord(BaseModel):
    capsule_id: str
    user_id: str
    creator_name: Optional[str] = None
    title: str
    content: str
    location: Location
    unlock_method: UnlockMethod
    unlock_time: Optional[datetime] = None
    media_urls: list[str] = []
    status: CapsuleStatus
    created_at: datetime
    opened_at: Optional[datetime] = None

    model_config = {"frozen": True}

    @field_validator("unlock_time", "created_at", "opened_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @model_validator(mode="after")
    def _check_invariants(self) -> CapsuleRecord:
        if (self.opened_at is not None) != (self.status == CapsuleStatus.opened):
            raise ValueError("opened_at must be set iff status is 'opened'")
        if (self.unlock_time is not None) != (self.unlock_method == UnlockMethod.time):
            raise ValueError("unlock_time must be set iff unlock_method is 'time'")
        return self

    @classmethod
    def from_row(cls, row: Any) -> CapsuleRecord:
        """Validate an ORM row into a record."""
        return cls.model_validate({
            "capsule_id": row.capsule_id,
            "user_id": row.user_id,
            "creator_name": row.creator_name,
            "title": row.title,
            "content": row.content,
            "location": {
                "latitude": row.latitude,
                "longitude": row.longitude,
                "name": row.location_name,
            },
            "unlock_method": row.unlock_method,
            "unlock_time": row.unlock_time,
            "media_urls": list(row.media_urls or []),
            "status": row.status,
            "created_at": row.created_at,
            "opened_at": row.opened_at,
        })


class UnlockReason(str, enum.Enum):
    already_opened = "already_opened"
    time_reached = "time_reached"
    time_pending = "time_pending"
    unlock_time_missing = "unlock_time_missing"
    position_required = "position_required"
    within_range = "within_range"
    out_of_range = "out_of_range"
    immediate = "immediate"


class UnlockDecision(BaseModel):
    can_open: bool
    message: str
    reason: UnlockReason

    model_config = {"frozen": True}


class StatusCheckRequest(BaseModel):
    position: Optional[Position] = None


class OpenResult(BaseModel):
    transitioned: bool
    capsule: CapsuleRecord


class MediaOut(BaseModel):
    url: str
