"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the capsules table.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

unlock_method = sa.Enum("immediate", "time", "location", name="unlockmethod")
capsule_status = sa.Enum("sealed", "opened", name="capsulestatus")


def upgrade() -> None:
    op.create_table(
        "capsules",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("capsule_id", sa.String(36), nullable=False, unique=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("creator_name", sa.String(100), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("location_name", sa.String(255), nullable=True),
        sa.Column("unlock_method", unlock_method, nullable=False, server_default="immediate"),
        sa.Column("unlock_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("media_urls", sa.JSON, nullable=False),
        sa.Column("status", capsule_status, nullable=False, server_default="sealed"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("(unlock_method = 'time') = (unlock_time IS NOT NULL)", name="ck_capsules_unlock_time"),
        sa.CheckConstraint("(status = 'opened') = (opened_at IS NOT NULL)", name="ck_capsules_opened_at"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_capsules_user_created", "capsules", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_capsules_user_created", table_name="capsules")
    op.drop_table("capsules")
    unlock_method.drop(op.get_bind(), checkfirst=True)
    capsule_status.drop(op.get_bind(), checkfirst=True)
