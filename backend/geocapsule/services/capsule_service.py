"""Capsule store: persistence and the one-way sealed → opened transition.

Responsibilities:
- Validate new capsules (text, coordinates, unlock_time vs unlock_method)
- Deserialize rows into validated ``CapsuleRecord`` snapshots
- Open capsules with a conditional UPDATE so concurrent callers race safely
- Map persistence failures onto the ``geocapsule.errors`` taxonomy

Ownership is not checked by get/open/delete; callers use ``check_ownership``.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional, Union

import pydantic
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from geocapsule.clock import as_utc, utc_now
from geocapsule.config import settings
from geocapsule.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    TransientError,
    ValidationError,
)
from geocapsule.models.capsule import Capsule, CapsuleStatus, UnlockMethod
from geocapsule.schemas.capsule import CapsuleFields, CapsuleRecord

logger = logging.getLogger(__name__)


# SQLSTATE classes worth retrying: connection exception, transaction rollback,
# insufficient resources, operator intervention (includes statement timeout)
_TRANSIENT_SQLSTATE_CLASSES = ("08", "40", "53", "57")
# Drivers without SQLSTATE (sqlite, psycopg2 connect failures) only give a message
_TRANSIENT_MESSAGES = (
    "database is locked",
    "database is busy",
    "unable to open database",
    "connection",
    "could not connect",
    "timeout",
    "timed out",
)


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    if getattr(exc, "connection_invalidated", False):
        return True
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode:
        return pgcode[:2] in _TRANSIENT_SQLSTATE_CLASSES
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in _TRANSIENT_MESSAGES)


@contextmanager
def _persistence(db: Session, operation: str) -> Iterator[None]:
    """Turn driver timeouts and connection failures into ``TransientError``.

    Anything else the driver reports (missing table, bad SQL) is a
    ``StorageError``: retrying would not help.
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        db.rollback()
        if not _is_transient(exc):
            logger.error("Capsule store %s failed: %s", operation, exc)
            raise StorageError(
                f"Capsule store failed during {operation}", {"operation": operation},
            ) from exc
        logger.warning("Capsule store %s failed: %s", operation, exc)
        raise TransientError(
            f"Capsule store unavailable during {operation}, retry later",
            {"operation": operation},
        ) from exc


def _describe(exc: pydantic.ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'capsule'}: {err['msg']}"
        for err in exc.errors()
    )


def _coerce_fields(fields: Union[CapsuleFields, dict[str, Any]]) -> CapsuleFields:
    if isinstance(fields, CapsuleFields):
        return fields
    try:
        return CapsuleFields.model_validate(fields)
    except pydantic.ValidationError as exc:
        raise ValidationError(_describe(exc)) from exc


def _to_record(row: Capsule) -> CapsuleRecord:
    try:
        return CapsuleRecord.from_row(row)
    except pydantic.ValidationError as exc:
        logger.error("Stored capsule %s is malformed: %s", row.capsule_id, _describe(exc))
        raise StorageError(
            f"Stored capsule {row.capsule_id} is malformed", {"capsule_id": row.capsule_id},
        ) from exc


def _find_row(db: Session, capsule_id: str) -> Optional[Capsule]:
    return db.query(Capsule).filter(Capsule.capsule_id == capsule_id).first()


def create_capsule(
    db: Session,
    user_id: str,
    creator_name: Optional[str],
    fields: Union[CapsuleFields, dict[str, Any]],
    now: Optional[datetime] = None,
) -> str:
    """Validate and persist a new sealed capsule; return its id."""
    if not user_id:
        raise ValidationError("user_id is required")
    fields = _coerce_fields(fields)
    now = as_utc(now) if now is not None else utc_now()

    if fields.unlock_method == UnlockMethod.time and fields.unlock_time <= now:
        raise ValidationError(
            "unlock_time must be in the future",
            {"unlock_time": fields.unlock_time.isoformat(), "now": now.isoformat()},
        )
    if len(fields.media_urls) > settings.MAX_MEDIA_ATTACHMENTS:
        raise ValidationError(
            f"A capsule may reference at most {settings.MAX_MEDIA_ATTACHMENTS} media item(s)"
        )

    capsule_id = str(uuid.uuid4())
    capsule = Capsule(
        capsule_id=capsule_id,
        user_id=user_id,
        creator_name=creator_name,
        title=fields.title,
        content=fields.content,
        latitude=fields.location.latitude,
        longitude=fields.location.longitude,
        location_name=fields.location.name,
        unlock_method=fields.unlock_method,
        unlock_time=fields.unlock_time,
        media_urls=list(fields.media_urls),
        status=CapsuleStatus.sealed,
        created_at=now,
        opened_at=None,
    )
    with _persistence(db, "create"):
        db.add(capsule)
        db.commit()
    logger.info(
        "Created %s capsule %s for user %s",
        fields.unlock_method.value, capsule_id, user_id,
    )
    return capsule_id


def get_capsule(db: Session, capsule_id: str) -> CapsuleRecord:
    """Fetch one capsule by id, regardless of owner."""
    with _persistence(db, "get"):
        row = _find_row(db, capsule_id)
    if row is None:
        raise NotFoundError(capsule_id)
    return _to_record(row)


def list_user_capsules(db: Session, user_id: str) -> list[CapsuleRecord]:
    """All capsules owned by ``user_id``, newest first; ties keep insertion order."""
    with _persistence(db, "list"):
        rows = (
            db.query(Capsule)
            .filter(Capsule.user_id == user_id)
            .order_by(Capsule.created_at.desc(), Capsule.seq.asc())
            .all()
        )
    return [_to_record(row) for row in rows]


def list_opened_capsules(db: Session, limit: int) -> list[CapsuleRecord]:
    """Most recently opened capsules across all users."""
    with _persistence(db, "explore"):
        rows = (
            db.query(Capsule)
            .filter(Capsule.status == CapsuleStatus.opened)
            .order_by(Capsule.opened_at.desc(), Capsule.seq.desc())
            .limit(limit)
            .all()
        )
    return [_to_record(row) for row in rows]


def open_capsule(
    db: Session,
    capsule_id: str,
    now: Optional[datetime] = None,
    require_transition: bool = False,
) -> bool:
    """Transition a sealed capsule to opened.

    Returns True only for the call that performed the transition. The UPDATE
    is conditioned on ``status = 'sealed'`` so racing callers cannot both win
    and ``opened_at`` is written exactly once.
    """
    opened_at = as_utc(now) if now is not None else utc_now()
    with _persistence(db, "open"):
        updated = (
            db.query(Capsule)
            .filter(Capsule.capsule_id == capsule_id, Capsule.status == CapsuleStatus.sealed)
            .update(
                {Capsule.status: CapsuleStatus.opened, Capsule.opened_at: opened_at},
                synchronize_session=False,
            )
        )
        db.commit()
        exists = updated > 0 or _find_row(db, capsule_id) is not None

    if not exists:
        raise NotFoundError(capsule_id)
    if updated:
        logger.info("Opened capsule %s at %s", capsule_id, opened_at.isoformat())
        return True
    if require_transition:
        raise ConflictError(f"Capsule {capsule_id} has already been opened", {"capsule_id": capsule_id})
    return False


def delete_capsule(db: Session, capsule_id: str) -> CapsuleRecord:
    """Hard-delete a capsule and return the removed record.

    The store does not own media; the caller releases ``media_urls``.
    """
    with _persistence(db, "delete"):
        row = _find_row(db, capsule_id)
        if row is None:
            raise NotFoundError(capsule_id)
        record = _to_record(row)
        deleted = (
            db.query(Capsule)
            .filter(Capsule.capsule_id == capsule_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    if not deleted:
        # removed by a concurrent delete between the read and the DELETE
        raise NotFoundError(capsule_id)
    logger.info("Deleted capsule %s (%d media reference(s))", capsule_id, len(record.media_urls))
    return record


def media_in_use(db: Session, user_id: str, url: str) -> bool:
    """Whether any remaining capsule of ``user_id`` still references ``url``.

    Media can only be attached by its uploader, so only that user's
    capsules need to be scanned.
    """
    with _persistence(db, "media lookup"):
        rows = db.query(Capsule.media_urls).filter(Capsule.user_id == user_id).all()
    return any(url in (media_urls or []) for (media_urls,) in rows)


def check_ownership(capsule: CapsuleRecord, user_id: str) -> None:
    """Only the owner may read, open or delete a capsule through the API."""
    if capsule.user_id != user_id:
        raise PermissionDeniedError(
            "Only the owner may access this capsule",
            {"capsule_id": capsule.capsule_id},
        )


def get_owned_capsule(db: Session, capsule_id: str, user_id: str) -> CapsuleRecord:
    capsule = get_capsule(db, capsule_id)
    check_ownership(capsule, user_id)
    return capsule
