"""Capsule API routes: ownership checks here, invariants in capsule_service."""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from geocapsule.config import settings
from geocapsule.database import get_db
from geocapsule.dependencies import get_current_user_id, get_now
from geocapsule.errors import CapsuleLockedError, PermissionDeniedError
from geocapsule.schemas.capsule import (
    CapsuleCreate,
    CapsuleRecord,
    OpenResult,
    StatusCheckRequest,
    UnlockDecision,
)
from geocapsule.services import capsule_service
from geocapsule.services.media_store import MediaStore, get_media_store
from geocapsule.services.unlock_service import evaluate_unlock

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=CapsuleRecord, status_code=status.HTTP_201_CREATED)
def create_capsule(
    payload: CapsuleCreate,
    user_id: str = Depends(get_current_user_id),
    now: datetime = Depends(get_now),
    media_store: MediaStore = Depends(get_media_store),
    db: Session = Depends(get_db),
):
    """Create a sealed capsule owned by the caller."""
    for url in payload.media_urls:
        if not media_store.is_owned_by(url, user_id):
            raise PermissionDeniedError(
                "Capsules may only reference media uploaded by their owner", {"media_url": url},
            )
    capsule_id = capsule_service.create_capsule(
        db=db,
        user_id=user_id,
        creator_name=payload.creator_name,
        fields=payload,
        now=now,
    )
    return capsule_service.get_capsule(db, capsule_id)


@router.get("/", response_model=list[CapsuleRecord])
def list_my_capsules(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """List the caller's capsules, newest first."""
    return capsule_service.list_user_capsules(db, user_id)


@router.get("/explore", response_model=list[CapsuleRecord])
def explore_opened_capsules(
    limit: int = Query(settings.EXPLORE_LIMIT, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Opened capsules from every user, most recently opened first."""
    if not settings.EXPLORE_ENABLED:
        raise HTTPException(status_code=404, detail="Explore is disabled")
    return capsule_service.list_opened_capsules(db, limit)


@router.get("/{capsule_id}", response_model=CapsuleRecord)
def get_capsule(capsule_id: str, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Fetch one of the caller's capsules."""
    return capsule_service.get_owned_capsule(db, capsule_id, user_id)


@router.post("/{capsule_id}/status", response_model=UnlockDecision)
def check_unlock_status(
    capsule_id: str,
    payload: Optional[StatusCheckRequest] = None,
    user_id: str = Depends(get_current_user_id),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    """Report whether the capsule can be opened from the caller's position."""
    capsule = capsule_service.get_owned_capsule(db, capsule_id, user_id)
    position = payload.position if payload else None
    return evaluate_unlock(capsule, now=now, position=position)


@router.post("/{capsule_id}/open", response_model=OpenResult)
def open_capsule(
    capsule_id: str,
    payload: Optional[StatusCheckRequest] = None,
    expect_sealed: bool = Query(False, description="Fail with 409 if the capsule is already open"),
    user_id: str = Depends(get_current_user_id),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    """Open the capsule once its unlock condition holds. Repeat calls are harmless."""
    capsule = capsule_service.get_owned_capsule(db, capsule_id, user_id)
    position = payload.position if payload else None
    decision = evaluate_unlock(capsule, now=now, position=position)
    if not decision.can_open:
        raise CapsuleLockedError(decision.message, {"reason": decision.reason.value})

    transitioned = capsule_service.open_capsule(
        db, capsule_id, now=now, require_transition=expect_sealed,
    )
    return OpenResult(transitioned=transitioned, capsule=capsule_service.get_capsule(db, capsule_id))


@router.delete("/{capsule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_capsule(
    capsule_id: str,
    user_id: str = Depends(get_current_user_id),
    media_store: MediaStore = Depends(get_media_store),
    db: Session = Depends(get_db),
):
    """Delete the capsule, then release media no other capsule of the owner still uses."""
    capsule_service.get_owned_capsule(db, capsule_id, user_id)
    deleted = capsule_service.delete_capsule(db, capsule_id)
    for url in deleted.media_urls:
        if not media_store.is_owned_by(url, deleted.user_id):
            logger.warning("Not releasing media %s, it was not uploaded by %s", url, deleted.user_id)
            continue
        if capsule_service.media_in_use(db, deleted.user_id, url):
            logger.info("Keeping media %s, still referenced by another capsule", url)
            continue
        try:
            media_store.delete(url)
        except OSError:
            logger.warning("Could not delete media %s for capsule %s", url, capsule_id, exc_info=True)
