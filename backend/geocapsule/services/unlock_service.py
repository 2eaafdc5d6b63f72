"""Unlock eligibility: decides whether a capsule may be opened right now.

Pure with respect to its inputs: the caller supplies ``now`` and the optional
user position, and the store is never touched. Opening is a separate store
operation (``capsule_service.open_capsule``) that callers invoke only after a
positive decision.

Policy, first match wins:
1. already opened      -> openable
2. time capsule        -> openable once now >= unlock_time
3. location capsule    -> openable when the caller is within the proximity threshold
4. immediate capsule   -> openable
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from geocapsule.clock import as_utc
from geocapsule.config import settings
from geocapsule.models.capsule import CapsuleStatus, UnlockMethod
from geocapsule.schemas.capsule import CapsuleRecord, UnlockDecision, UnlockReason
from geocapsule.services.geo import GeoPoint, is_near

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR

MSG_ALREADY_OPENED = "This capsule has already been opened."
MSG_READY = "This capsule is ready to be opened!"
MSG_NO_UNLOCK_TIME = "This capsule has no unlock time set and cannot be opened."
MSG_POSITION_REQUIRED = "Please enable location services to open this capsule."
MSG_NEAR = "You are near the capsule location. You can open it now!"
MSG_TOO_FAR = "You need to be closer to the capsule location to open it."


def format_time_left(remaining: timedelta) -> str:
    """Floor a positive delta into "D days and H hours" or "H hours and M minutes"."""
    ms = remaining // timedelta(milliseconds=1)
    days = ms // MS_PER_DAY
    hours = (ms % MS_PER_DAY) // MS_PER_HOUR
    if days > 0:
        return f"{days} days and {hours} hours"
    minutes = (ms % MS_PER_HOUR) // MS_PER_MINUTE
    return f"{hours} hours and {minutes} minutes"


def evaluate_unlock(
    capsule: CapsuleRecord,
    now: datetime,
    position: Optional[GeoPoint] = None,
    threshold_meters: Optional[float] = None,
) -> UnlockDecision:
    """Return whether ``capsule`` can be opened at ``now`` from ``position``."""
    if capsule.status == CapsuleStatus.opened:
        return UnlockDecision(can_open=True, message=MSG_ALREADY_OPENED, reason=UnlockReason.already_opened)

    if capsule.unlock_method == UnlockMethod.time:
        return _evaluate_time(capsule, as_utc(now))

    if capsule.unlock_method == UnlockMethod.location:
        if position is None:
            return UnlockDecision(can_open=False, message=MSG_POSITION_REQUIRED, reason=UnlockReason.position_required)
        if threshold_meters is None:
            threshold_meters = settings.PROXIMITY_THRESHOLD_METERS
        if is_near(position, capsule.location, threshold_meters):
            return UnlockDecision(can_open=True, message=MSG_NEAR, reason=UnlockReason.within_range)
        return UnlockDecision(can_open=False, message=MSG_TOO_FAR, reason=UnlockReason.out_of_range)

    return UnlockDecision(can_open=True, message=MSG_READY, reason=UnlockReason.immediate)


def _evaluate_time(capsule: CapsuleRecord, now: datetime) -> UnlockDecision:
    if capsule.unlock_time is None:
        logger.warning("Time capsule %s has no unlock_time", capsule.capsule_id)
        return UnlockDecision(can_open=False, message=MSG_NO_UNLOCK_TIME, reason=UnlockReason.unlock_time_missing)

    if now >= capsule.unlock_time:
        return UnlockDecision(can_open=True, message=MSG_READY, reason=UnlockReason.time_reached)

    time_left = format_time_left(capsule.unlock_time - now)
    return UnlockDecision(
        can_open=False,
        message=f"This capsule will be unlockable in {time_left}.",
        reason=UnlockReason.time_pending,
    )
