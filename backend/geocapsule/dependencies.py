"""Request-scoped collaborators: caller identity and the clock.

Both are plain FastAPI dependencies so tests can override them.
"""
from datetime import datetime
from typing import Optional

from fastapi import Header, HTTPException, status

from geocapsule.clock import utc_now


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity supplied by the upstream auth layer, trusted as authenticated."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_now() -> datetime:
    return utc_now()
