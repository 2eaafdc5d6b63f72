"""Media collaborator: stores capsule attachments and hands back opaque URLs.

The capsule store only keeps the returned URLs; deleting the referenced
objects is the caller's job when a capsule is removed. Objects are filed
under their uploader so a capsule can only reference media its owner
uploaded.
"""
import hashlib
import logging
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol

from geocapsule.config import settings

logger = logging.getLogger(__name__)

# Leading path component of uploads, mirrors the storage bucket layout
MEDIA_PREFIX = "capsule-media"


class MediaStore(Protocol):
    def save(self, payload: bytes, filename: str, owner_id: str, content_type: Optional[str] = None) -> str: ...

    def delete(self, url: str) -> bool: ...

    def is_owned_by(self, url: str, owner_id: str) -> bool: ...

    def path_for(self, url: str) -> Optional[Path]: ...


def owner_key(owner_id: str) -> str:
    """Filesystem-safe directory name for an uploader."""
    return hashlib.sha256(owner_id.encode("utf-8")).hexdigest()[:32]


class LocalMediaStore:
    """Writes uploads under ``root`` and serves them from ``base_url``."""

    def __init__(self, root: str, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def save(self, payload: bytes, filename: str, owner_id: str, content_type: Optional[str] = None) -> str:
        """Persist ``payload`` under a fresh random name in the owner's folder; return its URL."""
        suffix = PurePosixPath(filename or "").suffix.lower()
        key = f"{owner_key(owner_id)}/{uuid.uuid4()}{suffix}"
        target = self.root / MEDIA_PREFIX / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)
        url = f"{self.base_url}/{MEDIA_PREFIX}/{key}"
        logger.info("Stored %d bytes (%s) at %s", len(payload), content_type or "unknown type", url)
        return url

    def delete(self, url: str) -> bool:
        """Remove the object behind ``url``. Returns False when it was already gone."""
        path = self.path_for(url)
        if path is None:
            logger.warning("Refusing to delete media outside %s: %s", self.base_url, url)
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Media %s was already removed", url)
            return False
        logger.info("Deleted media %s", url)
        return True

    def is_owned_by(self, url: str, owner_id: str) -> bool:
        parts = self._parts(url)
        return parts is not None and parts[0] == owner_key(owner_id)

    def path_for(self, url: str) -> Optional[Path]:
        """Local file backing ``url``, or None when the URL is not one of ours."""
        parts = self._parts(url)
        if parts is None:
            return None
        return self.root / MEDIA_PREFIX / parts[0] / parts[1]

    def _parts(self, url: str) -> Optional[tuple[str, str]]:
        prefix = f"{self.base_url}/{MEDIA_PREFIX}/"
        if not url.startswith(prefix):
            return None
        parts = url[len(prefix):].split("/")
        # exactly <owner>/<name>; anything else could escape the root
        if len(parts) != 2:
            return None
        for part in parts:
            if not part or "\\" in part or part in (".", ".."):
                return None
        return parts[0], parts[1]


def get_media_store() -> MediaStore:
    """FastAPI dependency returning the configured media store."""
    return LocalMediaStore(settings.MEDIA_ROOT, settings.MEDIA_BASE_URL)
