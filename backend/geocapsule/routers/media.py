"""Media routes: upload one attachment, and serve stored attachments by URL."""
import logging
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse

from geocapsule.config import settings
from geocapsule.dependencies import get_current_user_id
from geocapsule.errors import ValidationError
from geocapsule.schemas.capsule import MediaOut
from geocapsule.services.media_store import MediaStore, get_media_store

logger = logging.getLogger(__name__)
router = APIRouter()
files_router = APIRouter()

ALLOWED_MEDIA_TYPES = ("image", "video", "audio")


@router.post("/", response_model=MediaOut, status_code=status.HTTP_201_CREATED)
def upload_media(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    media_store: MediaStore = Depends(get_media_store),
):
    """Upload an image, video or audio file for a capsule that is about to be created."""
    media_type = (file.content_type or "").split("/")[0]
    if media_type not in ALLOWED_MEDIA_TYPES:
        raise ValidationError(f"Unsupported media type: {file.content_type}")

    limit = settings.MAX_MEDIA_BYTES
    payload = file.file.read(limit + 1)
    if not payload:
        raise ValidationError("Uploaded file is empty")
    if len(payload) > limit:
        raise ValidationError(
            f"Uploaded file exceeds {limit} bytes", {"max_bytes": limit},
        )

    url = media_store.save(payload, file.filename or "", user_id, file.content_type)
    logger.info("User %s uploaded %s", user_id, url)
    return MediaOut(url=url)


@files_router.get("/{key:path}")
def download_media(key: str, media_store: MediaStore = Depends(get_media_store)):
    """Serve a stored attachment at the URL ``upload_media`` returned."""
    path = media_store.path_for(f"{settings.MEDIA_BASE_URL.rstrip('/')}/{key}")
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Media not found")
    return FileResponse(path)
