"""FastAPI application entry point."""
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from geocapsule.config import settings
from geocapsule.database import Base, engine
from geocapsule.errors import CapsuleError

from geocapsule.routers import capsules, media

# Import models so Base.metadata knows about them
from geocapsule.models.capsule import Capsule  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="GeoCapsule",
    description="Location- and time-gated memory capsules",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(capsules.router, prefix="/api/capsules", tags=["Capsules"])
app.include_router(media.router, prefix="/api/media", tags=["Media"])
# Local media is served by the app itself unless MEDIA_BASE_URL points elsewhere
if settings.MEDIA_BASE_URL.rstrip("/").startswith("/"):
    app.include_router(media.files_router, prefix=settings.MEDIA_BASE_URL.rstrip("/"), tags=["Media"])


@app.exception_handler(CapsuleError)
def handle_capsule_error(request: Request, exc: CapsuleError):
    """Translate service errors into JSON responses with the error's status."""
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
