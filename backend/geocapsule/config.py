"""Application configuration via environment variables."""
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings loaded from .env or environment."""

    DATABASE_URL: str = "sqlite:///./geocapsule.db"
    DB_TIMEOUT_SECONDS: float = Field(5.0, gt=0)
    # Single system-wide unlock radius for location capsules
    PROXIMITY_THRESHOLD_METERS: float = Field(100.0, ge=0)
    MAX_MEDIA_ATTACHMENTS: int = Field(1, ge=0)
    MAX_MEDIA_BYTES: int = Field(10 * 1024 * 1024, gt=0)
    MEDIA_ROOT: str = "./media"
    MEDIA_BASE_URL: str = "/media"
    EXPLORE_ENABLED: bool = True
    EXPLORE_LIMIT: int = 20
    CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
