"""Database engine, session factory and the request-scoped session dependency."""
from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from geocapsule.config import settings

Base = declarative_base()


def engine_options(database_url: str, timeout_seconds: float) -> dict[str, Any]:
    """Driver options that bound every persistence call by ``timeout_seconds``."""
    if database_url.startswith("sqlite"):
        # busy timeout: how long a writer waits on a locked database file
        return {
            "connect_args": {"check_same_thread": False, "timeout": timeout_seconds},
        }
    return {
        "connect_args": {
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        },
        "pool_timeout": timeout_seconds,
        "pool_pre_ping": True,
    }


engine = create_engine(
    settings.DATABASE_URL,
    **engine_options(settings.DATABASE_URL, settings.DB_TIMEOUT_SECONDS),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a session per request and always close it."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
