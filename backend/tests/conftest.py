"""Pytest fixtures: file-backed SQLite database per test for fast, isolated tests."""
from datetime import datetime, timezone
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from geocapsule.database import Base, get_db
from geocapsule.dependencies import get_now
from geocapsule.main import app
from geocapsule.services.media_store import LocalMediaStore, get_media_store

# Import models so they register with Base.metadata
from geocapsule.models.capsule import Capsule  # noqa: F401

FIXED_NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
OWNER = "user-owner"
STRANGER = "user-stranger"


class FakeClock:
    """Settable clock injected in place of ``get_now``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session, closed after the test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def clock():
    return FakeClock(FIXED_NOW)


@pytest.fixture(scope="function")
def media_store(tmp_path):
    return LocalMediaStore(str(tmp_path / "media"), "/media")


@pytest.fixture(scope="function")
def client(session_factory, clock, media_store):
    """TestClient with the database, clock and media store overridden."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_now] = clock
    app.dependency_overrides[get_media_store] = lambda: media_store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def capsule_payload(**overrides) -> dict:
    """A valid immediate-unlock capsule body, with overrides applied."""
    payload = {
        "title": "First apartment",
        "content": "We painted the kitchen yellow.",
        "location": {"latitude": 40.0, "longitude": -74.0, "name": "Hoboken"},
        "unlock_method": "immediate",
        "media_urls": [],
    }
    payload.update(overrides)
    return payload


def create_test_capsule(client: TestClient, user_id: str = OWNER, **overrides) -> dict:
    """Helper: POST /api/capsules and return response JSON."""
    resp = client.post("/api/capsules/", json=capsule_payload(**overrides), headers={"X-User-Id": user_id})
    assert resp.status_code == 201, resp.text
    return resp.json()
