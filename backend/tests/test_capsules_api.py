"""Tests for the capsule HTTP routes.

Covers:
- Identity header required
- Create / get / list through the API, owner-only access
- Status checks for time and location capsules with an injected clock
- Open: locked → 403, eligible → transition, repeat → transitioned false, expect_sealed → 409
- Delete releases referenced media; unknown ids → 404
- Explore lists opened capsules only
- Error bodies carry a stable code
"""
import math
from datetime import timedelta
from tests.conftest import FIXED_NOW, OWNER, STRANGER, capsule_payload, create_test_capsule

from geocapsule.services import capsule_service
from geocapsule.services.geo import EARTH_RADIUS_METERS

HEADERS = {"X-User-Id": OWNER}


def _north_of_anchor(meters: float) -> dict:
    return {
        "latitude": 40.0 + math.degrees(meters / EARTH_RADIUS_METERS),
        "longitude": -74.0,
    }


class TestIdentity:
    """The X-User-Id header is the caller's identity."""

    def test_missing_header_is_401(self, client):
        resp = client.post("/api/capsules/", json=capsule_payload())
        assert resp.status_code == 401

    def test_blank_header_is_401(self, client):
        resp = client.get("/api/capsules/", headers={"X-User-Id": "  "})
        assert resp.status_code == 401


class TestCreateAndRead:
    """Create, fetch and list."""

    def test_create_returns_sealed_capsule(self, client):
        data = create_test_capsule(client, creator_name="Alice")
        assert data["user_id"] == OWNER
        assert data["creator_name"] == "Alice"
        assert data["status"] == "sealed"
        assert data["opened_at"] is None
        assert data["location"] == {"latitude": 40.0, "longitude": -74.0, "name": "Hoboken"}

    def test_create_validation_error_is_422(self, client):
        resp = client.post("/api/capsules/", json=capsule_payload(title=""), headers=HEADERS)
        assert resp.status_code == 422

    def test_past_unlock_time_is_422(self, client):
        past = (FIXED_NOW - timedelta(days=1)).isoformat()
        resp = client.post(
            "/api/capsules/",
            json=capsule_payload(unlock_method="time", unlock_time=past),
            headers=HEADERS,
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"

    def test_get_own_capsule(self, client):
        created = create_test_capsule(client)
        resp = client.get(f"/api/capsules/{created['capsule_id']}", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == created

    def test_get_someone_elses_capsule_is_403(self, client):
        created = create_test_capsule(client)
        resp = client.get(f"/api/capsules/{created['capsule_id']}", headers={"X-User-Id": STRANGER})
        assert resp.status_code == 403
        assert resp.json()["code"] == "permission_denied"

    def test_get_unknown_is_404(self, client):
        resp = client.get("/api/capsules/nope", headers=HEADERS)
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    def test_list_newest_first(self, client, clock):
        first = create_test_capsule(client, title="first")
        clock.now = FIXED_NOW + timedelta(minutes=5)
        second = create_test_capsule(client, title="second")
        create_test_capsule(client, user_id=STRANGER, title="not mine")

        resp = client.get("/api/capsules/", headers=HEADERS)
        assert resp.status_code == 200
        assert [c["capsule_id"] for c in resp.json()] == [second["capsule_id"], first["capsule_id"]]


class TestStatus:
    """POST /{id}/status runs the evaluator with the injected clock."""

    def test_time_capsule_locked_then_open(self, client, clock):
        unlock = FIXED_NOW + timedelta(days=2, hours=3)
        capsule = create_test_capsule(client, unlock_method="time", unlock_time=unlock.isoformat())
        url = f"/api/capsules/{capsule['capsule_id']}/status"

        resp = client.post(url, json={}, headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {
            "can_open": False,
            "message": "This capsule will be unlockable in 2 days and 3 hours.",
            "reason": "time_pending",
        }

        clock.now = unlock
        assert client.post(url, json={}, headers=HEADERS).json()["can_open"] is True

    def test_location_capsule_without_position(self, client):
        capsule = create_test_capsule(client, unlock_method="location")
        resp = client.post(f"/api/capsules/{capsule['capsule_id']}/status", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["reason"] == "position_required"

    def test_location_capsule_near_and_far(self, client):
        capsule = create_test_capsule(client, unlock_method="location")
        url = f"/api/capsules/{capsule['capsule_id']}/status"

        near = client.post(url, json={"position": _north_of_anchor(50)}, headers=HEADERS).json()
        far = client.post(url, json={"position": _north_of_anchor(500)}, headers=HEADERS).json()
        assert near["can_open"] is True
        assert far["can_open"] is False

    def test_invalid_position_is_422(self, client):
        capsule = create_test_capsule(client, unlock_method="location")
        resp = client.post(
            f"/api/capsules/{capsule['capsule_id']}/status",
            json={"position": {"latitude": 123, "longitude": 0}},
            headers=HEADERS,
        )
        assert resp.status_code == 422

    def test_status_is_owner_only(self, client):
        capsule = create_test_capsule(client)
        resp = client.post(
            f"/api/capsules/{capsule['capsule_id']}/status", json={}, headers={"X-User-Id": STRANGER},
        )
        assert resp.status_code == 403


class TestOpen:
    """POST /{id}/open: evaluate then transition."""

    def test_open_immediate(self, client):
        capsule = create_test_capsule(client)
        resp = client.post(f"/api/capsules/{capsule['capsule_id']}/open", headers=HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["transitioned"] is True
        assert data["capsule"]["status"] == "opened"
        assert data["capsule"]["opened_at"] is not None

    def test_open_locked_time_capsule_is_403(self, client):
        unlock = FIXED_NOW + timedelta(hours=1)
        capsule = create_test_capsule(client, unlock_method="time", unlock_time=unlock.isoformat())
        resp = client.post(f"/api/capsules/{capsule['capsule_id']}/open", headers=HEADERS)
        assert resp.status_code == 403
        assert resp.json()["code"] == "capsule_locked"
        assert "1 hours and 0 minutes" in resp.json()["detail"]
        assert resp.json()["context"] == {"reason": "time_pending"}

    def test_open_location_capsule_requires_nearby_position(self, client):
        capsule = create_test_capsule(client, unlock_method="location")
        url = f"/api/capsules/{capsule['capsule_id']}/open"

        far = client.post(url, json={"position": _north_of_anchor(500)}, headers=HEADERS)
        assert far.status_code == 403

        near = client.post(url, json={"position": _north_of_anchor(50)}, headers=HEADERS)
        assert near.status_code == 200
        assert near.json()["transitioned"] is True

    def test_repeat_open_is_idempotent(self, client, clock):
        capsule = create_test_capsule(client)
        url = f"/api/capsules/{capsule['capsule_id']}/open"
        first = client.post(url, headers=HEADERS).json()

        clock.now = FIXED_NOW + timedelta(days=3)
        second = client.post(url, headers=HEADERS)
        assert second.status_code == 200
        assert second.json()["transitioned"] is False
        assert second.json()["capsule"]["opened_at"] == first["capsule"]["opened_at"]

    def test_expect_sealed_conflict(self, client):
        capsule = create_test_capsule(client)
        url = f"/api/capsules/{capsule['capsule_id']}/open"
        client.post(url, headers=HEADERS)
        resp = client.post(f"{url}?expect_sealed=true", headers=HEADERS)
        assert resp.status_code == 409
        assert resp.json()["code"] == "already_opened"

    def test_opened_capsule_status_stays_open(self, client, clock):
        unlock = FIXED_NOW + timedelta(hours=1)
        capsule = create_test_capsule(client, unlock_method="time", unlock_time=unlock.isoformat())
        clock.now = unlock
        client.post(f"/api/capsules/{capsule['capsule_id']}/open", headers=HEADERS)

        clock.now = FIXED_NOW  # a skewed clock must not re-lock it
        resp = client.post(f"/api/capsules/{capsule['capsule_id']}/status", json={}, headers=HEADERS)
        assert resp.json()["can_open"] is True
        assert resp.json()["reason"] == "already_opened"

    def test_open_unknown_is_404(self, client):
        resp = client.post("/api/capsules/missing/open", headers=HEADERS)
        assert resp.status_code == 404


class TestDelete:
    """DELETE /{id} removes the record and its media."""

    def test_delete_releases_media(self, client, media_store):
        url = media_store.save(b"\x89PNG...", "photo.png", OWNER, "image/png")
        capsule = create_test_capsule(client, media_urls=[url])

        resp = client.delete(f"/api/capsules/{capsule['capsule_id']}", headers=HEADERS)
        assert resp.status_code == 204
        assert not media_store.path_for(url).exists()
        assert client.get(f"/api/capsules/{capsule['capsule_id']}", headers=HEADERS).status_code == 404

    def test_delete_with_missing_media_still_succeeds(self, client, media_store):
        url = media_store.save(b"\x89PNG...", "photo.png", OWNER, "image/png")
        capsule = create_test_capsule(client, media_urls=[url])
        media_store.delete(url)

        resp = client.delete(f"/api/capsules/{capsule['capsule_id']}", headers=HEADERS)
        assert resp.status_code == 204

    def test_media_shared_by_two_capsules_survives_first_delete(self, client, media_store):
        url = media_store.save(b"\x89PNG...", "photo.png", OWNER, "image/png")
        first = create_test_capsule(client, media_urls=[url])
        second = create_test_capsule(client, media_urls=[url])

        client.delete(f"/api/capsules/{first['capsule_id']}", headers=HEADERS)
        assert media_store.path_for(url).exists()

        client.delete(f"/api/capsules/{second['capsule_id']}", headers=HEADERS)
        assert not media_store.path_for(url).exists()

    def test_delete_unknown_is_404(self, client):
        resp = client.delete("/api/capsules/never-created", headers=HEADERS)
        assert resp.status_code == 404

    def test_delete_by_stranger_is_403(self, client):
        capsule = create_test_capsule(client)
        resp = client.delete(f"/api/capsules/{capsule['capsule_id']}", headers={"X-User-Id": STRANGER})
        assert resp.status_code == 403
        assert client.get(f"/api/capsules/{capsule['capsule_id']}", headers=HEADERS).status_code == 200


class TestMediaOwnership:
    """A capsule may only reference media its owner uploaded."""

    def test_cannot_attach_someone_elses_media(self, client, media_store):
        upload = client.post(
            "/api/media/", files={"file": ("a.png", b"\x89PNG", "image/png")}, headers=HEADERS,
        )
        url = upload.json()["url"]
        create_test_capsule(client, media_urls=[url])

        resp = client.post(
            "/api/capsules/",
            json=capsule_payload(media_urls=[url]),
            headers={"X-User-Id": STRANGER},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "permission_denied"
        assert resp.json()["context"] == {"media_url": url}
        assert media_store.path_for(url).exists()
        assert client.get("/api/capsules/", headers={"X-User-Id": STRANGER}).json() == []

    def test_cannot_attach_external_urls(self, client):
        resp = client.post(
            "/api/capsules/",
            json=capsule_payload(media_urls=["https://elsewhere.example.com/cat.png"]),
            headers=HEADERS,
        )
        assert resp.status_code == 403

    def test_stored_foreign_reference_is_not_released(self, client, db, media_store):
        url = media_store.save(b"\x89PNG", "a.png", OWNER, "image/png")
        capsule_id = capsule_service.create_capsule(
            db, STRANGER, "Mallory", capsule_payload(media_urls=[url]), now=FIXED_NOW,
        )

        resp = client.delete(f"/api/capsules/{capsule_id}", headers={"X-User-Id": STRANGER})
        assert resp.status_code == 204
        assert media_store.path_for(url).exists()


class TestExplore:
    """GET /explore lists opened capsules from everyone."""

    def test_only_opened_capsules(self, client):
        opened = create_test_capsule(client, title="opened")
        create_test_capsule(client, title="sealed")
        client.post(f"/api/capsules/{opened['capsule_id']}/open", headers=HEADERS)

        resp = client.get("/api/capsules/explore", headers={"X-User-Id": STRANGER})
        assert resp.status_code == 200
        assert [c["title"] for c in resp.json()] == ["opened"]

    def test_disabled(self, client, monkeypatch):
        from geocapsule.config import settings
        monkeypatch.setattr(settings, "EXPLORE_ENABLED", False)
        resp = client.get("/api/capsules/explore", headers=HEADERS)
        assert resp.status_code == 404


class TestHealth:

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}
