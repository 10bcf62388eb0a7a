"""
test_api.py — HTTP surface tests (in-memory backends).

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from backend.app.main import app


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _event_body(**overrides):
    body = {
        "event_type": "incident_reported",
        "related_type": "incident",
        "related_id": "inc-1",
        "triggered_by": "reporter",
        "title": "Incident reported nearby",
        "body": "Reported near Zoo Park. Tap to view details",
        "priority": "important",
        "target_user_ids": ["a", "b"],
    }
    body.update(overrides)
    return body


class TestRoot:
    def test_root(self, client):
        data = client.get("/").json()
        assert "reminders" in data["modules"]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        names = {c["name"] for c in response.json()["components"]}
        assert names == {"postgresql", "redis", "push_gateway"}

    def test_request_id_echoed(self, client):
        response = client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestDispatchEndpoint:
    def test_dispatch_then_duplicate(self, client):
        first = client.post("/api/v1/notifications/dispatch", json=_event_body()).json()
        second = client.post("/api/v1/notifications/dispatch", json=_event_body()).json()
        assert first["sent"] == 2
        assert first["outcome"] == "dispatched"
        assert second["sent"] == 0
        assert second["deduplicated"] == 2
        assert second["outcome"] == "all_deduplicated"

    def test_geo_dispatch_uses_stored_locations(self, client):
        client.put("/api/v1/notifications/locations/n1", json={"latitude": -22.56, "longitude": 17.08})
        client.put(
            "/api/v1/notifications/locations/g1",
            json={"latitude": -22.56, "longitude": 17.081, "ghost_mode": True},
        )
        body = _event_body(
            related_id="inc-geo",
            target_user_ids=[],
            location={"latitude": -22.5601, "longitude": 17.0801},
            radius_km=5,
        )
        report = client.post("/api/v1/notifications/dispatch", json=body).json()
        assert report["sent"] == 1

    def test_no_recipients(self, client):
        report = client.post(
            "/api/v1/notifications/dispatch",
            json=_event_body(related_id="inc-none", target_user_ids=[]),
        ).json()
        assert report["outcome"] == "no_recipients"

    def test_invalid_priority_rejected(self, client):
        response = client.post(
            "/api/v1/notifications/dispatch", json=_event_body(priority="loud"),
        )
        assert response.status_code == 422


class TestScoreEndpoint:
    def test_scores_sorted_with_priority(self, client):
        now = datetime(2026, 3, 10, 22, 0, tzinfo=timezone.utc)
        body = {
            "now": now.isoformat(),
            "observer": {"latitude": -22.5609, "longitude": 17.0832},
            "incidents": [
                {
                    "id": "sus", "type": "suspicious",
                    "latitude": -22.5609, "longitude": 17.0832,
                    "created_at": (now - timedelta(minutes=3)).isoformat(),
                },
                {
                    "id": "pan", "type": "panic",
                    "latitude": -22.5609, "longitude": 17.0832,
                    "created_at": (now - timedelta(minutes=2)).isoformat(),
                },
                {"id": "nowhere", "type": "panic"},
            ],
        }
        data = client.post("/api/v1/notifications/score", json=body).json()
        assert data["is_night"] is True
        assert data["calm"] is False
        assert data["count"] == 2
        assert data["priority_incident_id"] == "pan"
        assert data["incidents"][0]["tier"] == "critical"
        assert data["incidents"][0]["glow"]["radius"] == 22


class TestDeepLinkEndpoint:
    def test_panic_link(self, client):
        data = client.post("/api/v1/notifications/deep-link", json={
            "relatedType": "panic", "relatedId": "p-1", "priority": "critical",
            "lat": 1.5, "lng": 2.5,
        }).json()
        assert data["url"] == "/map?panic=p-1&lat=1.5&lng=2.5&zoom=16"
        assert data["tag"] == "panic_p-1"
        assert data["displayed"] is True
        assert data["tray_options"]["requireInteraction"] is True

    def test_movement_not_displayed(self, client):
        data = client.post("/api/v1/notifications/deep-link", json={
            "relatedType": "panic", "relatedId": "p-1", "eventType": "panic_movement",
        }).json()
        assert data["displayed"] is False

    def test_malformed_payload(self, client):
        response = client.post("/api/v1/notifications/deep-link", json={"relatedType": "panic"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "MALFORMED_INPUT"


class TestReminderEndpoints:
    def test_reminder_flow(self, client):
        started = (datetime.now(timezone.utc) - timedelta(minutes=40)).isoformat()
        client.put(
            "/api/v1/reminders/u-1/sessions",
            json={"kind": "panic", "session_id": "p-1", "started_at": started},
        )

        data = client.post("/api/v1/reminders/u-1/start").json()
        assert data["running"] is True
        assert data["reminder"]["id"] == "panic-p-1"

        dismissed = client.post("/api/v1/reminders/u-1/dismiss").json()
        assert dismissed["dismissed"] == "panic-p-1"
        assert client.get("/api/v1/reminders/u-1").json()["reminder"] is None

        closed = client.delete("/api/v1/reminders/u-1/sessions/panic").json()
        assert closed["closed"] == "p-1"
        assert client.post("/api/v1/reminders/u-1/stop").json()["stopped"] is True

    def test_naive_started_at(self, client):
        started = (datetime.now(timezone.utc) - timedelta(minutes=40)).replace(tzinfo=None)
        client.put(
            "/api/v1/reminders/u-2/sessions",
            json={"kind": "panic", "session_id": "p-7", "started_at": started.isoformat()},
        )
        data = client.post("/api/v1/reminders/u-2/start").json()
        assert data["reminder"]["id"] == "panic-p-7"
        client.post("/api/v1/reminders/u-2/stop")

    def test_unknown_user(self, client):
        response = client.get("/api/v1/reminders/nobody")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
        assert client.post("/api/v1/reminders/nobody/stop").status_code == 404


class TestTriggerEndpoints:
    def test_panic_started_reaches_ghosts_and_uses_standard_copy(self, client):
        client.put("/api/v1/notifications/locations/n1", json={"latitude": -22.56, "longitude": 17.08})
        client.put(
            "/api/v1/notifications/locations/g1",
            json={"latitude": -22.56, "longitude": 17.081, "ghost_mode": True},
        )
        report = client.post("/api/v1/triggers/panic/p-9/started", json={
            "triggered_by": "victim",
            "location": {"latitude": -22.5601, "longitude": 17.0801, "place_name": "Zoo Park"},
        }).json()
        assert report["event_type"] == "panic_started"
        assert report["sent"] == 2

        records = client.app.state.pipeline.notification_store.records
        assert {r.user_id for r in records} == {"n1", "g1"}
        assert records[0].title == "Panic alert nearby"
        assert records[0].body == "Last seen near Zoo Park. Tap to view on map"
        assert records[0].priority.value == "high"

    def test_incident_reported_skips_ghosts(self, client):
        client.put("/api/v1/notifications/locations/n1", json={"latitude": -22.56, "longitude": 17.08})
        client.put(
            "/api/v1/notifications/locations/g1",
            json={"latitude": -22.56, "longitude": 17.081, "ghost_mode": True},
        )
        report = client.post("/api/v1/triggers/incidents/inc-9/reported", json={
            "triggered_by": "reporter",
            "location": {"latitude": -22.5601, "longitude": 17.0801},
        }).json()
        assert report["sent"] == 1

    def test_movement_is_not_persisted(self, client):
        client.put("/api/v1/notifications/locations/n1", json={"latitude": -22.56, "longitude": 17.08})
        report = client.post("/api/v1/triggers/panic/p-9/movement", json={
            "triggered_by": "victim",
            "location": {"latitude": -22.5601, "longitude": 17.0801},
        }).json()
        assert report["event_type"] == "panic_movement"
        assert report["sent"] == 1
        assert client.app.state.pipeline.notification_store.records == []

    def test_resolved_status_uses_calm_copy(self, client):
        report = client.post("/api/v1/triggers/incidents/inc-9/status", json={
            "triggered_by": "officer", "status": "resolved", "target_user_ids": ["a", "officer"],
        }).json()
        assert report["sent"] == 1
        (record,) = client.app.state.pipeline.notification_store.records
        assert record.title == "Incident resolved"
        assert record.priority.value == "low"

    def test_targeted_triggers(self, client):
        bodies = {
            "/api/v1/triggers/panic/p-9/ended": {},
            "/api/v1/triggers/amber/a-1/alert": {},
            "/api/v1/triggers/amber/a-1/closed": {},
            "/api/v1/triggers/look-after-me/s-1/started": {"user_name": "Maria"},
            "/api/v1/triggers/look-after-me/s-1/ended": {"user_name": "Maria"},
            "/api/v1/triggers/comments/t-1": {},
        }
        for path, extra in bodies.items():
            body = {"triggered_by": "owner", "target_user_ids": ["w1", "w2"], **extra}
            report = client.post(path, json=body).json()
            assert report["sent"] == 2, path

    def test_trigger_requires_location(self, client):
        response = client.post("/api/v1/triggers/panic/p-9/started", json={"triggered_by": "victim"})
        assert response.status_code == 422
