"""
HTTP API tests — FastAPI TestClient against an in-memory container.

The app lifespan starts the dispatcher workers, so notifications without a
send time are delivered by the console channel while the test runs.
"""
import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from core.container import NotifierContainer

from tests.fakes import BrokenCache


@pytest.fixture
def container(settings):
    return NotifierContainer.from_settings(settings)


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as c:
        yield c


def _future(minutes=10) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat()


def _wait_for_status(client, notification_id, expected, timeout=5.0) -> str:
    deadline = time.monotonic() + timeout
    status = None
    while time.monotonic() < deadline:
        status = client.get(f"/api/v1/notify/{notification_id}").json().get("status")
        if status == expected:
            break
        time.sleep(0.05)
    return status


class TestNotifyEndpoints:
    def test_create_returns_id(self, client):
        resp = client.post("/api/v1/notify", json={"message": "hi", "time": _future(), "chat_id": 42})
        assert resp.status_code == 200
        assert resp.json()["id"]

    def test_status_of_scheduled_notification(self, client):
        nid = client.post("/api/v1/notify", json={"message": "hi", "time": _future(), "chat_id": 42}).json()["id"]
        resp = client.get(f"/api/v1/notify/{nid}")
        assert resp.status_code == 200
        assert resp.json() == {"status": "created"}

    def test_immediate_notification_is_delivered(self, client, container):
        nid = client.post("/api/v1/notify", json={"message": "hi", "chat_id": 42}).json()["id"]
        assert _wait_for_status(client, nid, "sent") == "sent"
        assert container.channel.sent == [(42, "hi")]

    def test_missing_message_is_bad_request(self, client):
        resp = client.post("/api/v1/notify", json={"chat_id": 42})
        assert resp.status_code == 400
        assert "message" in resp.json()["error"]

    def test_missing_chat_id_is_bad_request(self, client):
        resp = client.post("/api/v1/notify", json={"message": "hi"})
        assert resp.status_code == 400

    def test_malformed_time_is_bad_request(self, client, container):
        resp = client.post("/api/v1/notify", json={"message": "hi", "time": "tomorrow", "chat_id": 42})
        assert resp.status_code == 400
        assert client.get("/api/v1/notifications").json() == []

    def test_wrong_type_is_bad_request(self, client):
        resp = client.post("/api/v1/notify", json={"message": "hi", "chat_id": "forty-two"})
        assert resp.status_code == 400

    def test_unknown_id_is_not_found(self, client):
        resp = client.get("/api/v1/notify/does-not-exist")
        assert resp.status_code == 404
        assert "does-not-exist" in resp.json()["error"]

    def test_delete(self, client):
        nid = client.post("/api/v1/notify", json={"message": "hi", "time": _future(), "chat_id": 42}).json()["id"]

        resp = client.delete(f"/api/v1/notify/{nid}")

        assert resp.status_code == 200
        assert resp.json() == {"status": f"notify {nid} is deleted"}
        assert client.get(f"/api/v1/notify/{nid}").json() == {"status": "cancelled"}

    def test_delete_unknown_id(self, client):
        assert client.delete("/api/v1/notify/nope").status_code == 404

    def test_list_notifications(self, client):
        first = client.post("/api/v1/notify", json={"message": "one", "time": _future(), "chat_id": 1}).json()["id"]
        second = client.post("/api/v1/notify", json={"message": "two", "time": _future(), "chat_id": 2}).json()["id"]

        listed = client.get("/api/v1/notifications").json()

        assert [n["id"] for n in listed] == [first, second]
        assert listed[0]["message"] == "one"
        assert listed[1]["chat_id"] == 2
        assert set(listed[0]) == {"id", "message", "time", "status", "chat_id"}


class TestDependencyFailures:
    def test_broker_outage_is_service_unavailable(self, client, container):
        # simulate the broker connection dropping while the API keeps serving
        container.queue._connected = False
        resp = client.post("/api/v1/notify", json={"message": "hi", "chat_id": 42})
        assert resp.status_code == 503
        assert client.get("/api/v1/notifications").json() == []


class TestDiagnostics:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["channel"]["channel"] == "console"
        assert body["cache"] is True

    def test_health_reports_unreachable_cache(self, client, container):
        container.cache = BrokenCache()
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["cache"] is False

    def test_queue_stats(self, client):
        client.post("/api/v1/notify", json={"message": "hi", "time": _future(), "chat_id": 42})
        stats = client.get("/api/v1/queue/stats").json()
        assert stats["delayed_depth"] == 1
        assert stats["dlq_depth"] == 0
        assert stats["consumer_running"] is True


class TestBrowserUI:
    def test_index_page(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        assert 'id="notificationForm"' in resp.text
        assert "/static/app.js" in resp.text

    def test_script_talks_to_the_api(self, client):
        resp = client.get("/static/app.js")
        assert resp.status_code == 200
        assert "/api/v1/notify" in resp.text
        assert "/api/v1/notifications" in resp.text
