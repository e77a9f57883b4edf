"""
Unit Tests for Internal API Authentication and Routers

Tests:
- Internal API key validation (rotation via comma-separated keys)
- Cron bearer secret
- /api/notifications endpoints
- /api/cron endpoints

Run with: pytest tests/test_internal_api.py -v
"""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from config import Settings
from middleware.internal_auth import require_cron_secret, validate_internal_key
from routers.cron import router as cron_router
from routers.deps import get_repositories, get_sms_sender
from routers.notifications import router as notifications_router
from sms_integration.sms_sender import SendResult

API_KEY = "test-internal-key-123456"
CRON_SECRET = "cron-secret"
OPERATOR = SimpleNamespace(id="user-1", phone="+15551234567", timezone="America/Chicago")


def auth_settings(**overrides):
    fields = dict(ENVIRONMENT="development", INTERNAL_API_KEY=API_KEY, CRON_SECRET=CRON_SECRET)
    fields.update(overrides)
    return Settings(**fields)


def make_repos():
    repos = MagicMock()
    for name in ("users", "leads", "jobs", "notes", "sms_log", "queue",
                 "alert_contexts", "preferences", "retries"):
        setattr(repos, name, AsyncMock())
    repos.rollback = AsyncMock()
    repos.users.get = AsyncMock(return_value=OPERATOR)
    repos.preferences.get = AsyncMock(return_value=None)
    repos.sms_log.latest_outbound = AsyncMock(return_value=None)
    repos.sms_log.recent_outbound = AsyncMock(return_value=[])
    return repos


def make_sender():
    sender = MagicMock()
    sender.from_number = "+15550000000"
    sender.send = AsyncMock(return_value=SendResult(success=True, twilio_sid="SM1", log_id="log-1"))
    return sender


def stored_prefs(**overrides):
    fields = dict(
        user_id="user-1",
        sms_same_day_booking=True,
        sms_future_booking=False,
        sms_callback_request=True,
        sms_schedule_conflict=True,
        sms_cancellation=True,
        quiet_hours_enabled=True,
        quiet_hours_start="21:00",
        quiet_hours_end="07:00",
        sms_unsubscribed=False,
        sms_unsubscribed_at=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def repos():
    return make_repos()


@pytest.fixture
def sender():
    return make_sender()


@pytest.fixture
def app(repos, sender):
    app = FastAPI()
    app.include_router(notifications_router, prefix="/api")
    app.include_router(cron_router, prefix="/api")
    app.dependency_overrides[get_repositories] = lambda: repos
    app.dependency_overrides[get_sms_sender] = lambda: sender
    return app


@pytest.fixture
def client(app):
    with patch("middleware.internal_auth.get_settings", return_value=auth_settings()):
        yield TestClient(app)


class TestInternalKeyValidation:
    """Test validate_internal_key."""

    def test_rotation_keys(self):
        with patch("middleware.internal_auth.get_settings", return_value=auth_settings(INTERNAL_API_KEY="old-key, new-key")):
            assert validate_internal_key("old-key")
            assert validate_internal_key("new-key")
            assert not validate_internal_key("other-key")

    def test_empty_key(self):
        with patch("middleware.internal_auth.get_settings", return_value=auth_settings()):
            assert not validate_internal_key(None)
            assert not validate_internal_key("")

    def test_non_ascii_key(self):
        with patch("middleware.internal_auth.get_settings", return_value=auth_settings()):
            assert not validate_internal_key("ключ")
            assert not validate_internal_key("test-internal-key-12345é")

    def test_non_ascii_header_rejected(self, client):
        response = client.get(
            "/api/notifications/preferences/user-1",
            headers={"X-Internal-Api-Key": "caf\xe9".encode("latin-1")},
        )
        assert response.status_code == 401

    def test_no_keys_configured(self):
        with patch("middleware.internal_auth.get_settings", return_value=auth_settings(INTERNAL_API_KEY="")):
            assert not validate_internal_key(API_KEY)


class TestNotificationEndpoints:
    """Test /api/notifications."""

    HEADERS = {"X-Internal-Api-Key": API_KEY, "X-Service-Name": "voice-backend"}

    def send_payload(self, **overrides):
        payload = {
            "user_id": "user-1",
            "event_type": "callback_request",
            "data": {"customer_name": "John Smith", "callback_timeframe": "within the hour"},
            "lead_id": "lead-1",
        }
        payload.update(overrides)
        return payload

    def test_missing_key(self, client):
        response = client.post("/api/notifications/send", json=self.send_payload())
        assert response.status_code == 401

    def test_invalid_key(self, client):
        response = client.post(
            "/api/notifications/send", json=self.send_payload(), headers={"X-Internal-Api-Key": "wrong"}
        )
        assert response.status_code == 401

    def test_send(self, client, sender):
        response = client.post("/api/notifications/send", json=self.send_payload(), headers=self.HEADERS)

        assert response.status_code == 200
        assert response.json() == {"sent": True, "queued": False, "reason": None, "twilio_sid": "SM1"}
        message = sender.send.await_args.args[0]
        assert message.to == OPERATOR.phone
        assert "John Smith wants callback within the hour" in message.body

    def test_send_blocked_still_200(self, client, repos, sender):
        repos.preferences.get = AsyncMock(return_value=stored_prefs(sms_unsubscribed=True))

        response = client.post("/api/notifications/send", json=self.send_payload(), headers=self.HEADERS)

        assert response.status_code == 200
        assert response.json()["sent"] is False
        assert response.json()["reason"] == "User has unsubscribed from SMS"
        sender.send.assert_not_awaited()

    def test_unknown_user(self, client, repos):
        repos.users.get = AsyncMock(return_value=None)
        response = client.post("/api/notifications/send", json=self.send_payload(), headers=self.HEADERS)
        assert response.status_code == 404

    def test_user_without_phone(self, client, repos):
        repos.users.get = AsyncMock(return_value=SimpleNamespace(id="user-1", phone=None, timezone=None))
        response = client.post("/api/notifications/send", json=self.send_payload(), headers=self.HEADERS)
        assert response.status_code == 400

    def test_invalid_event_type(self, client):
        response = client.post(
            "/api/notifications/send", json=self.send_payload(event_type="party_invite"), headers=self.HEADERS
        )
        assert response.status_code == 422

    def test_get_default_preferences(self, client):
        response = client.get("/api/notifications/preferences/user-1", headers=self.HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == "user-1"
        assert body["sms_future_booking"] is False
        assert body["quiet_hours_start"] == "19:00"
        assert body["quiet_hours_end"] == "06:00"

    def test_get_stored_preferences(self, client, repos):
        repos.preferences.get = AsyncMock(return_value=stored_prefs())
        response = client.get("/api/notifications/preferences/user-1", headers=self.HEADERS)
        assert response.json()["quiet_hours_start"] == "21:00"

    def test_update_preferences_partial(self, client, repos):
        repos.preferences.upsert = AsyncMock(return_value=stored_prefs(quiet_hours_start="22:00"))

        response = client.put(
            "/api/notifications/preferences/user-1",
            json={"quiet_hours_start": "22:00"},
            headers=self.HEADERS,
        )

        assert response.status_code == 200
        repos.preferences.upsert.assert_awaited_once_with("user-1", {"quiet_hours_start": "22:00"})
        assert response.json()["quiet_hours_start"] == "22:00"

    def test_update_unsubscribe_records_time(self, client, repos):
        repos.preferences.upsert = AsyncMock(return_value=stored_prefs(sms_unsubscribed=True))

        client.put("/api/notifications/preferences/user-1", json={"sms_unsubscribed": True}, headers=self.HEADERS)

        values = repos.preferences.upsert.await_args.args[1]
        assert values["sms_unsubscribed"] is True
        assert values["sms_unsubscribed_at"] is not None

    def test_update_rejects_bad_clock(self, client):
        response = client.put(
            "/api/notifications/preferences/user-1",
            json={"quiet_hours_end": "25:00"},
            headers=self.HEADERS,
        )
        assert response.status_code == 422


class TestCronEndpoints:
    """Test /api/cron."""

    HEADERS = {"Authorization": f"Bearer {CRON_SECRET}"}

    def test_requires_bearer(self, client):
        assert client.post("/api/cron/escalations").status_code == 401
        assert client.post(
            "/api/cron/escalations", headers={"Authorization": "Bearer wrong"}
        ).status_code == 401

    def test_non_ascii_bearer_rejected(self, client):
        # Header bytes outside ASCII arrive as latin-1 decoded text
        response = client.post(
            "/api/cron/escalations", headers={"Authorization": "Bearer caf\xe9".encode("latin-1")}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_non_ascii_bearer_dependency(self):
        request = SimpleNamespace(
            headers={"Authorization": "Bearer ключ"},
            url=SimpleNamespace(path="/api/cron/escalations"),
        )
        with patch("middleware.internal_auth.get_settings", return_value=auth_settings()):
            with pytest.raises(HTTPException) as exc_info:
                await require_cron_secret(request)
        assert exc_info.value.status_code == 401

    def test_missing_secret_in_production(self, app):
        with patch("middleware.internal_auth.get_settings",
                   return_value=auth_settings(ENVIRONMENT="production", CRON_SECRET="")):
            response = TestClient(app).post("/api/cron/escalations")
        assert response.status_code == 503

    def test_missing_secret_allowed_in_development(self, app, repos):
        repos.alert_contexts.list_unanswered = AsyncMock(return_value=[])
        with patch("middleware.internal_auth.get_settings", return_value=auth_settings(CRON_SECRET="")):
            response = TestClient(app).post("/api/cron/escalations")
        assert response.status_code == 200

    def test_escalations(self, client, repos):
        lead = SimpleNamespace(id="lead-1", user_id="user-1", priority_color="blue", priority_reason=None)
        repos.alert_contexts.list_unanswered = AsyncMock(return_value=[(SimpleNamespace(id="ctx-1"), lead)])

        response = client.post("/api/cron/escalations", headers=self.HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["processed"] == 1
        assert body["details"]["escalated_lead_ids"] == ["lead-1"]

    def test_queue_sweep(self, client, repos):
        repos.queue.list_due = AsyncMock(return_value=[])
        response = client.post("/api/cron/process-notification-queue", headers=self.HEADERS)
        assert response.status_code == 200
        assert response.json()["details"]["sent"] == 0

    def test_retry_and_digest_and_stale(self, client, repos):
        repos.retries.list_due = AsyncMock(return_value=[])
        repos.users.list_with_phone = AsyncMock(return_value=[])
        repos.jobs.list_stale = AsyncMock(return_value=[])

        for path in ("/api/cron/retry-failed", "/api/cron/daily-digest", "/api/cron/stale-jobs"):
            response = client.post(path, headers=self.HEADERS)
            assert response.status_code == 200
            assert response.json()["processed"] == 0

    def test_sweep_failure_returns_500(self, client, repos):
        repos.queue.list_due = AsyncMock(side_effect=RuntimeError("db down"))

        with patch("routers.cron.capture_exception") as capture:
            response = client.post("/api/cron/process-notification-queue", headers=self.HEADERS)

        assert response.status_code == 500
        capture.assert_called_once()
