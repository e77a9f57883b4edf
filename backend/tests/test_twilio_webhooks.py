"""
Unit Tests for Twilio Webhooks

Tests:
- Signature verification rules
- Inbound payload parsing
- Inbound SMS endpoint (TwiML replies, unknown senders, error containment)
- Delivery status callback

Run with: pytest tests/test_twilio_webhooks.py -v
"""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from config import Settings
from routers.deps import get_repositories, get_sms_sender
from routers.twilio_webhooks import router as twilio_router
from sms_commands import GENERIC_ERROR_MESSAGE
from sms_commands.help_command import HELP_MESSAGE
from sms_integration.schema import REPLY_EVENT_TYPE
from sms_integration.sms_sender import SendResult
from sms_integration.webhook_handler import SMSWebhookHandler, twiml_response

OPERATOR = SimpleNamespace(id="user-1", phone="+15551234567", timezone="America/Chicago")
INBOUND_URL = "http://testserver/api/twilio/inbound"


def make_repos():
    repos = MagicMock()
    for name in ("users", "leads", "jobs", "notes", "sms_log", "queue",
                 "alert_contexts", "preferences", "retries"):
        setattr(repos, name, AsyncMock())
    repos.rollback = AsyncMock()
    repos.users.get_by_phone = AsyncMock(return_value=OPERATOR)
    repos.alert_contexts.latest_for_phone = AsyncMock(return_value=None)
    return repos


def make_sender():
    sender = MagicMock()
    sender.from_number = "+15550000000"
    sender.send = AsyncMock(return_value=SendResult(success=True, twilio_sid="SM1", log_id="log-1"))
    return sender


class TestSignatureVerification:
    """Test SMSWebhookHandler.verify_signature."""

    PARAMS = {"From": "+15551234567", "Body": "1"}

    def handler(self, **settings):
        return SMSWebhookHandler(make_repos(), make_sender(), Settings(**settings))

    def test_valid_signature(self):
        signature = RequestValidator("secret").compute_signature(INBOUND_URL, self.PARAMS)
        handler = self.handler(TWILIO_AUTH_TOKEN="secret")
        assert handler.verify_signature(INBOUND_URL, self.PARAMS, signature)

    def test_invalid_signature(self):
        handler = self.handler(TWILIO_AUTH_TOKEN="secret")
        assert not handler.verify_signature(INBOUND_URL, self.PARAMS, "bogus")

    def test_missing_signature(self):
        handler = self.handler(TWILIO_AUTH_TOKEN="secret")
        assert not handler.verify_signature(INBOUND_URL, self.PARAMS, None)

    def test_no_token_allowed_in_development(self):
        handler = self.handler(ENVIRONMENT="development", TWILIO_AUTH_TOKEN="")
        assert handler.verify_signature(INBOUND_URL, self.PARAMS, None)

    def test_no_token_rejected_in_production(self):
        handler = self.handler(ENVIRONMENT="production", TWILIO_AUTH_TOKEN="")
        assert not handler.verify_signature(INBOUND_URL, self.PARAMS, None)

    def test_validation_cannot_be_disabled_in_production(self):
        handler = self.handler(ENVIRONMENT="production", TWILIO_AUTH_TOKEN="secret",
                               TWILIO_VALIDATE_SIGNATURES=False)
        assert not handler.verify_signature(INBOUND_URL, self.PARAMS, "bogus")

    def test_validation_disabled_outside_production(self):
        handler = self.handler(ENVIRONMENT="staging", TWILIO_AUTH_TOKEN="secret",
                               TWILIO_VALIDATE_SIGNATURES=False)
        assert handler.verify_signature(INBOUND_URL, self.PARAMS, "bogus")


class TestParseWebhook:
    """Test SMSWebhookHandler.parse_webhook."""

    @pytest.fixture
    def handler(self):
        return SMSWebhookHandler(make_repos(), make_sender(), Settings())

    def test_parses_payload(self, handler):
        sms = handler.parse_webhook({
            "MessageSid": "SM9", "From": "15551234567", "To": "+15550000000", "Body": "  SNOOZE 1H  ",
        })
        assert sms.message_id == "SM9"
        assert sms.from_number == "+15551234567"
        assert sms.body == "SNOOZE 1H"

    def test_missing_fields(self, handler):
        assert handler.parse_webhook({"From": "+15551234567", "Body": "   "}) is None
        assert handler.parse_webhook({"Body": "1"}) is None

    def test_twiml(self):
        assert "<Message>" not in twiml_response()
        assert "<Message>Hello</Message>" in twiml_response("Hello")


class TestInboundEndpoint:
    """Test POST /api/twilio/inbound."""

    @pytest.fixture
    def repos(self):
        return make_repos()

    @pytest.fixture
    def sender(self):
        return make_sender()

    @pytest.fixture
    def client(self, repos, sender):
        app = FastAPI()
        app.include_router(twilio_router, prefix="/api")
        app.dependency_overrides[get_repositories] = lambda: repos
        app.dependency_overrides[get_sms_sender] = lambda: sender
        with patch("sms_integration.webhook_handler.get_settings", return_value=Settings(ENVIRONMENT="development")):
            yield TestClient(app)

    def test_help_reply_sent_via_sender(self, client, repos, sender):
        response = client.post("/api/twilio/inbound", data={"From": "+15551234567", "Body": "HELP"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Message>" not in response.text
        message = sender.send.await_args.args[0]
        assert message.body == HELP_MESSAGE
        assert message.event_type == REPLY_EVENT_TYPE
        assert message.to == "+15551234567"

    def test_unknown_sender_gets_empty_response(self, client, repos, sender):
        repos.users.get_by_phone = AsyncMock(return_value=None)

        response = client.post("/api/twilio/inbound", data={"From": "+15559999999", "Body": "1"})

        assert response.status_code == 200
        assert "<Message>" not in response.text
        sender.send.assert_not_awaited()
        repos.sms_log.create.assert_not_awaited()

    def test_unmatched_text_is_logged(self, client, repos, sender):
        response = client.post("/api/twilio/inbound", data={"From": "+15551234567", "Body": "hi"})

        assert response.status_code == 200
        assert repos.sms_log.create.await_args.kwargs["event_type"] == "other"
        sender.send.assert_not_awaited()

    def test_command_error_answers_with_generic_message(self, client, repos):
        repos.alert_contexts.latest_for_phone = AsyncMock(side_effect=RuntimeError("db down"))

        with patch("sms_commands.registry.capture_exception"):
            response = client.post("/api/twilio/inbound", data={"From": "+15551234567", "Body": "1"})

        assert response.status_code == 200
        assert GENERIC_ERROR_MESSAGE in response.text

    def test_processing_error_still_returns_twiml(self, client, repos):
        repos.users.get_by_phone = AsyncMock(side_effect=RuntimeError("db down"))

        with patch("routers.twilio_webhooks.capture_exception") as capture:
            response = client.post("/api/twilio/inbound", data={"From": "+15551234567", "Body": "1"})

        assert response.status_code == 200
        assert "<Response" in response.text
        capture.assert_called_once()

    def test_missing_body_returns_empty_twiml(self, client, repos):
        response = client.post("/api/twilio/inbound", data={"From": "+15551234567"})
        assert response.status_code == 200
        repos.users.get_by_phone.assert_not_awaited()

    def test_bad_signature_rejected(self, repos, sender):
        app = FastAPI()
        app.include_router(twilio_router, prefix="/api")
        app.dependency_overrides[get_repositories] = lambda: repos
        app.dependency_overrides[get_sms_sender] = lambda: sender

        with patch("sms_integration.webhook_handler.get_settings", return_value=Settings(TWILIO_AUTH_TOKEN="secret")):
            response = TestClient(app).post(
                "/api/twilio/inbound",
                data={"From": "+15551234567", "Body": "1"},
                headers={"X-Twilio-Signature": "bogus"},
            )

        assert response.status_code == 403
        repos.users.get_by_phone.assert_not_awaited()

    def test_valid_signature_accepted(self, repos, sender):
        app = FastAPI()
        app.include_router(twilio_router, prefix="/api")
        app.dependency_overrides[get_repositories] = lambda: repos
        app.dependency_overrides[get_sms_sender] = lambda: sender
        params = {"From": "+15551234567", "Body": "HELP"}
        signature = RequestValidator("secret").compute_signature(INBOUND_URL, params)

        with patch("sms_integration.webhook_handler.get_settings", return_value=Settings(TWILIO_AUTH_TOKEN="secret")):
            response = TestClient(app).post(
                "/api/twilio/inbound", data=params, headers={"X-Twilio-Signature": signature},
            )

        assert response.status_code == 200
        sender.send.assert_awaited_once()


class TestStatusCallback:
    """Test POST /api/twilio/status."""

    @pytest.fixture
    def repos(self):
        return make_repos()

    @pytest.fixture
    def client(self, repos):
        app = FastAPI()
        app.include_router(twilio_router, prefix="/api")
        app.dependency_overrides[get_repositories] = lambda: repos
        app.dependency_overrides[get_sms_sender] = make_sender
        with patch("sms_integration.webhook_handler.get_settings", return_value=Settings(ENVIRONMENT="development")):
            yield TestClient(app)

    def test_updates_delivery_status(self, client, repos):
        repos.sms_log.update_delivery_status = AsyncMock(return_value=1)

        response = client.post("/api/twilio/status", data={"MessageSid": "SM1", "MessageStatus": "delivered"})

        assert response.status_code == 200
        assert response.json() == {"received": True, "updated": 1}
        args = repos.sms_log.update_delivery_status.await_args.args
        assert args[:2] == ("SM1", "delivered")

    def test_missing_fields_still_ok(self, client, repos):
        response = client.post("/api/twilio/status", data={"MessageSid": "SM1"})
        assert response.status_code == 200
        repos.sms_log.update_delivery_status.assert_not_awaited()

    def test_storage_error_still_ok(self, client, repos):
        repos.sms_log.update_delivery_status = AsyncMock(side_effect=RuntimeError("db down"))

        with patch("routers.twilio_webhooks.capture_exception"):
            response = client.post("/api/twilio/status", data={"MessageSid": "SM1", "MessageStatus": "failed"})

        assert response.status_code == 200
        assert response.json()["updated"] == 0
