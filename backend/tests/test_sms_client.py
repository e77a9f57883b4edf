"""
Unit Tests for SMS Client and Sender

Tests:
- Phone number normalization and validation
- SMSClient configuration and input checks
- Twilio success and error handling
- SMSSender audit logging

Run with: pytest tests/test_sms_client.py -v
"""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from twilio.base.exceptions import TwilioRestException

from sms_integration.sms_client import (
    SMSClient,
    SMSResult,
    MAX_MESSAGE_LENGTH,
    normalize_phone_number,
    validate_phone_number,
)
from sms_integration.sms_sender import SMSSender, OutboundSMS


def configured_client():
    return SMSClient(account_sid="AC123", auth_token="token", from_number="+15550000000")


class TestPhoneNumbers:
    """Test normalize_phone_number and validate_phone_number."""

    @pytest.mark.parametrize("raw,expected", [
        ("+15551234567", "+15551234567"),
        ("15551234567", "+15551234567"),
        ("5551234567", "+15551234567"),
        ("(555) 123-4567", "+15551234567"),
        ("+44 20 7946 0958", "+442079460958"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_phone_number(raw) == expected

    def test_valid(self):
        assert validate_phone_number("+15551234567")
        assert validate_phone_number("+1 (555) 123-4567")

    def test_invalid(self):
        assert not validate_phone_number("5551234567")
        assert not validate_phone_number("+0123456789")
        assert not validate_phone_number("+123")
        assert not validate_phone_number("")


class TestSMSClient:
    """Test SMSClient.send_sms."""

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with patch("sms_integration.sms_client.get_settings") as get_settings:
            get_settings.return_value = SimpleNamespace(
                TWILIO_ACCOUNT_SID="", TWILIO_AUTH_TOKEN="", TWILIO_PHONE_NUMBER=""
            )
            client = SMSClient()

        result = await client.send_sms("+15551234567", "hello")

        assert not client.is_configured()
        assert not result.success
        assert result.error_code == 503

    @pytest.mark.asyncio
    async def test_invalid_number(self):
        with patch("sms_integration.sms_client.TwilioClient"):
            result = await configured_client().send_sms("12", "hello")
        assert not result.success
        assert result.error == "Invalid phone number format"

    @pytest.mark.asyncio
    async def test_empty_message(self):
        with patch("sms_integration.sms_client.TwilioClient"):
            result = await configured_client().send_sms("+15551234567", "   ")
        assert not result.success
        assert result.error_code == 400

    @pytest.mark.asyncio
    async def test_message_too_long(self):
        with patch("sms_integration.sms_client.TwilioClient"):
            result = await configured_client().send_sms("+15551234567", "x" * (MAX_MESSAGE_LENGTH + 1))
        assert not result.success
        assert "character limit" in result.error

    @pytest.mark.asyncio
    async def test_success(self):
        with patch("sms_integration.sms_client.TwilioClient") as twilio_cls:
            twilio_cls.return_value.messages.create.return_value = SimpleNamespace(sid="SM123", status="queued")
            client = configured_client()

            result = await client.send_sms("5551234567", "hello")
            sid = await client.send("5551234567", "hello")

        assert result.success
        assert result.message_id == "SM123"
        assert result.status == "queued"
        assert result.sent_at is not None
        assert sid == "SM123"
        twilio_cls.return_value.messages.create.assert_called_with(
            body="hello", from_="+15550000000", to="+15551234567"
        )

    @pytest.mark.asyncio
    async def test_twilio_error(self):
        with patch("sms_integration.sms_client.TwilioClient") as twilio_cls:
            twilio_cls.return_value.messages.create.side_effect = TwilioRestException(
                status=400, uri="/Messages", msg="Unsubscribed recipient", code=21610
            )
            client = configured_client()

            result = await client.send_sms("+15551234567", "hello")
            sid = await client.send("+15551234567", "hello")

        assert not result.success
        assert result.error_code == 21610
        assert result.error == "Unsubscribed recipient"
        assert sid is None

    @pytest.mark.asyncio
    async def test_transport_error(self):
        with patch("sms_integration.sms_client.TwilioClient") as twilio_cls:
            twilio_cls.return_value.messages.create.side_effect = ConnectionError("timeout")
            result = await configured_client().send_sms("+15551234567", "hello")

        assert not result.success
        assert result.error_code == 500


class TestSMSSender:
    """Test SMSSender audit logging."""

    @pytest.fixture
    def sms_log(self):
        sms_log = MagicMock()
        sms_log.create = AsyncMock(return_value=SimpleNamespace(id="log-1"))
        return sms_log

    def sender(self, sms_log, result):
        client = MagicMock()
        client.from_number = "+15550000000"
        client.send_sms = AsyncMock(return_value=result)
        return SMSSender(client, sms_log)

    @pytest.mark.asyncio
    async def test_success_logged_as_sent(self, sms_log):
        sender = self.sender(sms_log, SMSResult(success=True, message_id="SM1"))

        result = await sender.send(OutboundSMS(
            to="+15551234567", body="hello", user_id="user-1", event_type="callback_request", lead_id="lead-1"
        ))

        assert result.success
        assert result.twilio_sid == "SM1"
        assert result.log_id == "log-1"
        fields = sms_log.create.await_args.kwargs
        assert fields["direction"] == "outbound"
        assert fields["status"] == "sent"
        assert fields["from_phone"] == "+15550000000"
        assert fields["lead_id"] == "lead-1"

    @pytest.mark.asyncio
    async def test_failure_logged_as_failed(self, sms_log):
        sender = self.sender(sms_log, SMSResult(success=False, error="boom", error_code=500))

        result = await sender.send(OutboundSMS(to="+15551234567", body="hello"))

        assert not result.success
        assert result.error == "boom"
        assert result.log_id == "log-1"
        fields = sms_log.create.await_args.kwargs
        assert fields["status"] == "failed"
        assert fields["error_message"] == "boom"
