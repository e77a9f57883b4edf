"""
SMS Client - Twilio Provider Implementation

Outbound SMS via Twilio. Failures are reported in the returned
``SMSResult`` (or as a ``None`` SID from ``send``), never raised.

Usage:
    client = SMSClient()
    sid = await client.send('+15551234567', 'CALLLOCK: New booking TODAY ...')
"""

import re
import logging
from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timezone

from twilio.rest import Client as TwilioClient
from twilio.base.exceptions import TwilioRestException

from config import get_settings
from logging_config import mask_phone

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1600
E164_PATTERN = re.compile(r'^\+[1-9]\d{6,14}$')


@dataclass
class SMSResult:
    """Result of an SMS operation"""
    success: bool
    message_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[int] = None
    sent_at: Optional[datetime] = None


def normalize_phone_number(phone: str, country_code: str = '+1') -> str:
    """
    Normalize phone number to E.164 format.

    Twilio posts inbound numbers with a leading '+', but numbers typed
    into the dashboard usually lack it.
    """
    cleaned = re.sub(r'[^\d+]', '', phone or '')

    if cleaned.startswith('+'):
        return cleaned

    # North American number with country code
    if cleaned.startswith('1') and len(cleaned) == 11:
        return '+' + cleaned

    # Ten digit national number
    if len(cleaned) == 10:
        return country_code + cleaned

    return '+' + cleaned


def validate_phone_number(phone: str) -> bool:
    """Validate a phone number format (E.164: + followed by 7-15 digits)."""
    cleaned = re.sub(r'[\s\-\(\)]', '', phone or '')
    return bool(E164_PATTERN.match(cleaned))


class SMSClient:
    """
    SMS Client - Twilio integration for sending SMS messages.

    Environment Variables:
        TWILIO_ACCOUNT_SID: Twilio Account SID
        TWILIO_AUTH_TOKEN: Twilio Auth Token
        TWILIO_PHONE_NUMBER: Twilio Phone Number (sender)
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
    ):
        settings = get_settings()
        self.account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or settings.TWILIO_PHONE_NUMBER

        self._client: Optional[TwilioClient] = None

    def is_configured(self) -> bool:
        """Check if SMS client is properly configured."""
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _ensure_initialized(self) -> bool:
        """Ensure Twilio client is initialized."""
        if self._client:
            return True

        if not self.is_configured():
            logger.warning("SMS client not configured - missing Twilio credentials")
            return False

        self._client = TwilioClient(self.account_sid, self.auth_token)
        logger.info("Twilio client initialized")
        return True

    async def send_sms(self, to: str, message: str) -> SMSResult:
        """
        Send an SMS message via Twilio.

        Args:
            to: Recipient phone number (normalized to E.164)
            message: Message content (max 1600 chars)

        Returns:
            SMSResult: Result of the send operation
        """
        if not self._ensure_initialized():
            return SMSResult(
                success=False,
                error="SMS client not configured. Check environment variables.",
                error_code=503
            )

        normalized_to = normalize_phone_number(to)

        if not validate_phone_number(normalized_to):
            return SMSResult(success=False, error="Invalid phone number format", error_code=400)

        if not message or not message.strip():
            return SMSResult(success=False, error="Message cannot be empty", error_code=400)

        if len(message) > MAX_MESSAGE_LENGTH:
            return SMSResult(
                success=False,
                error=f"Message exceeds {MAX_MESSAGE_LENGTH} character limit",
                error_code=400
            )

        try:
            logger.info(f"Sending SMS to {mask_phone(normalized_to)}")

            # Twilio SDK is synchronous
            twilio_message = self._client.messages.create(
                body=message,
                from_=self.from_number,
                to=normalized_to
            )

            logger.info(f"SMS sent successfully: {twilio_message.sid}")

            return SMSResult(
                success=True,
                message_id=twilio_message.sid,
                status=twilio_message.status,
                sent_at=datetime.now(timezone.utc),
            )

        except TwilioRestException as e:
            logger.error(f"Twilio API error: {e.code} - {e.msg}")
            return SMSResult(success=False, error=e.msg, error_code=e.code)
        except Exception as e:
            # Transport errors (timeouts, DNS) surface as a failed send, not a crash
            logger.error(f"Unexpected error sending SMS: {e}")
            return SMSResult(success=False, error=str(e), error_code=500)

    async def send(self, to: str, message: str) -> Optional[str]:
        """Send and return the Twilio message SID, or None on failure."""
        result = await self.send_sms(to, message)
        return result.message_id if result.success else None

