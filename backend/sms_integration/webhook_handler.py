"""
SMS Webhook Handler - Inbound SMS processing

Turns a Twilio inbound webhook into a command execution and a TwiML reply.

Flow:
1. Validate the X-Twilio-Signature header
2. Parse the form payload into InboundSMS
3. Match the sender to an operator by phone
4. Dispatch through the command registry
5. Reply with TwiML (empty unless the result carries an unsent message)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

from config import get_settings
from logging_config import mask_phone
from sms_commands import CommandContext, execute_command, log_inbound, normalize_phone
from .schema import InboundEventType, REPLY_EVENT_TYPE
from .sms_sender import OutboundSMS

logger = logging.getLogger(__name__)


@dataclass
class InboundSMS:
    """Represents an incoming SMS message"""
    message_id: Optional[str]
    from_number: str
    to_number: Optional[str]
    body: str
    timestamp: datetime
    raw_payload: Dict[str, Any]


def twiml_response(message: Optional[str] = None) -> str:
    """TwiML document, with a single <Message> when ``message`` is given."""
    response = MessagingResponse()
    if message:
        response.message(message)
    return str(response)


class SMSWebhookHandler:
    """
    Processes inbound operator SMS.

    Usage:
        handler = SMSWebhookHandler(repos, sender)
        if not handler.verify_signature(url, form, signature):
            raise HTTPException(403)
        sms = handler.parse_webhook(form)
        xml = await handler.process_inbound(sms)
    """

    def __init__(self, repos, sender, settings=None):
        self.repos = repos
        self.sender = sender
        self.settings = settings or get_settings()

    def verify_signature(self, url: str, params: Dict[str, Any], signature: Optional[str]) -> bool:
        """
        Verify the Twilio request signature.

        Validation can be switched off with TWILIO_VALIDATE_SIGNATURES=false
        outside production. Without an auth token only development passes.
        """
        if not self.settings.TWILIO_VALIDATE_SIGNATURES and not self.settings.is_production:
            return True

        if not self.settings.TWILIO_AUTH_TOKEN:
            if self.settings.is_production:
                logger.error("TWILIO_AUTH_TOKEN not configured, rejecting inbound webhook")
                return False
            logger.warning("TWILIO_AUTH_TOKEN not configured, skipping signature validation")
            return True

        if not signature:
            return False

        validator = RequestValidator(self.settings.TWILIO_AUTH_TOKEN)
        return validator.validate(url, params, signature)

    def parse_webhook(self, payload: Dict[str, Any]) -> Optional[InboundSMS]:
        """
        Parse a Twilio form payload.

        Returns None when From or Body is missing or blank.
        """
        from_number = (payload.get("From") or "").strip()
        body = (payload.get("Body") or "").strip()
        if not from_number or not body:
            return None

        return InboundSMS(
            message_id=payload.get("MessageSid"),
            from_number=normalize_phone(from_number),
            to_number=payload.get("To"),
            body=body,
            timestamp=datetime.now(timezone.utc),
            raw_payload=dict(payload),
        )

    def _reply_sender(self, user_id: str):
        async def send_sms(to: str, body: str) -> Optional[str]:
            result = await self.sender.send(OutboundSMS(
                to=to,
                body=body,
                user_id=user_id,
                event_type=REPLY_EVENT_TYPE,
            ))
            return result.twilio_sid if result.success else None
        return send_sms

    async def process_inbound(self, sms: InboundSMS, now: Optional[datetime] = None) -> str:
        """
        Run the command for an inbound SMS.

        Returns:
            TwiML response body
        """
        user = await self.repos.users.get_by_phone(sms.from_number)
        if not user:
            logger.info(f"No operator found for phone {mask_phone(sms.from_number)}")
            return twiml_response()

        ctx = CommandContext(
            from_phone=sms.from_number,
            body=sms.body,
            body_upper=sms.body.upper(),
            user_id=user.id,
            db=self.repos,
            send_sms=self._reply_sender(user.id),
            twilio_phone=self.sender.from_number,
            timezone=user.timezone or self.settings.DEFAULT_TIMEZONE,
            now=now or sms.timestamp,
        )

        result = await execute_command(ctx)
        if result is None:
            await log_inbound(ctx, InboundEventType.OTHER)
            return twiml_response()

        return twiml_response(result.message)
