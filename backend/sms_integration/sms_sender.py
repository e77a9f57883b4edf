"""
SMS Sender - send and audit

Wraps ``SMSClient`` so every outbound attempt, successful or not, is
written to ``sms_log``. Notification delivery, command replies and the
queue/retry sweeps all send through here.

Features:
- Uniform ``SendResult`` with the sms_log row id for retry bookkeeping
- Phone numbers masked in logs
"""

import logging
from typing import Optional
from dataclasses import dataclass

from database.sms_models import SmsDirection, SmsStatus
from logging_config import mask_phone
from .sms_client import SMSClient

logger = logging.getLogger(__name__)


@dataclass
class OutboundSMS:
    """An SMS to send to an operator"""
    to: str
    body: str
    user_id: Optional[str] = None
    event_type: Optional[str] = None
    lead_id: Optional[str] = None
    job_id: Optional[str] = None


@dataclass
class SendResult:
    """Result of a send with its audit row"""
    success: bool
    twilio_sid: Optional[str] = None
    log_id: Optional[str] = None
    error: Optional[str] = None


class SMSSender:
    """
    High-level sender: Twilio delivery plus sms_log audit.

    Usage:
        sender = SMSSender(SMSClient(), repos.sms_log)
        result = await sender.send(OutboundSMS(to=phone, body=text, user_id=uid))
    """

    def __init__(self, client: SMSClient, sms_log):
        self.client = client
        self.sms_log = sms_log

    @property
    def from_number(self) -> str:
        return self.client.from_number

    async def send(self, message: OutboundSMS) -> SendResult:
        """Send one SMS and record the attempt. Never raises on delivery failure."""
        sms_result = await self.client.send_sms(message.to, message.body)

        log_entry = await self.sms_log.create(
            user_id=message.user_id,
            direction=SmsDirection.OUTBOUND.value,
            to_phone=message.to,
            from_phone=self.from_number,
            body=message.body,
            status=(SmsStatus.SENT if sms_result.success else SmsStatus.FAILED).value,
            event_type=message.event_type,
            lead_id=message.lead_id,
            job_id=message.job_id,
            twilio_sid=sms_result.message_id,
            error_message=sms_result.error,
        )

        if not sms_result.success:
            logger.warning(
                f"SMS to {mask_phone(message.to)} failed ({message.event_type}): {sms_result.error}"
            )

        return SendResult(
            success=sms_result.success,
            twilio_sid=sms_result.message_id,
            log_id=log_entry.id,
            error=sms_result.error,
        )
