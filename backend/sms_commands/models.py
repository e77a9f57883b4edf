"""
SMS Command Models

Context handed to each inbound command handler, the result it returns,
and the handler record kept in the registry.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Callable, Awaitable

from sms_integration.schema import InboundEventType


@dataclass
class CommandContext:
    """One inbound SMS from a known operator"""
    from_phone: str          # +E.164
    body: str                # original case, stripped
    body_upper: str
    user_id: str
    db: object               # SmsRepositories bound to the request session
    send_sms: Callable[[str, str], Awaitable[Optional[str]]]
    twilio_phone: Optional[str] = None
    timezone: Optional[str] = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    async def reply(self, message: str) -> Optional[str]:
        """Text the operator back. Returns the provider SID or None."""
        return await self.send_sms(self.from_phone, message)


@dataclass
class LeadContext:
    lead_id: str
    customer_name: str


@dataclass
class CommandResult:
    """
    Outcome of a command.

    ``message`` is only set when the reply has not already been sent;
    the webhook returns it in the TwiML response.
    """
    success: bool
    message: Optional[str] = None
    reply_code: Optional[str] = None
    event_type: Optional[InboundEventType] = None
    lead_id: Optional[str] = None
    job_id: Optional[str] = None


MatchFn = Callable[[str, str], bool]
ExecuteFn = Callable[[CommandContext], Awaitable[CommandResult]]


@dataclass(frozen=True)
class CommandHandler:
    """A named (predicate, action) pair; lower priority is tried first"""
    name: str
    priority: int
    match: MatchFn
    execute: ExecuteFn
