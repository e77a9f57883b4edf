"""
Shared helpers for SMS command handlers.
"""

import logging
from datetime import timedelta
from typing import Optional

from database.sms_models import SmsDirection, SmsStatus
from sms_integration.schema import InboundEventType
from .models import CommandContext, LeadContext

logger = logging.getLogger(__name__)

# Replies to a code only close alert contexts this recent
REPLY_WINDOW = timedelta(hours=1)


def normalize_phone(phone: str) -> str:
    """Twilio sometimes drops the leading '+'."""
    phone = (phone or "").strip()
    return phone if phone.startswith("+") else f"+{phone}"


def no_lead_message(verb: str) -> str:
    return f"No recent lead to {verb}. Open the app to manage leads."


async def get_lead_context(db, operator_phone: str, fallback_to_customer: bool = True) -> Optional[LeadContext]:
    """
    Resolve which lead the operator is replying about.

    Reads the newest alert context for the phone. If it carries no lead
    id, the newest active lead for its customer phone is used instead.
    """
    context = await db.alert_contexts.latest_for_phone(normalize_phone(operator_phone))
    if not context:
        return None

    if context.lead_id:
        return LeadContext(lead_id=context.lead_id, customer_name=context.customer_name or "Lead")

    if fallback_to_customer and context.customer_phone:
        lead = await db.leads.find_active_by_customer_phone(context.customer_phone)
        if lead:
            return LeadContext(lead_id=lead.id, customer_name=lead.customer_name or "Lead")

    return None


async def update_alert_context_status(ctx: CommandContext, reply_code: str) -> int:
    """Mark this operator's unanswered alerts from the last hour as replied."""
    return await ctx.db.alert_contexts.mark_replied(
        normalize_phone(ctx.from_phone),
        reply_code,
        since=ctx.now - REPLY_WINDOW,
        replied_at=ctx.now,
    )


async def add_note_to_lead(ctx: CommandContext, lead_id: str, note_text: str) -> None:
    """Append to the lead's notes and mirror the note into the operator note feed."""
    lead = await ctx.db.leads.append_note(lead_id, {
        "text": note_text,
        "source": "sms",
        "created_by": ctx.from_phone,
        "created_at": ctx.now.isoformat(),
    })
    if not lead:
        logger.warning(f"Note for missing lead {lead_id} dropped")
        return

    user_id = ctx.user_id or lead.user_id
    if lead.customer_phone and user_id:
        await ctx.db.notes.create(
            user_id=user_id,
            lead_id=lead_id,
            customer_phone=lead.customer_phone,
            customer_name=lead.customer_name,
            note_text=note_text,
            created_by=f"SMS from {ctx.from_phone}",
        )


async def log_inbound(
    ctx: CommandContext,
    event_type: InboundEventType,
    lead_id: Optional[str] = None,
    job_id: Optional[str] = None,
) -> None:
    await ctx.db.sms_log.create(
        user_id=ctx.user_id,
        direction=SmsDirection.INBOUND.value,
        to_phone=ctx.twilio_phone,
        from_phone=ctx.from_phone,
        body=ctx.body,
        status=SmsStatus.RECEIVED.value,
        event_type=InboundEventType(event_type).value,
        lead_id=lead_id,
        job_id=job_id,
    )
