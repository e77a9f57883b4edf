"""
Booking commands.

"4 TUE 2PM" / "BOOK TOMORROW 9AM" turn the lead in context into a
confirmed job. "OK" / "YES" confirms the newest AI-booked job.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from database.sms_models import JobStatus, LeadStatus, PriorityColor
from sms_integration.schema import InboundEventType
from sms_integration.templates import CONFIRM_BOOKING_TEMPLATE
from sms_integration.time_parser import (
    parse_time_from_sms, generate_booking_confirmation, resolve_now,
)
from .helpers import get_lead_context, log_inbound, no_lead_message
from .models import CommandContext, CommandHandler, CommandResult

logger = logging.getLogger(__name__)

CONFIRM_KEYWORDS = ("OK", "Y", "YES", "CONFIRM")


async def book_lead(ctx: CommandContext, time_text: str, usage: str) -> CommandResult:
    """Parse ``time_text`` and convert the lead in context into a confirmed job."""
    lead_ctx = await get_lead_context(ctx.db, ctx.from_phone)
    if not lead_ctx:
        await ctx.reply(no_lead_message("book"))
        return CommandResult(success=False)

    parsed = parse_time_from_sms(time_text, now=ctx.now, tz=ctx.timezone)
    if not parsed.success or not parsed.date_time:
        await ctx.reply(parsed.clarification_prompt or usage)
        return CommandResult(success=False)

    lead = await ctx.db.leads.get(lead_ctx.lead_id)
    if not lead:
        await ctx.reply("Lead not found. Open the app to manage leads.")
        return CommandResult(success=False)

    try:
        job = await ctx.db.jobs.create(
            user_id=ctx.user_id,
            lead_id=lead.id,
            customer_name=lead.customer_name or lead_ctx.customer_name,
            customer_phone=lead.customer_phone or "",
            customer_address=lead.customer_address or "",
            service_type=lead.service_type or "hvac",
            urgency=lead.urgency or "medium",
            ai_summary=lead.ai_summary,
            estimated_value=lead.estimated_value,
            scheduled_at=parsed.date_time,
            status=JobStatus.CONFIRMED,
            is_ai_booked=False,
            booking_confirmed=True,
            priority_color=PriorityColor(lead.priority_color).value if lead.priority_color else None,
            priority_reason=lead.priority_reason,
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to create job via SMS for lead {lead.id}: {e}")
        await ctx.reply("Failed to book. Please try in the app.")
        return CommandResult(success=False, lead_id=lead.id)

    await ctx.db.leads.update(lead.id, {
        "status": LeadStatus.CONVERTED,
        "converted_job_id": job.id,
        "converted_at": ctx.now,
        "callback_outcome": "booked",
        "callback_outcome_at": ctx.now,
    })

    local_now = resolve_now(ctx.now, ctx.timezone)
    await ctx.reply(generate_booking_confirmation(lead_ctx.customer_name, parsed.date_time, local_now))
    await log_inbound(ctx, InboundEventType.LEAD_BOOKING, lead_id=lead.id, job_id=job.id)

    logger.info(f"Lead {lead.id} booked as job {job.id} via SMS")
    return CommandResult(
        success=True,
        event_type=InboundEventType.LEAD_BOOKING,
        lead_id=lead.id,
        job_id=job.id,
    )


async def _code_4_booking(ctx: CommandContext) -> CommandResult:
    return await book_lead(ctx, ctx.body[2:].strip(), "When? Reply: 4 TUE 2PM, 4 TOMORROW 9AM")


async def _book_prefix(ctx: CommandContext) -> CommandResult:
    return await book_lead(ctx, ctx.body[5:].strip(), "When? Reply: BOOK TUE 2PM, BOOK TOMORROW 9AM")


async def _confirm_booking(ctx: CommandContext) -> CommandResult:
    job = await ctx.db.jobs.latest_pending_ai_booking(ctx.user_id)
    if not job:
        await ctx.reply("No pending booking to confirm. Open the app to see your schedule.")
        return CommandResult(success=False)

    await ctx.db.jobs.update(job.id, {"status": JobStatus.CONFIRMED, "booking_confirmed": True})
    await ctx.reply(CONFIRM_BOOKING_TEMPLATE.format(customer_name=job.customer_name))
    await log_inbound(ctx, InboundEventType.OTHER, job_id=job.id)

    logger.info(f"Confirmed job {job.id} via SMS reply")
    return CommandResult(success=True, event_type=InboundEventType.OTHER, job_id=job.id)


HANDLERS = [
    # Shares priority 14 with plain "4"; that one only matches the bare code
    CommandHandler(
        "code-4-booking", 14,
        lambda upper, original: original.upper().startswith("4 "),
        _code_4_booking,
    ),
    CommandHandler("book-prefix", 25, lambda upper, original: upper.startswith("BOOK "), _book_prefix),
    CommandHandler("confirm-booking", 30, lambda upper, original: upper in CONFIRM_KEYWORDS, _confirm_booking),
]
