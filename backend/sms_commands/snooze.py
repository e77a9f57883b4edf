"""
SNOOZE - remind me later about the lead in context.

Formats: SNOOZE 1H, SNOOZE 30M, SNOOZE TOMORROW, SNOOZE TOMORROW PM
"""

import logging

from sms_integration.schema import InboundEventType
from sms_integration.time_parser import (
    parse_snooze_from_sms, generate_snooze_confirmation, resolve_now,
)
from .helpers import get_lead_context, add_note_to_lead, log_inbound, no_lead_message
from .models import CommandContext, CommandHandler, CommandResult

logger = logging.getLogger(__name__)

SNOOZE_FORMAT_HELP = "Snooze format: SNOOZE 1H, SNOOZE 3H, SNOOZE TOMORROW, SNOOZE TOMORROW PM"


async def _snooze(ctx: CommandContext) -> CommandResult:
    lead = await get_lead_context(ctx.db, ctx.from_phone)
    if not lead:
        await ctx.reply(no_lead_message("snooze"))
        return CommandResult(success=False)

    parsed = parse_snooze_from_sms(ctx.body[6:].strip(), now=ctx.now, tz=ctx.timezone)
    if not parsed.success or not parsed.snooze_until:
        await ctx.reply(SNOOZE_FORMAT_HELP)
        return CommandResult(success=False)

    await ctx.db.leads.update(lead.lead_id, {
        "remind_at": parsed.snooze_until,
        "callback_outcome": "try_again",
        "callback_outcome_at": ctx.now,
    })
    await add_note_to_lead(ctx, lead.lead_id, f"Snoozed until {parsed.display_text}")

    local_now = resolve_now(ctx.now, ctx.timezone)
    await ctx.reply(generate_snooze_confirmation(lead.customer_name, parsed.snooze_until, local_now))
    await log_inbound(ctx, InboundEventType.LEAD_SNOOZE, lead_id=lead.lead_id)

    logger.info(f"Lead {lead.lead_id} snoozed until {parsed.snooze_until.isoformat()}")
    return CommandResult(success=True, event_type=InboundEventType.LEAD_SNOOZE, lead_id=lead.lead_id)


HANDLERS = [
    CommandHandler("snooze", 20, lambda upper, original: upper.startswith("SNOOZE"), _snooze),
]
