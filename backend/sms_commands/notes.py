"""
Note commands: "3 <text>", "NOTE: <text>" and free text.
"""

import logging

from sms_integration.schema import InboundEventType
from .helpers import (
    get_lead_context, update_alert_context_status, add_note_to_lead,
    log_inbound, no_lead_message,
)
from .models import CommandContext, CommandHandler, CommandResult

logger = logging.getLogger(__name__)

# Short replies that must never be filed as notes
RESERVED_WORDS = ("OK", "Y", "YES", "CONFIRM", "CALL", "PHONE", "NUMBER")

CODE_3_USAGE = 'Please include a note after 3 (e.g., "3 Customer prefers mornings")'
NOTE_USAGE = "Please include a note after NOTE:"


def _note_added(customer_name: str) -> str:
    return f"✓ Note added to {customer_name}"


async def _code_3_note(ctx: CommandContext) -> CommandResult:
    note_text = ctx.body[2:].strip()
    if not note_text:
        await ctx.reply(CODE_3_USAGE)
        return CommandResult(success=False)

    lead = await get_lead_context(ctx.db, ctx.from_phone)
    if not lead:
        await ctx.reply(no_lead_message("add note to"))
        return CommandResult(success=False)

    await add_note_to_lead(ctx, lead.lead_id, note_text)
    await update_alert_context_status(ctx, "3")
    await ctx.reply(_note_added(lead.customer_name))
    await log_inbound(ctx, InboundEventType.LEAD_NOTE, lead_id=lead.lead_id)

    logger.info(f"Note added to lead {lead.lead_id} via code 3")
    return CommandResult(
        success=True,
        reply_code="3",
        event_type=InboundEventType.LEAD_NOTE,
        lead_id=lead.lead_id,
    )


async def _note_prefix(ctx: CommandContext) -> CommandResult:
    if ctx.body_upper.startswith("NOTE:"):
        note_text = ctx.body[ctx.body.index(":") + 1:].strip()
    else:
        note_text = ctx.body[5:].strip()

    if not note_text:
        await ctx.reply(NOTE_USAGE)
        return CommandResult(success=False)

    lead = await get_lead_context(ctx.db, ctx.from_phone, fallback_to_customer=False)
    if not lead:
        await ctx.reply(no_lead_message("add note to"))
        return CommandResult(success=False)

    await add_note_to_lead(ctx, lead.lead_id, note_text)
    await ctx.reply(_note_added(lead.customer_name))
    await log_inbound(ctx, InboundEventType.LEAD_NOTE, lead_id=lead.lead_id)
    return CommandResult(success=True, event_type=InboundEventType.LEAD_NOTE, lead_id=lead.lead_id)


async def _free_text_note(ctx: CommandContext) -> CommandResult:
    """Anything else becomes a note when there is a lead to attach it to."""
    lead = await get_lead_context(ctx.db, ctx.from_phone, fallback_to_customer=False)
    if not lead:
        logger.info(f"Unrecognized SMS from user {ctx.user_id} with no alert context")
        await log_inbound(ctx, InboundEventType.OTHER)
        return CommandResult(success=False, event_type=InboundEventType.OTHER)

    await add_note_to_lead(ctx, lead.lead_id, ctx.body.strip())
    await ctx.reply(_note_added(lead.customer_name))
    await log_inbound(ctx, InboundEventType.LEAD_NOTE, lead_id=lead.lead_id)
    return CommandResult(success=True, event_type=InboundEventType.LEAD_NOTE, lead_id=lead.lead_id)


HANDLERS = [
    # After codes 1 and 2, before 4 and 5
    CommandHandler(
        "code-3-note", 13,
        lambda upper, original: original.startswith("3 ") or original.startswith("3:"),
        _code_3_note,
    ),
    CommandHandler(
        "note-prefix", 60,
        lambda upper, original: upper.startswith("NOTE:") or upper.startswith("NOTE "),
        _note_prefix,
    ),
    CommandHandler(
        "free-text-note", 100,
        lambda upper, original: len(upper) > 3 and upper not in RESERVED_WORDS,
        _free_text_note,
    ),
]
