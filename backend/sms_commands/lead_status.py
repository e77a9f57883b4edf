"""
Lead status replies.

Numeric codes answer the most recent alert:
    1 = contacted, 2 = voicemail, 4 = scheduled, 5 = lost
Words do the same for operators who prefer them:
    CONTACTED/CALLED, SCHEDULED/BOOKED, CLOSED/LOST
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from database.sms_models import LeadStatus
from sms_integration.schema import InboundEventType
from .helpers import (
    get_lead_context, update_alert_context_status, add_note_to_lead,
    log_inbound, no_lead_message,
)
from .models import CommandContext, CommandHandler, CommandResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusCode:
    code: str
    status: LeadStatus
    note_text: str
    label: str
    lost_reason: Optional[str] = None


@dataclass(frozen=True)
class StatusWord:
    keywords: Tuple[str, ...]
    status: LeadStatus
    label: str


STATUS_CODES = (
    StatusCode("1", LeadStatus.CALLBACK_REQUESTED, "Contacted via phone", "CONTACTED"),
    StatusCode("2", LeadStatus.VOICEMAIL_LEFT, "Left voicemail", "VOICEMAIL"),
    StatusCode("4", LeadStatus.CONVERTED, "Scheduled appointment", "SCHEDULED"),
    StatusCode("5", LeadStatus.LOST, "Customer not interested", "LOST",
               lost_reason="Not interested (marked via SMS)"),
)

STATUS_WORDS = (
    StatusWord(("CONTACTED", "CALLED"), LeadStatus.CONTACTED, "CONTACTED"),
    StatusWord(("SCHEDULED", "BOOKED"), LeadStatus.CONVERTED, "SCHEDULED"),
    StatusWord(("CLOSED", "LOST"), LeadStatus.LOST, "CLOSED"),
)


def _code_handler(config: StatusCode) -> CommandHandler:
    async def execute(ctx: CommandContext) -> CommandResult:
        lead = await get_lead_context(ctx.db, ctx.from_phone)
        if not lead:
            await ctx.reply(no_lead_message("update"))
            return CommandResult(success=False)

        updates = {"status": config.status}
        if config.lost_reason:
            updates["lost_reason"] = config.lost_reason
        await ctx.db.leads.update(lead.lead_id, updates)

        await add_note_to_lead(ctx, lead.lead_id, config.note_text)
        await update_alert_context_status(ctx, config.code)
        await ctx.reply(f"✓ {lead.customer_name} marked {config.label}")
        await log_inbound(ctx, InboundEventType.LEAD_UPDATE, lead_id=lead.lead_id)

        logger.info(f"Lead {lead.lead_id} marked {config.status.value} via code {config.code}")
        return CommandResult(
            success=True,
            reply_code=config.code,
            event_type=InboundEventType.LEAD_UPDATE,
            lead_id=lead.lead_id,
        )

    return CommandHandler(
        name=f"code-{config.code}",
        priority=10 + int(config.code),
        match=lambda upper, original: upper == config.code,
        execute=execute,
    )


def _word_handler(index: int, config: StatusWord) -> CommandHandler:
    async def execute(ctx: CommandContext) -> CommandResult:
        lead = await get_lead_context(ctx.db, ctx.from_phone, fallback_to_customer=False)
        if not lead:
            await ctx.reply(no_lead_message("update"))
            return CommandResult(success=False)

        await ctx.db.leads.update(lead.lead_id, {"status": config.status})
        await ctx.reply(f"✓ {lead.customer_name} marked {config.label}")
        await log_inbound(ctx, InboundEventType.LEAD_UPDATE, lead_id=lead.lead_id)

        logger.info(f"Lead {lead.lead_id} marked {config.status.value} via SMS")
        return CommandResult(success=True, event_type=InboundEventType.LEAD_UPDATE, lead_id=lead.lead_id)

    return CommandHandler(
        name=f"word-{config.keywords[0].lower()}",
        priority=50 + index,
        match=lambda upper, original: upper in config.keywords,
        execute=execute,
    )


HANDLERS = (
    [_code_handler(config) for config in STATUS_CODES]
    + [_word_handler(i, config) for i, config in enumerate(STATUS_WORDS)]
)
