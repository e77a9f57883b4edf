"""
STOP / START - carrier-mandated subscription keywords.

No reply is sent; Twilio answers STOP and START itself.
"""

import logging

from sms_integration.schema import InboundEventType
from .helpers import log_inbound
from .models import CommandContext, CommandHandler, CommandResult

logger = logging.getLogger(__name__)

STOP_KEYWORDS = ("STOP", "UNSUBSCRIBE", "CANCEL", "END", "QUIT")
START_KEYWORDS = ("START", "UNSTOP", "SUBSCRIBE")


async def _stop(ctx: CommandContext) -> CommandResult:
    await ctx.db.preferences.upsert(ctx.user_id, {
        "sms_unsubscribed": True,
        "sms_unsubscribed_at": ctx.now,
    })
    await log_inbound(ctx, InboundEventType.OTHER)
    logger.info(f"User {ctx.user_id} unsubscribed from SMS")
    return CommandResult(success=True, event_type=InboundEventType.OTHER)


async def _start(ctx: CommandContext) -> CommandResult:
    await ctx.db.preferences.upsert(ctx.user_id, {
        "sms_unsubscribed": False,
        "sms_unsubscribed_at": None,
    })
    await log_inbound(ctx, InboundEventType.OTHER)
    logger.info(f"User {ctx.user_id} resubscribed to SMS")
    return CommandResult(success=True, event_type=InboundEventType.OTHER)


HANDLERS = [
    # Legal requirement, checked before anything else
    CommandHandler("stop", 1, lambda upper, original: upper in STOP_KEYWORDS, _stop),
    CommandHandler("start", 2, lambda upper, original: upper in START_KEYWORDS, _start),
]
