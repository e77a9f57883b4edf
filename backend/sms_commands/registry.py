"""
Command Registry

One priority-ordered list of handlers. The first handler whose predicate
accepts the body runs; more specific prefixes carry lower priorities so
broader matches never shadow them.
"""

import logging
from typing import List, Optional

from logging_config import mask_phone, preview_body
from sentry_integration import capture_exception
from . import booking, help_command, job_actions, lead_status, notes, snooze, subscription
from .models import CommandContext, CommandHandler, CommandResult

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred processing your request."

COMMAND_HANDLERS: List[CommandHandler] = sorted(
    [
        *subscription.HANDLERS,
        *lead_status.HANDLERS,
        *notes.HANDLERS,
        *booking.HANDLERS,
        *snooze.HANDLERS,
        *job_actions.HANDLERS,
        *help_command.HANDLERS,
    ],
    key=lambda handler: handler.priority,
)


def find_handler(body_upper: str, body_original: str) -> Optional[CommandHandler]:
    for handler in COMMAND_HANDLERS:
        if handler.match(body_upper, body_original):
            return handler
    return None


async def execute_command(ctx: CommandContext) -> Optional[CommandResult]:
    """
    Dispatch an inbound SMS to its handler.

    Returns None when nothing matched. Handler errors are reported and
    turned into a generic failure result; they never reach the webhook.
    """
    handler = find_handler(ctx.body_upper, ctx.body)
    if not handler:
        logger.info(f"No handler for SMS from {mask_phone(ctx.from_phone)}: {preview_body(ctx.body)}")
        return None

    logger.info(f"Executing command '{handler.name}' for SMS from {mask_phone(ctx.from_phone)}")

    try:
        return await handler.execute(ctx)
    except Exception as e:
        logger.error(f"Error executing command '{handler.name}': {e}", exc_info=True)
        capture_exception(e, command=handler.name, user_id=ctx.user_id)
        # The reply and its audit row still go through this session
        await ctx.db.rollback()
        return CommandResult(success=False, message=GENERIC_ERROR_MESSAGE)
