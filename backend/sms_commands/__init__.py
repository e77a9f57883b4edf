"""
SMS Commands Module

Inbound operator replies ("1", "SNOOZE 3H", "4 TUE 2PM", "NOTE: gate code 1234")
dispatched through a priority-ordered handler list.

Usage:
    from sms_commands import CommandContext, execute_command

    result = await execute_command(ctx)
"""

from .models import CommandContext, CommandResult, CommandHandler, LeadContext
from .helpers import (
    get_lead_context, update_alert_context_status, add_note_to_lead,
    log_inbound, normalize_phone,
)
from .registry import COMMAND_HANDLERS, GENERIC_ERROR_MESSAGE, find_handler, execute_command

__all__ = [
    'CommandContext',
    'CommandResult',
    'CommandHandler',
    'LeadContext',
    'get_lead_context',
    'update_alert_context_status',
    'add_note_to_lead',
    'log_inbound',
    'normalize_phone',
    'COMMAND_HANDLERS',
    'GENERIC_ERROR_MESSAGE',
    'find_handler',
    'execute_command',
]
