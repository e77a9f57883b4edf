from sms_integration.schema import InboundEventType
from .helpers import log_inbound
from .models import CommandContext, CommandHandler, CommandResult

HELP_MESSAGE = (
    "Codes: 1=Called 2=VM 3=Note 4=Booked 5=Lost\n"
    "Book: 4 TUE 2PM or BOOK TOMORROW 9AM\n"
    "Snooze: SNOOZE 1H, SNOOZE TOMORROW\n"
    "More: OK CALL STOP"
)


async def _help(ctx: CommandContext) -> CommandResult:
    await ctx.reply(HELP_MESSAGE)
    await log_inbound(ctx, InboundEventType.OTHER)
    return CommandResult(success=True, event_type=InboundEventType.OTHER)


HANDLERS = [
    CommandHandler("help", 70, lambda upper, original: upper in ("HELP", "?"), _help),
]
