"""
Job replies: CALL for the customer's number, DONE to close a flagged job.
"""

import logging

from database.sms_models import JobStatus
from sms_integration.schema import InboundEventType
from sms_integration.templates import CUSTOMER_PHONE_TEMPLATE, COMPLETE_JOB_TEMPLATE
from .helpers import log_inbound
from .models import CommandContext, CommandHandler, CommandResult

logger = logging.getLogger(__name__)

CALL_KEYWORDS = ("CALL", "PHONE", "NUMBER")
COMPLETE_KEYWORDS = ("COMPLETE", "DONE", "FINISHED")


async def _call_info(ctx: CommandContext) -> CommandResult:
    job = await ctx.db.jobs.latest_open(ctx.user_id)
    if not job or not job.customer_phone:
        await ctx.reply("No recent job found. Open the app to see your jobs.")
        return CommandResult(success=False)

    await ctx.reply(CUSTOMER_PHONE_TEMPLATE.format(
        customer_name=job.customer_name,
        customer_phone=job.customer_phone,
    ))
    await log_inbound(ctx, InboundEventType.OTHER, job_id=job.id)
    return CommandResult(success=True, event_type=InboundEventType.OTHER, job_id=job.id)


async def _complete_job(ctx: CommandContext) -> CommandResult:
    job = await ctx.db.jobs.latest_needing_action(ctx.user_id)
    if not job:
        await ctx.reply("No jobs currently flagged as needing action.")
        return CommandResult(success=False)

    await ctx.db.jobs.update(job.id, {
        "status": JobStatus.COMPLETE,
        "needs_action": False,
        "completed_at": ctx.now,
    })
    await ctx.reply(COMPLETE_JOB_TEMPLATE.format(customer_name=job.customer_name))
    await log_inbound(ctx, InboundEventType.OTHER, job_id=job.id)

    logger.info(f"Job {job.id} marked complete via SMS")
    return CommandResult(success=True, event_type=InboundEventType.OTHER, job_id=job.id)


HANDLERS = [
    CommandHandler("call-info", 40, lambda upper, original: upper in CALL_KEYWORDS, _call_info),
    CommandHandler("complete-job", 45, lambda upper, original: upper in COMPLETE_KEYWORDS, _complete_job),
]
