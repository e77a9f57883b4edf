"""
Notification Sweeps

Periodic jobs triggered by the cron router. Each sweep reads due rows,
acts on them and writes the outcome back, so running one twice in a row
is harmless.

Sweeps:
- process_notification_queue: deliver queued notifications (quiet hours, batches)
- process_retry_queue: redeliver failed sends per tier retry policy
- run_escalation_sweep: flag unanswered leads red
- process_stale_jobs: alert on jobs left in 'new' too long
- send_daily_digests: one summary SMS per operator per day
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from config import get_settings
from database.sms_models import RetryStatus
from logging_config import mask_phone
from services.notification_policy import NotificationPolicy, build_batch
from services.notification_service import (
    NotificationService, check_user_quiet_hours,
)
from services.notification_tiers import (
    NotificationTier, should_bypass_quiet_hours, get_retry_config,
)
from sms_integration.schema import (
    NotificationEventType, NotificationData,
    BATCH_SUMMARY_EVENT_TYPE, DAILY_DIGEST_EVENT_TYPE,
)
from sms_integration.sms_sender import OutboundSMS
from sms_integration.templates import format_daily_digest
from sms_integration.time_parser import resolve_now

logger = logging.getLogger(__name__)

NO_PHONE_ERROR = "No phone number configured"
UNSUBSCRIBED_ERROR = "User has unsubscribed from SMS"

# One digest per operator inside this window
DIGEST_DEDUP_WINDOW_MINUTES = 12 * 60


def _utc(now: Optional[datetime]) -> datetime:
    return now.astimezone(timezone.utc) if now else datetime.now(timezone.utc)


def _as_tier(value: Optional[str]) -> NotificationTier:
    return NotificationTier(value) if value else NotificationTier.STANDARD


class NotificationSweeps:
    """
    Cron-driven maintenance of the notification tables.

    Usage:
        sweeps = NotificationSweeps(repos, sender)
        stats = await sweeps.process_notification_queue()
    """

    def __init__(self, repos, sender, settings=None):
        self.repos = repos
        self.sender = sender
        self.settings = settings or get_settings()
        self.policy = NotificationPolicy(repos, self.settings)
        self.notifications = NotificationService(repos, sender, self.settings)

    # ==================== QUEUE ====================

    async def process_notification_queue(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Deliver due queue entries, grouped per operator.

        Per operator: no phone fails the entries, an unsubscribe cancels
        them, quiet hours push non-bypass entries to the window end, and
        entries covering several leads are folded into one summary SMS.
        """
        now = _utc(now)
        entries = await self.repos.queue.list_due(now, self.settings.QUEUE_BATCH_SIZE)

        results = {
            "processed": len(entries),
            "sent": 0,
            "failed": 0,
            "requeued": 0,
            "cancelled": 0,
            "consolidated": 0,
            "errors": 0,
        }
        if not entries:
            return results

        by_user: "OrderedDict[str, List]" = OrderedDict()
        for entry in entries:
            by_user.setdefault(entry.user_id, []).append(entry)

        groups = list(by_user.items())
        for index, (user_id, user_entries) in enumerate(groups):
            try:
                await self._process_user_entries(user_id, user_entries, now, results)
            except Exception as e:
                logger.error(f"Error processing notification queue for user {user_id}: {e}")
                results["errors"] += 1
                await self.repos.rollback(*[entry for _, later in groups[index + 1:] for entry in later])

        logger.info(
            f"Notification queue processed: {results['sent']} sent, {results['failed']} failed, "
            f"{results['requeued']} requeued"
        )
        return results

    async def _process_user_entries(self, user_id: str, entries: List, now: datetime, results: Dict[str, Any]):
        user = await self.repos.users.get(user_id)
        if not user or not user.phone:
            for entry in entries:
                if await self.repos.queue.mark_failed(entry.id, NO_PHONE_ERROR):
                    results["failed"] += 1
            return

        prefs = await self.repos.preferences.get(user_id)
        if prefs is not None and prefs.sms_unsubscribed:
            results["cancelled"] += await self.repos.queue.mark_cancelled(
                [entry.id for entry in entries], UNSUBSCRIBED_ERROR
            )
            return

        tz = user.timezone or self.settings.DEFAULT_TIMEZONE
        quiet = check_user_quiet_hours(prefs, tz, now)
        if quiet.in_quiet_hours:
            deliverable = []
            for entry in entries:
                if should_bypass_quiet_hours(_as_tier(entry.tier)):
                    deliverable.append(entry)
                elif await self.repos.queue.reschedule(entry.id, quiet.quiet_ends_at.astimezone(timezone.utc)):
                    results["requeued"] += 1
            entries = deliverable

        if not entries:
            return

        batch = build_batch(entries)
        if batch:
            await self._send_batch(user, batch, entries, now, results)
            return

        for entry in entries:
            await self._send_entry(user, entry, now, results)

    async def _send_batch(self, user, batch, entries: List, now: datetime, results: Dict[str, Any]):
        message = OutboundSMS(
            to=user.phone,
            body=batch.message_body,
            user_id=user.id,
            event_type=BATCH_SUMMARY_EVENT_TYPE,
        )
        result = await self.sender.send(message)

        if result.success:
            results["sent"] += await self.repos.queue.mark_many_sent(batch.entry_ids, result.twilio_sid, now)
            results["consolidated"] += 1
            logger.info(f"Sent consolidated summary of {batch.lead_count} leads to {mask_phone(user.phone)}")
            return

        for entry in entries:
            if await self.repos.queue.mark_failed(entry.id, result.error or "SMS send failed"):
                results["failed"] += 1
        retry_config = get_retry_config(NotificationTier.STANDARD, 0, now)
        if retry_config:
            await self.policy.queue_for_retry(
                message, retry_config, NotificationTier.STANDARD, original_message_id=result.log_id
            )

    async def _send_entry(self, user, entry, now: datetime, results: Dict[str, Any]):
        message = OutboundSMS(
            to=user.phone,
            body=entry.message_body,
            user_id=user.id,
            event_type=entry.event_type,
            lead_id=entry.lead_id,
            job_id=entry.job_id,
        )
        result = await self.sender.send(message)

        if not result.success:
            if await self.repos.queue.mark_failed(entry.id, result.error or "SMS send failed"):
                results["failed"] += 1
            tier = _as_tier(entry.tier)
            retry_config = get_retry_config(tier, 0, now)
            if retry_config:
                await self.policy.queue_for_retry(message, retry_config, tier, original_message_id=result.log_id)
            return

        await self.repos.queue.mark_sent(entry.id, result.twilio_sid, now)
        results["sent"] += 1

        context = entry.context or {}
        await self.notifications.save_alert_context(
            operator_phone=user.phone,
            user_id=user.id,
            alert_type=entry.event_type,
            customer_name=context.get("customer_name"),
            customer_phone=context.get("customer_phone"),
            lead_id=entry.lead_id,
            job_id=entry.job_id,
            customer_id=context.get("customer_id"),
        )

    # ==================== RETRIES ====================

    async def process_retry_queue(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Redeliver due retry rows.

        Each row ends as sent or failed. A failure with attempts left
        under its tier schedules the next attempt as a new row.
        """
        now = _utc(now)
        retries = await self.repos.retries.list_due(now, self.settings.RETRY_BATCH_SIZE)
        results = {"processed": len(retries), "sent": 0, "failed": 0, "rescheduled": 0, "errors": 0}

        for index, retry in enumerate(retries):
            retry_id = retry.id
            try:
                message = OutboundSMS(
                    to=retry.to_phone,
                    body=retry.message_body,
                    user_id=retry.user_id,
                    event_type=retry.event_type,
                    lead_id=retry.lead_id,
                    job_id=retry.job_id,
                )

                prefs = await self.repos.preferences.get(retry.user_id) if retry.user_id else None
                if prefs is not None and prefs.sms_unsubscribed:
                    await self.repos.retries.mark_completed(retry.id, RetryStatus.FAILED, now)
                    results["failed"] += 1
                    continue

                result = await self.sender.send(message)
                if result.success:
                    if await self.repos.retries.mark_completed(retry.id, RetryStatus.SENT, now, result.twilio_sid):
                        results["sent"] += 1
                    continue

                if not await self.repos.retries.mark_completed(retry.id, RetryStatus.FAILED, now):
                    continue
                results["failed"] += 1

                tier = _as_tier(retry.tier)
                retry_config = get_retry_config(tier, retry.retry_attempt, now)
                if retry_config:
                    await self.policy.queue_for_retry(
                        message, retry_config, tier, original_message_id=retry.original_message_id
                    )
                    results["rescheduled"] += 1
                else:
                    logger.warning(
                        f"Giving up on {retry.event_type} to {mask_phone(retry.to_phone)} "
                        f"after {retry.retry_attempt} retries"
                    )
            except Exception as e:
                logger.error(f"Error processing retry {retry_id}: {e}")
                results["errors"] += 1
                await self.repos.rollback(*retries[index + 1:])

        return results

    # ==================== ESCALATION ====================

    async def run_escalation_sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        escalated = await self.policy.run_escalation_sweep(now=now)
        return {"processed": len(escalated), "escalated_lead_ids": escalated}

    # ==================== STALE JOBS ====================

    async def process_stale_jobs(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Flag jobs still 'new' after STALE_JOB_HOURS and alert their operator."""
        now = _utc(now)
        threshold = now - timedelta(hours=self.settings.STALE_JOB_HOURS)
        jobs = await self.repos.jobs.list_stale(threshold, self.settings.STALE_JOB_BATCH_SIZE)
        results = {"processed": len(jobs), "alerted": 0, "skipped": 0, "errors": 0}

        for index, job in enumerate(jobs):
            job_id = job.id
            try:
                hours_waiting = int((now - job.created_at).total_seconds() // 3600)
                await self.repos.jobs.update(job.id, {
                    "needs_action": True,
                    "needs_action_note": f"Job has been waiting for {hours_waiting} hours without progress",
                })

                user = await self.repos.users.get(job.user_id)
                if not user or not user.phone:
                    logger.info(f"Stale job {job.id}: no phone number configured for user")
                    results["skipped"] += 1
                    continue

                result = await self.notifications.send_operator_notification(
                    user.id,
                    NotificationEventType.STALE_JOB_ALERT,
                    NotificationData(
                        customer_name=job.customer_name or "Customer",
                        customer_phone=job.customer_phone,
                        hours_waiting=hours_waiting,
                    ),
                    operator_phone=user.phone,
                    tz=user.timezone,
                    job_id=job.id,
                    lead_id=job.lead_id,
                    now=now,
                )
                if result.sent or result.queued:
                    results["alerted"] += 1
                else:
                    logger.info(f"Stale job {job.id} not alerted: {result.reason}")
                    results["skipped"] += 1
            except Exception as e:
                logger.error(f"Error processing stale job {job_id}: {e}")
                results["errors"] += 1
                await self.repos.rollback(*jobs[index + 1:])

        return results

    # ==================== DAILY DIGEST ====================

    async def send_daily_digests(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Send each operator a summary of today's leads.

        Skipped when the operator is unsubscribed, in quiet hours, already
        got a digest in the last 12 hours, or had no leads today.
        """
        now = _utc(now)
        users = await self.repos.users.list_with_phone()
        results = {"processed": len(users), "sent": 0, "failed": 0, "skipped": 0, "errors": 0}

        for index, user in enumerate(users):
            user_id = user.id
            try:
                prefs = await self.repos.preferences.get(user.id)
                if prefs is not None and prefs.sms_unsubscribed:
                    results["skipped"] += 1
                    continue

                tz = user.timezone or self.settings.DEFAULT_TIMEZONE
                if check_user_quiet_hours(prefs, tz, now).in_quiet_hours:
                    results["skipped"] += 1
                    continue

                duplicate = await self.policy.check_duplicate(
                    user.id, None, DAILY_DIGEST_EVENT_TYPE,
                    window_minutes=DIGEST_DEDUP_WINDOW_MINUTES, now=now,
                )
                if duplicate.is_duplicate:
                    results["skipped"] += 1
                    continue

                local_now = resolve_now(now, tz)
                midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
                counts = await self.repos.leads.digest_counts(user.id, midnight.astimezone(timezone.utc))
                if not counts["leads"]:
                    results["skipped"] += 1
                    continue

                message = OutboundSMS(
                    to=user.phone,
                    body=format_daily_digest(counts),
                    user_id=user.id,
                    event_type=DAILY_DIGEST_EVENT_TYPE,
                )
                result = await self.sender.send(message)
                if result.success:
                    results["sent"] += 1
                    continue

                results["failed"] += 1
                retry_config = get_retry_config(NotificationTier.DIGEST, 0, now)
                if retry_config:
                    await self.policy.queue_for_retry(
                        message, retry_config, NotificationTier.DIGEST, original_message_id=result.log_id
                    )
            except Exception as e:
                logger.error(f"Error sending daily digest to user {user_id}: {e}")
                results["errors"] += 1
                await self.repos.rollback(*users[index + 1:])

        return results
