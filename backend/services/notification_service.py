"""
Operator Notification Service

Decides whether and when an outbound operator SMS goes out, then sends it.

Delivery flow:
1. Preference gate (unsubscribe, per-event toggles; critical events bypass toggles)
2. Format the per-event template
3. Optional de-duplication
4. Quiet hours: queue until the window ends unless the tier bypasses it
5. Optional batching for tiers with a batch window
6. Send, audit in sms_log, save alert context on success, queue retry on failure
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from config import get_settings
from logging_config import mask_phone
from services.notification_policy import NotificationPolicy
from services.notification_tiers import (
    determine_notification_tier, should_bypass_quiet_hours,
    get_batch_window, get_retry_config,
)
from sms_integration.schema import (
    NotificationEventType, NotificationData, CRITICAL_EVENT_TYPES,
)
from sms_integration.sms_sender import OutboundSMS
from sms_integration.templates import format_notification_message
from sms_integration.time_parser import resolve_now, format_clock

logger = logging.getLogger(__name__)

# Preference column gating each non-critical event
EVENT_PREFERENCE_FIELDS = {
    NotificationEventType.SAME_DAY_BOOKING: "sms_same_day_booking",
    NotificationEventType.FUTURE_BOOKING: "sms_future_booking",
    NotificationEventType.CALLBACK_REQUEST: "sms_callback_request",
    NotificationEventType.SCHEDULE_CONFLICT: "sms_schedule_conflict",
    NotificationEventType.CANCELLATION: "sms_cancellation",
}

CONFLICT_WINDOW = timedelta(hours=1)


@dataclass
class GateDecision:
    send: bool
    reason: Optional[str] = None


@dataclass
class QuietHoursCheck:
    in_quiet_hours: bool
    quiet_ends_at: Optional[datetime] = None


@dataclass
class NotificationResult:
    sent: bool
    queued: bool = False
    reason: Optional[str] = None
    twilio_sid: Optional[str] = None


# ==================== PREFERENCE GATE ====================

def should_send_notification(prefs, event_type: NotificationEventType) -> GateDecision:
    """
    Consult stored preferences for one event.

    No stored preferences means send. A global unsubscribe blocks
    everything, including critical events.
    """
    if prefs is None:
        return GateDecision(send=True)

    if prefs.sms_unsubscribed:
        return GateDecision(send=False, reason="User has unsubscribed from SMS")

    if event_type in CRITICAL_EVENT_TYPES:
        return GateDecision(send=True)

    field_name = EVENT_PREFERENCE_FIELDS.get(event_type)
    if field_name and getattr(prefs, field_name) is False:
        return GateDecision(send=False, reason=f"User disabled SMS for {event_type.value}")

    return GateDecision(send=True)


# ==================== QUIET HOURS ====================

def parse_clock(value: str) -> time:
    """'21:00' -> time(21, 0)"""
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def check_quiet_hours(start: str, end: str, tz, now: Optional[datetime] = None) -> QuietHoursCheck:
    """
    Is ``now`` inside the quiet window, in the operator's timezone?

    A window with start > end spans midnight. Start is inclusive, end
    exclusive. ``quiet_ends_at`` is the next time the window ends.
    """
    local_now = resolve_now(now, tz)
    start_time, end_time = parse_clock(start), parse_clock(end)
    current = local_now.time()

    if start_time > end_time:
        in_quiet = current >= start_time or current < end_time
    else:
        in_quiet = start_time <= current < end_time

    if not in_quiet:
        return QuietHoursCheck(in_quiet_hours=False)

    ends_at = local_now.replace(hour=end_time.hour, minute=end_time.minute, second=0, microsecond=0)
    if ends_at <= local_now:
        ends_at += timedelta(days=1)

    return QuietHoursCheck(in_quiet_hours=True, quiet_ends_at=ends_at)


def check_user_quiet_hours(prefs, tz, now: Optional[datetime] = None) -> QuietHoursCheck:
    if prefs is None or not prefs.quiet_hours_enabled:
        return QuietHoursCheck(in_quiet_hours=False)
    return check_quiet_hours(
        prefs.quiet_hours_start or "19:00",
        prefs.quiet_hours_end or "06:00",
        tz,
        now,
    )


# ==================== EVENT SELECTION ====================

def determine_event_type(
    scheduled_at: Optional[datetime],
    tz,
    has_conflict: bool = False,
    now: Optional[datetime] = None,
) -> NotificationEventType:
    """Conflict first; no time means a callback request; else same-day or future booking."""
    if has_conflict:
        return NotificationEventType.SCHEDULE_CONFLICT
    if not scheduled_at:
        return NotificationEventType.CALLBACK_REQUEST

    local_now = resolve_now(now, tz)
    if scheduled_at.astimezone(local_now.tzinfo).date() == local_now.date():
        return NotificationEventType.SAME_DAY_BOOKING
    return NotificationEventType.FUTURE_BOOKING


# ==================== SERVICE ====================

class NotificationService:
    """
    Sends operator notifications subject to preferences and policy.

    Usage:
        service = NotificationService(repos, sender)
        result = await service.send_operator_notification(
            user_id, NotificationEventType.SAME_DAY_BOOKING, data,
            operator_phone="+15551234567", tz="America/Chicago", job_id=job.id,
        )
    """

    def __init__(self, repos, sender, settings=None):
        self.repos = repos
        self.sender = sender
        self.settings = settings or get_settings()
        self.policy = NotificationPolicy(repos, self.settings)

    async def check_schedule_conflicts(
        self,
        user_id: str,
        scheduled_at: datetime,
        exclude_job_id: Optional[str] = None,
    ):
        """Live jobs within an hour either side of ``scheduled_at``"""
        return await self.repos.jobs.find_conflicts(
            user_id,
            scheduled_at - CONFLICT_WINDOW,
            scheduled_at + CONFLICT_WINDOW,
            exclude_job_id=exclude_job_id,
        )

    async def save_alert_context(
        self,
        operator_phone: str,
        user_id: str,
        alert_type: str,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        lead_id: Optional[str] = None,
        job_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ):
        """Remember what was just sent so a bare reply like "1" can be resolved."""
        return await self.repos.alert_contexts.create(
            operator_phone=operator_phone,
            user_id=user_id,
            alert_type=alert_type,
            lead_id=lead_id,
            job_id=job_id,
            customer_id=customer_id,
            customer_phone=customer_phone,
            customer_name=customer_name,
        )

    async def send_operator_notification(
        self,
        user_id: str,
        event_type: NotificationEventType,
        data: NotificationData,
        operator_phone: str,
        tz: Optional[str] = None,
        job_id: Optional[str] = None,
        lead_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        batch: bool = False,
        now: Optional[datetime] = None,
    ) -> NotificationResult:
        """
        Deliver (or defer) one operator notification.

        Args:
            user_id: Operator user ID
            event_type: Notification event
            data: Template inputs
            operator_phone: Destination number
            tz: Operator timezone (defaults to DEFAULT_TIMEZONE)
            job_id / lead_id / customer_id: Records the alert refers to
            batch: Allow holding the message for the tier's batch window
            now: Reference time

        Returns:
            NotificationResult(sent, queued, reason, twilio_sid)
        """
        tz = tz or self.settings.DEFAULT_TIMEZONE
        now_utc = now.astimezone(timezone.utc) if now else datetime.now(timezone.utc)

        prefs = await self.repos.preferences.get(user_id)
        gate = should_send_notification(prefs, event_type)
        if not gate.send:
            logger.info(f"Notification {event_type.value} for user {user_id} blocked: {gate.reason}")
            return NotificationResult(sent=False, reason=gate.reason)

        message_body = format_notification_message(event_type, data, tz)
        tier = determine_notification_tier({
            "event_type": event_type.value,
            "urgency": data.urgency,
            "priority_color": data.priority_color,
            "estimated_value": data.estimated_value,
        })

        if lead_id:
            duplicate = await self.policy.check_duplicate(user_id, lead_id, event_type.value, now=now_utc)
            if duplicate.is_duplicate:
                return NotificationResult(
                    sent=False,
                    reason=f"Duplicate of message {duplicate.previous_message_id}",
                )
        elif not job_id:
            # Nothing to key on: fall back to comparing the wording
            similar = await self.policy.check_content_similarity(user_id, message_body, now=now_utc)
            if similar.is_similar:
                return NotificationResult(
                    sent=False,
                    reason=f"Similar to message {similar.similar_message_id}",
                )

        queue_context = {
            "customer_name": data.customer_name,
            "customer_phone": data.customer_phone,
            "customer_id": customer_id,
            "priority_color": data.priority_color,
        }

        if not should_bypass_quiet_hours(tier):
            quiet = check_user_quiet_hours(prefs, tz, now_utc)
            if quiet.in_quiet_hours:
                await self.repos.queue.enqueue(
                    user_id=user_id,
                    lead_id=lead_id,
                    job_id=job_id,
                    event_type=event_type.value,
                    tier=tier.value,
                    message_body=message_body,
                    context=queue_context,
                    send_at=quiet.quiet_ends_at.astimezone(timezone.utc),
                )
                return NotificationResult(
                    sent=False,
                    queued=True,
                    reason=f"Queued until {format_clock(quiet.quiet_ends_at)}",
                )

        if batch and get_batch_window(tier) > 0:
            await self.policy.add_to_batch(
                user_id, event_type.value, tier, message_body,
                lead_id=lead_id, job_id=job_id, context=queue_context, now=now_utc,
            )
            return NotificationResult(sent=False, queued=True, reason=f"Batched ({tier.value})")

        message = OutboundSMS(
            to=operator_phone,
            body=message_body,
            user_id=user_id,
            event_type=event_type.value,
            lead_id=lead_id,
            job_id=job_id,
        )
        result = await self.sender.send(message)

        if not result.success:
            retry_config = get_retry_config(tier, 0, now_utc)
            if retry_config:
                await self.policy.queue_for_retry(message, retry_config, tier, original_message_id=result.log_id)
            return NotificationResult(sent=False, reason="SMS send failed")

        await self.save_alert_context(
            operator_phone=operator_phone,
            user_id=user_id,
            alert_type=event_type.value,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            lead_id=lead_id,
            job_id=job_id,
            customer_id=customer_id,
        )
        logger.info(f"Notification {event_type.value} sent to {mask_phone(operator_phone)} ({tier.value})")
        return NotificationResult(sent=True, twilio_sid=result.twilio_sid)
