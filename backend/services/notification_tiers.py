"""
Notification Tiers

Urgency classes that govern quiet-hours bypass, batching windows,
retry schedules and escalation for outbound operator SMS.

| Tier     | Quiet hours | Batch window | Retries | Delays (s)     |
|----------|-------------|--------------|---------|----------------|
| URGENT   | bypass      | none         | 3       | 1, 5, 30       |
| STANDARD | respect     | 5 min        | 3       | 5, 30, 120     |
| REMINDER | respect     | 10 min       | 2       | 30, 300        |
| BOOKED   | respect     | none         | 3       | 5, 30, 120     |
| DIGEST   | respect     | 1 hour       | 1       | 300            |
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple, Dict, Any

# Used once an attempt index runs past its tier's delay schedule
FALLBACK_RETRY_DELAY_SECONDS = 300

HIGH_VALUE_THRESHOLD = 1000


class NotificationTier(str, Enum):
    URGENT = "URGENT"
    STANDARD = "STANDARD"
    REMINDER = "REMINDER"
    BOOKED = "BOOKED"
    DIGEST = "DIGEST"


@dataclass(frozen=True)
class TierConfig:
    bypass_quiet_hours: bool
    max_batch_window: int  # seconds
    retry_attempts: int
    retry_delay_seconds: Tuple[int, ...]
    escalate_after_minutes: Optional[int] = None


TIER_CONFIG: Dict[NotificationTier, TierConfig] = {
    NotificationTier.URGENT: TierConfig(
        bypass_quiet_hours=True,
        max_batch_window=0,
        retry_attempts=3,
        retry_delay_seconds=(1, 5, 30),
    ),
    NotificationTier.STANDARD: TierConfig(
        bypass_quiet_hours=False,
        max_batch_window=300,
        retry_attempts=3,
        retry_delay_seconds=(5, 30, 120),
        escalate_after_minutes=120,
    ),
    NotificationTier.REMINDER: TierConfig(
        bypass_quiet_hours=False,
        max_batch_window=600,
        retry_attempts=2,
        retry_delay_seconds=(30, 300),
    ),
    NotificationTier.BOOKED: TierConfig(
        bypass_quiet_hours=False,
        max_batch_window=0,
        retry_attempts=3,
        retry_delay_seconds=(5, 30, 120),
    ),
    NotificationTier.DIGEST: TierConfig(
        bypass_quiet_hours=False,
        max_batch_window=3600,
        retry_attempts=1,
        retry_delay_seconds=(300,),
    ),
}

URGENT_EVENT_TYPES = {"abandoned_call", "emergency_alert"}
BOOKED_EVENT_TYPES = {"same_day_booking", "future_booking", "booking_confirmation"}
REMINDER_EVENT_TYPES = {"reminder", "follow_up", "snooze_expired"}
DIGEST_EVENT_TYPES = {"daily_digest", "weekly_summary"}


@dataclass
class RetryConfig:
    attempt: int          # 1-based number of the attempt being scheduled
    max_attempts: int
    delay_seconds: int
    next_retry_at: datetime


def get_tier_config(tier: NotificationTier) -> TierConfig:
    return TIER_CONFIG[NotificationTier(tier)]


def determine_notification_tier(context: Dict[str, Any]) -> NotificationTier:
    """
    Pick the tier for an outbound notification.

    ``context`` keys read: event_type, urgency, priority_color,
    is_repeat_caller, end_call_reason, estimated_value.
    """
    event_type = context.get("event_type")
    urgency = (context.get("urgency") or "").lower()
    priority_color = (context.get("priority_color") or "").lower()

    if urgency == "emergency" or event_type in URGENT_EVENT_TYPES:
        return NotificationTier.URGENT
    # red = callback risk, green = commercial
    if priority_color in ("red", "green"):
        return NotificationTier.URGENT
    if context.get("is_repeat_caller") and context.get("end_call_reason") == "customer_hangup":
        return NotificationTier.URGENT
    if (context.get("estimated_value") or 0) >= HIGH_VALUE_THRESHOLD:
        return NotificationTier.URGENT

    if event_type in BOOKED_EVENT_TYPES:
        return NotificationTier.BOOKED
    if event_type in REMINDER_EVENT_TYPES:
        return NotificationTier.REMINDER
    if event_type in DIGEST_EVENT_TYPES:
        return NotificationTier.DIGEST

    return NotificationTier.STANDARD


def should_bypass_quiet_hours(tier: NotificationTier) -> bool:
    return get_tier_config(tier).bypass_quiet_hours


def get_batch_window(tier: NotificationTier) -> int:
    return get_tier_config(tier).max_batch_window


def get_retry_config(
    tier: NotificationTier,
    current_attempt: int,
    now: Optional[datetime] = None,
) -> Optional[RetryConfig]:
    """
    Schedule the next retry after ``current_attempt`` failed retries.

    Returns None when the tier's attempts are exhausted; that failure is
    permanent and not escalated further.
    """
    config = get_tier_config(tier)
    if current_attempt >= config.retry_attempts:
        return None

    if current_attempt < len(config.retry_delay_seconds):
        delay = config.retry_delay_seconds[current_attempt]
    else:
        delay = FALLBACK_RETRY_DELAY_SECONDS

    now = now or datetime.now(timezone.utc)
    return RetryConfig(
        attempt=current_attempt + 1,
        max_attempts=config.retry_attempts,
        delay_seconds=delay,
        next_retry_at=now + timedelta(seconds=delay),
    )
