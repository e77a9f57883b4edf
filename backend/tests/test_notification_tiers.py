"""
Unit Tests for Notification Tiers

Run with: pytest tests/test_notification_tiers.py -v
"""

import pytest
from datetime import datetime, timedelta, timezone

from services.notification_tiers import (
    NotificationTier,
    determine_notification_tier,
    should_bypass_quiet_hours,
    get_batch_window,
    get_retry_config,
    get_tier_config,
    FALLBACK_RETRY_DELAY_SECONDS,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestDetermineTier:
    """Test tier selection."""

    @pytest.mark.parametrize("context,expected", [
        ({"event_type": "abandoned_call"}, NotificationTier.URGENT),
        ({"event_type": "callback_request", "urgency": "Emergency"}, NotificationTier.URGENT),
        ({"event_type": "callback_request", "priority_color": "red"}, NotificationTier.URGENT),
        ({"event_type": "callback_request", "priority_color": "GREEN"}, NotificationTier.URGENT),
        ({"event_type": "callback_request", "estimated_value": 1000}, NotificationTier.URGENT),
        ({"event_type": "callback_request", "is_repeat_caller": True,
          "end_call_reason": "customer_hangup"}, NotificationTier.URGENT),
        ({"event_type": "same_day_booking"}, NotificationTier.BOOKED),
        ({"event_type": "future_booking", "priority_color": "blue"}, NotificationTier.BOOKED),
        ({"event_type": "snooze_expired"}, NotificationTier.REMINDER),
        ({"event_type": "daily_digest"}, NotificationTier.DIGEST),
        ({"event_type": "callback_request", "estimated_value": 999}, NotificationTier.STANDARD),
        ({"event_type": "cancellation"}, NotificationTier.STANDARD),
        ({}, NotificationTier.STANDARD),
    ])
    def test_tier_selection(self, context, expected):
        assert determine_notification_tier(context) == expected

    def test_repeat_caller_without_hangup_is_not_urgent(self):
        context = {"event_type": "callback_request", "is_repeat_caller": True, "end_call_reason": "completed"}
        assert determine_notification_tier(context) == NotificationTier.STANDARD


class TestTierBehaviour:
    """Test per-tier policy lookups."""

    def test_only_urgent_bypasses_quiet_hours(self):
        assert should_bypass_quiet_hours(NotificationTier.URGENT)
        for tier in (NotificationTier.STANDARD, NotificationTier.REMINDER,
                     NotificationTier.BOOKED, NotificationTier.DIGEST):
            assert not should_bypass_quiet_hours(tier)

    def test_batch_windows(self):
        assert get_batch_window(NotificationTier.URGENT) == 0
        assert get_batch_window(NotificationTier.STANDARD) == 300
        assert get_batch_window(NotificationTier.REMINDER) == 600
        assert get_batch_window(NotificationTier.BOOKED) == 0
        assert get_batch_window(NotificationTier.DIGEST) == 3600

    def test_tier_accepts_string_value(self):
        assert get_tier_config("DIGEST").retry_attempts == 1

    def test_standard_escalates_after_two_hours(self):
        assert get_tier_config(NotificationTier.STANDARD).escalate_after_minutes == 120


class TestRetryConfig:
    """Test retry scheduling."""

    def test_first_retry(self):
        config = get_retry_config(NotificationTier.STANDARD, 0, NOW)
        assert config.attempt == 1
        assert config.max_attempts == 3
        assert config.delay_seconds == 5
        assert config.next_retry_at == NOW + timedelta(seconds=5)

    def test_delays_follow_schedule(self):
        delays = [get_retry_config(NotificationTier.URGENT, i, NOW).delay_seconds for i in range(3)]
        assert delays == [1, 5, 30]

    def test_exhausted(self):
        assert get_retry_config(NotificationTier.STANDARD, 3, NOW) is None
        assert get_retry_config(NotificationTier.REMINDER, 2, NOW) is None
        assert get_retry_config(NotificationTier.DIGEST, 1, NOW) is None

    def test_fallback_delay_constant(self):
        assert FALLBACK_RETRY_DELAY_SECONDS == 300
