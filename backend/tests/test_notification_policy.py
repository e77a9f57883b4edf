"""
Unit Tests for Notification Policy

Tests smart-delivery rules:
- De-duplication window
- Jaccard content similarity
- Batching and consolidation
- Escalation of unanswered alerts (idempotent)
- Retry queueing

Run with: pytest tests/test_notification_policy.py -v
"""

import pytest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from config import Settings
from database.sms_models import PriorityColor
from services.notification_policy import (
    NotificationPolicy,
    ESCALATION_REASON,
    NON_ESCALATING_ALERT_TYPES,
    normalize_for_comparison,
    calculate_similarity,
    build_consolidated_message,
    build_batch,
)
from services.notification_tiers import NotificationTier, get_retry_config
from sms_integration.sms_sender import OutboundSMS

NOW = datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return Settings(ENVIRONMENT="development")


@pytest.fixture
def repos():
    repos = MagicMock()
    for name in ("sms_log", "queue", "alert_contexts", "leads", "retries"):
        setattr(repos, name, AsyncMock())
    return repos


@pytest.fixture
def policy(repos, settings):
    return NotificationPolicy(repos, settings)


def queue_entry(entry_id, lead_id, tier="STANDARD", priority_color=None):
    return SimpleNamespace(
        id=entry_id,
        lead_id=lead_id,
        tier=tier,
        context={"priority_color": priority_color} if priority_color else {},
    )


class TestSimilarity:
    """Test normalization and Jaccard similarity."""

    def test_normalize_strips_times_dates_and_punctuation(self):
        text = "CALLLOCK: New booking TODAY\nJohn · 2:30 PM, 12/20!"
        assert normalize_for_comparison(text) == "calllock new booking today john"

    def test_identical_after_normalization(self):
        first = "CALLLOCK: Booking\nJohn Smith at 2:00 PM"
        second = "calllock booking john smith at 4:15 pm"
        assert calculate_similarity(first, second) == 1.0

    def test_jaccard_ratio(self):
        # {a, b, c} vs {a, b, d}: 2 shared of 4
        assert calculate_similarity("a b c", "a b d") == 0.5

    def test_disjoint(self):
        assert calculate_similarity("hello there", "goodbye now") == 0.0

    def test_both_empty(self):
        assert calculate_similarity("", "!!!") == 1.0


class TestDeduplication:
    """Test duplicate suppression."""

    @pytest.mark.asyncio
    async def test_previous_send_in_window_is_duplicate(self, policy, repos):
        repos.sms_log.latest_outbound = AsyncMock(return_value=SimpleNamespace(
            id="log-1", created_at=NOW - timedelta(minutes=2)
        ))

        result = await policy.check_duplicate("user-1", "lead-1", "same_day_booking", now=NOW)

        assert result.is_duplicate
        assert result.previous_message_id == "log-1"
        assert result.time_since_last == timedelta(minutes=2)
        args = repos.sms_log.latest_outbound.await_args
        assert args.args == ("user-1", "lead-1", "same_day_booking")
        assert args.kwargs["since"] == NOW - timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_no_previous_send(self, policy, repos):
        repos.sms_log.latest_outbound = AsyncMock(return_value=None)
        result = await policy.check_duplicate("user-1", "lead-1", "same_day_booking", now=NOW)
        assert not result.is_duplicate

    @pytest.mark.asyncio
    async def test_custom_window(self, policy, repos):
        repos.sms_log.latest_outbound = AsyncMock(return_value=None)
        await policy.check_duplicate("user-1", None, "cancellation", window_minutes=60, now=NOW)
        assert repos.sms_log.latest_outbound.await_args.kwargs["since"] == NOW - timedelta(minutes=60)


class TestContentSimilarityCheck:
    """Test similarity against recent outbound messages."""

    @pytest.mark.asyncio
    async def test_similar_message_found(self, policy, repos):
        repos.sms_log.recent_outbound = AsyncMock(return_value=[
            SimpleNamespace(id="log-1", body="Something unrelated entirely"),
            SimpleNamespace(id="log-2", body="CALLLOCK: Callback requested\nJohn wants callback soon"),
        ])

        result = await policy.check_content_similarity(
            "user-1", "CALLLOCK: Callback requested\nJohn wants callback soon", now=NOW
        )

        assert result.is_similar
        assert result.similar_message_id == "log-2"
        assert result.similarity == 1.0
        assert repos.sms_log.recent_outbound.await_args.kwargs["limit"] == 10

    @pytest.mark.asyncio
    async def test_threshold_is_strict(self, policy, repos):
        # 4 shared words of 5: exactly 0.8 is not similar
        repos.sms_log.recent_outbound = AsyncMock(return_value=[
            SimpleNamespace(id="log-1", body="one two three four five"),
        ])
        result = await policy.check_content_similarity("user-1", "one two three four", now=NOW)
        assert result.similarity == pytest.approx(0.8)
        assert not result.is_similar

    @pytest.mark.asyncio
    async def test_no_recent_messages(self, policy, repos):
        repos.sms_log.recent_outbound = AsyncMock(return_value=[])
        result = await policy.check_content_similarity("user-1", "anything", now=NOW)
        assert not result.is_similar
        assert result.similar_message_id is None


class TestBatching:
    """Test batch queueing and consolidation."""

    def test_single_lead_is_not_batched(self):
        entries = [queue_entry("q1", "lead-1"), queue_entry("q2", "lead-1"), queue_entry("q3", None)]
        assert build_batch(entries) is None

    def test_multiple_leads_consolidate(self):
        entries = [
            queue_entry("q1", "lead-1"),
            queue_entry("q2", "lead-2", tier="URGENT"),
            queue_entry("q3", "lead-3", priority_color="red"),
            queue_entry("q4", "lead-3"),
        ]

        batch = build_batch(entries)

        assert batch.entry_ids == ["q1", "q2", "q3", "q4"]
        assert batch.lead_count == 3
        assert batch.urgent_count == 2
        assert batch.message_body == "CALLLOCK: 3 leads need attention\n2 urgent\nOpen app for details"

    def test_consolidated_message_without_urgent(self):
        assert build_consolidated_message(2, 0) == "CALLLOCK: 2 leads need attention\nOpen app for details"

    @pytest.mark.asyncio
    async def test_add_to_batch_uses_tier_window(self, policy, repos):
        await policy.add_to_batch(
            "user-1", "callback_request", NotificationTier.REMINDER, "body", lead_id="lead-1", now=NOW
        )

        fields = repos.queue.enqueue.await_args.kwargs
        assert fields["send_at"] == NOW + timedelta(seconds=600)
        assert fields["tier"] == "REMINDER"
        assert fields["context"] == {}

    @pytest.mark.asyncio
    async def test_consolidate_batch_reads_due_entries(self, policy, repos):
        repos.queue.list_due_for_user = AsyncMock(return_value=[
            queue_entry("q1", "lead-1"), queue_entry("q2", "lead-2"),
        ])
        batch = await policy.consolidate_batch("user-1", now=NOW)
        assert batch.lead_count == 2
        repos.queue.list_due_for_user.assert_awaited_once_with("user-1", NOW)


class TestEscalation:
    """Test escalation of unanswered alerts."""

    @pytest.mark.asyncio
    async def test_candidates_grouped_by_lead(self, policy, repos):
        lead = SimpleNamespace(id="lead-1", user_id="user-1", priority_color="blue", priority_reason=None)
        repos.alert_contexts.list_unanswered = AsyncMock(return_value=[
            (SimpleNamespace(id="ctx-1"), lead),
            (SimpleNamespace(id="ctx-2"), lead),
        ])

        candidates = await policy.check_for_escalation(now=NOW)

        assert len(candidates) == 1
        assert candidates[0].alert_context_ids == ["ctx-1", "ctx-2"]
        args = repos.alert_contexts.list_unanswered.await_args
        assert args.args == (NOW - timedelta(minutes=120), NON_ESCALATING_ALERT_TYPES)

    @pytest.mark.asyncio
    async def test_sweep_marks_leads_red(self, policy, repos):
        lead = SimpleNamespace(id="lead-1", user_id="user-1", priority_color="blue", priority_reason=None)
        repos.alert_contexts.list_unanswered = AsyncMock(return_value=[(SimpleNamespace(id="ctx-1"), lead)])

        escalated = await policy.run_escalation_sweep(now=NOW)

        assert escalated == ["lead-1"]
        repos.leads.update.assert_awaited_once_with("lead-1", {
            "priority_color": PriorityColor.RED,
            "priority_reason": ESCALATION_REASON,
        })

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, policy, repos):
        lead = SimpleNamespace(id="lead-1", user_id="user-1", priority_color="red", priority_reason=ESCALATION_REASON)
        repos.alert_contexts.list_unanswered = AsyncMock(return_value=[(SimpleNamespace(id="ctx-1"), lead)])

        assert await policy.run_escalation_sweep(now=NOW) == []
        repos.leads.update.assert_not_awaited()


class TestRetryQueueing:
    """Test retry row creation."""

    @pytest.mark.asyncio
    async def test_queue_for_retry(self, policy, repos):
        message = OutboundSMS(to="+15551234567", body="hello", user_id="user-1",
                              event_type="callback_request", lead_id="lead-1")
        config = get_retry_config(NotificationTier.STANDARD, 0, NOW)

        await policy.queue_for_retry(message, config, NotificationTier.STANDARD, original_message_id="log-1")

        fields = repos.retries.enqueue.await_args.kwargs
        assert fields["original_message_id"] == "log-1"
        assert fields["retry_attempt"] == 1
        assert fields["max_attempts"] == 3
        assert fields["retry_at"] == NOW + timedelta(seconds=5)
        assert fields["tier"] == "STANDARD"
