"""
Notification Policy

Smart-delivery rules layered over the notification service:
- De-duplication by (user, lead, event type) inside a lookback window
- Content similarity (Jaccard over normalized word sets)
- Batching of non-urgent messages and consolidation into one summary
- Escalation of alerts nobody answered
- Retry queueing per tier policy

All checks read and write rows through ``SmsRepositories``; nothing is
cached in process, so any number of API instances can run these.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Sequence

from config import get_settings
from database.sms_models import PriorityColor, NotificationQueueDB
from services.notification_tiers import (
    NotificationTier, RetryConfig, TIER_CONFIG, get_batch_window,
)

logger = logging.getLogger(__name__)

ESCALATION_REASON = "Escalated - no response after 2 hours"

# Already urgent when sent; escalating them again adds nothing
NON_ESCALATING_ALERT_TYPES = ("abandoned_call", "emergency_alert")

_TIME_RE = re.compile(r"\d{1,2}:\d{2}\s*(am|pm)?")
_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}")
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


@dataclass
class DedupeResult:
    is_duplicate: bool
    previous_message_id: Optional[str] = None
    time_since_last: Optional[timedelta] = None


@dataclass
class SimilarityResult:
    is_similar: bool
    similar_message_id: Optional[str] = None
    similarity: float = 0.0


@dataclass
class ConsolidatedBatch:
    """Several queued notifications folded into one summary SMS"""
    entry_ids: List[str]
    lead_count: int
    urgent_count: int
    message_body: str


@dataclass
class EscalationCandidate:
    lead_id: str
    user_id: Optional[str]
    alert_context_ids: List[str] = field(default_factory=list)


# ==================== PURE HELPERS ====================

def normalize_for_comparison(body: str) -> str:
    """Lowercase and strip times, dates and punctuation so only the wording is compared."""
    text = (body or "").lower()
    text = _TIME_RE.sub("", text)
    text = _DATE_RE.sub("", text)
    text = _PUNCT_RE.sub("", text)
    return _SPACE_RE.sub(" ", text).strip()


def calculate_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the two normalized word sets (0.0 - 1.0)."""
    words_a = set(normalize_for_comparison(first).split())
    words_b = set(normalize_for_comparison(second).split())
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union)


def build_consolidated_message(lead_count: int, urgent_count: int) -> str:
    lines = [f"CALLLOCK: {lead_count} leads need attention"]
    if urgent_count:
        lines.append(f"{urgent_count} urgent")
    lines.append("Open app for details")
    return "\n".join(lines)


def build_batch(entries: Sequence[NotificationQueueDB]) -> Optional[ConsolidatedBatch]:
    """
    Fold due queue entries for one user into a summary.

    Returns None when the entries reference at most one distinct lead;
    those are sent individually.
    """
    leads = {entry.lead_id for entry in entries if entry.lead_id}
    if len(leads) <= 1:
        return None

    urgent_leads = {
        entry.lead_id for entry in entries
        if entry.lead_id and (
            entry.tier == NotificationTier.URGENT.value
            or (entry.context or {}).get("priority_color") == PriorityColor.RED.value
        )
    }

    return ConsolidatedBatch(
        entry_ids=[entry.id for entry in entries],
        lead_count=len(leads),
        urgent_count=len(urgent_leads),
        message_body=build_consolidated_message(len(leads), len(urgent_leads)),
    )


def _utc(now: Optional[datetime]) -> datetime:
    return now.astimezone(timezone.utc) if now else datetime.now(timezone.utc)


# ==================== POLICY SERVICE ====================

class NotificationPolicy:
    """
    Delivery policy checks backed by the SMS tables.

    Usage:
        policy = NotificationPolicy(repos)
        dup = await policy.check_duplicate(user_id, lead_id, "same_day_booking")
        if dup.is_duplicate:
            return
    """

    def __init__(self, repos, settings=None):
        self.repos = repos
        self.settings = settings or get_settings()

    # ---------- de-duplication ----------

    async def check_duplicate(
        self,
        user_id: str,
        lead_id: Optional[str],
        event_type: str,
        window_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> DedupeResult:
        """Was the same (user, lead, event type) already sent inside the window?"""
        now = _utc(now)
        window = window_minutes if window_minutes is not None else self.settings.DEDUP_WINDOW_MINUTES
        previous = await self.repos.sms_log.latest_outbound(
            user_id, lead_id, event_type, since=now - timedelta(minutes=window)
        )
        if not previous:
            return DedupeResult(is_duplicate=False)

        elapsed = now - previous.created_at if previous.created_at else None
        logger.info(f"Duplicate {event_type} for lead {lead_id} suppressed (previous {previous.id})")
        return DedupeResult(
            is_duplicate=True,
            previous_message_id=previous.id,
            time_since_last=elapsed,
        )

    async def check_content_similarity(
        self,
        user_id: str,
        message_body: str,
        window_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SimilarityResult:
        """Compare against the last 10 outbound messages in the window."""
        now = _utc(now)
        window = window_minutes if window_minutes is not None else self.settings.SIMILARITY_WINDOW_MINUTES
        recent = await self.repos.sms_log.recent_outbound(
            user_id, since=now - timedelta(minutes=window), limit=10
        )

        best = SimilarityResult(is_similar=False)
        for message in recent:
            score = calculate_similarity(message_body, message.body)
            if score > best.similarity:
                best = SimilarityResult(
                    is_similar=score > self.settings.SIMILARITY_THRESHOLD,
                    similar_message_id=message.id,
                    similarity=score,
                )
        return best

    # ---------- batching ----------

    async def add_to_batch(
        self,
        user_id: str,
        event_type: str,
        tier: NotificationTier,
        message_body: str,
        lead_id: Optional[str] = None,
        job_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> NotificationQueueDB:
        """Queue a message to go out when the tier's batch window closes."""
        send_at = _utc(now) + timedelta(seconds=get_batch_window(tier))
        return await self.repos.queue.enqueue(
            user_id=user_id,
            lead_id=lead_id,
            job_id=job_id,
            event_type=event_type,
            tier=NotificationTier(tier).value,
            message_body=message_body,
            context=context or {},
            send_at=send_at,
        )

    async def consolidate_batch(self, user_id: str, now: Optional[datetime] = None) -> Optional[ConsolidatedBatch]:
        entries = await self.repos.queue.list_due_for_user(user_id, _utc(now))
        return build_batch(entries)

    # ---------- escalation ----------

    async def check_for_escalation(
        self,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[EscalationCandidate]:
        """Active leads whose alert has gone unanswered past the escalation window."""
        minutes = (
            self.settings.ESCALATION_AFTER_MINUTES
            or TIER_CONFIG[NotificationTier.STANDARD].escalate_after_minutes
        )
        cutoff = _utc(now) - timedelta(minutes=minutes)
        rows = await self.repos.alert_contexts.list_unanswered(
            cutoff, NON_ESCALATING_ALERT_TYPES, user_id=user_id
        )

        candidates: Dict[str, EscalationCandidate] = {}
        for context, lead in rows:
            if lead.priority_color == PriorityColor.RED and lead.priority_reason == ESCALATION_REASON:
                continue
            candidate = candidates.setdefault(
                lead.id, EscalationCandidate(lead_id=lead.id, user_id=lead.user_id)
            )
            candidate.alert_context_ids.append(context.id)
        return list(candidates.values())

    async def mark_escalated(self, lead_id: str) -> None:
        await self.repos.leads.update(lead_id, {
            "priority_color": PriorityColor.RED,
            "priority_reason": ESCALATION_REASON,
        })

    async def run_escalation_sweep(self, now: Optional[datetime] = None) -> List[str]:
        """Flag every overdue lead red. Safe to run repeatedly; returns escalated lead ids."""
        escalated = []
        for candidate in await self.check_for_escalation(now=now):
            await self.mark_escalated(candidate.lead_id)
            escalated.append(candidate.lead_id)
        if escalated:
            logger.info(f"Escalated {len(escalated)} unanswered leads")
        return escalated

    # ---------- retry ----------

    async def queue_for_retry(
        self,
        message,
        retry_config: RetryConfig,
        tier: NotificationTier,
        original_message_id: Optional[str] = None,
    ):
        """Insert a pending retry row for a failed ``OutboundSMS``."""
        retry = await self.repos.retries.enqueue(
            original_message_id=original_message_id,
            user_id=message.user_id,
            to_phone=message.to,
            message_body=message.body,
            event_type=message.event_type,
            lead_id=message.lead_id,
            job_id=message.job_id,
            tier=NotificationTier(tier).value,
            retry_attempt=retry_config.attempt,
            max_attempts=retry_config.max_attempts,
            retry_at=retry_config.next_retry_at,
        )
        logger.info(
            f"Retry {retry_config.attempt}/{retry_config.max_attempts} for {message.event_type} "
            f"scheduled in {retry_config.delay_seconds}s"
        )
        return retry
