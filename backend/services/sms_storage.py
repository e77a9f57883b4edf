"""
Call Rescue SMS - Database Storage Layer

Repository classes over SQLAlchemy async sessions for every record the
SMS command and notification subsystem reads or writes.

Every write commits immediately: handlers and sweeps are short-lived and
a half-applied command is preferable to a lost audit row.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Sequence, Tuple
import logging

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from database.sms_models import (
    UserDB, LeadDB, JobDB, OperatorNoteDB, SmsLogDB, NotificationQueueDB,
    SmsAlertContextDB, NotificationPreferencesDB, SmsRetryQueueDB,
    JobStatus, LeadStatus, PriorityColor, QueueStatus, AlertContextStatus,
    RetryStatus, SmsDirection, TERMINAL_LEAD_STATUSES,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== REPOSITORY CLASSES ====================

class UserRepository:
    """Repository for operator lookups"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> Optional[UserDB]:
        result = await self.session.execute(select(UserDB).where(UserDB.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_phone(self, phone: str) -> Optional[UserDB]:
        """Find the operator who owns an E.164 phone number"""
        result = await self.session.execute(
            select(UserDB).where(UserDB.phone == phone).limit(1)
        )
        return result.scalar_one_or_none()

    async def list_with_phone(self) -> List[UserDB]:
        """Operators that can receive SMS"""
        result = await self.session.execute(
            select(UserDB).where(UserDB.phone.isnot(None)).order_by(UserDB.id)
        )
        return list(result.scalars().all())


class LeadRepository:
    """Repository for Lead database operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, lead_id: str) -> Optional[LeadDB]:
        result = await self.session.execute(select(LeadDB).where(LeadDB.id == lead_id))
        return result.scalar_one_or_none()

    async def find_active_by_customer_phone(self, customer_phone: str) -> Optional[LeadDB]:
        """Newest non-terminal lead for a customer phone"""
        result = await self.session.execute(
            select(LeadDB)
            .where(
                and_(
                    LeadDB.customer_phone == customer_phone,
                    LeadDB.status.notin_(TERMINAL_LEAD_STATUSES),
                )
            )
            .order_by(LeadDB.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def update(self, lead_id: str, updates: Dict[str, Any]) -> None:
        updates['updated_at'] = _utc_now()
        await self.session.execute(
            update(LeadDB).where(LeadDB.id == lead_id).values(**updates)
        )
        await self.session.commit()

    async def append_note(self, lead_id: str, note: Dict[str, Any]) -> Optional[LeadDB]:
        """Append to the lead's JSON notes list. Returns the lead (pre-update) or None."""
        lead = await self.get(lead_id)
        if not lead:
            return None
        notes = list(lead.notes or [])
        notes.append(note)
        await self.update(lead_id, {'notes': notes})
        return lead

    async def digest_counts(self, user_id: str, since: datetime) -> Dict[str, int]:
        """Leads created, still-urgent and booked since ``since`` for the daily digest"""
        async def _count(*conditions) -> int:
            result = await self.session.execute(
                select(func.count(LeadDB.id)).where(and_(LeadDB.user_id == user_id, *conditions))
            )
            return result.scalar_one()

        return {
            'leads': await _count(LeadDB.created_at >= since),
            'urgent': await _count(
                LeadDB.created_at >= since,
                LeadDB.priority_color == PriorityColor.RED,
                LeadDB.status.notin_(TERMINAL_LEAD_STATUSES),
            ),
            'booked': await _count(
                LeadDB.status == LeadStatus.CONVERTED,
                LeadDB.converted_at >= since,
            ),
        }


class JobRepository:
    """Repository for Job database operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> JobDB:
        db_job = JobDB(**fields)
        self.session.add(db_job)
        await self.session.commit()
        await self.session.refresh(db_job)
        return db_job

    async def get(self, job_id: str) -> Optional[JobDB]:
        result = await self.session.execute(select(JobDB).where(JobDB.id == job_id))
        return result.scalar_one_or_none()

    async def _latest(self, *conditions) -> Optional[JobDB]:
        result = await self.session.execute(
            select(JobDB)
            .where(and_(*conditions))
            .order_by(JobDB.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_pending_ai_booking(self, user_id: str) -> Optional[JobDB]:
        """Newest AI-booked job still awaiting operator confirmation"""
        return await self._latest(
            JobDB.user_id == user_id,
            JobDB.status == JobStatus.NEW,
            JobDB.is_ai_booked.is_(True),
        )

    async def latest_open(self, user_id: str) -> Optional[JobDB]:
        return await self._latest(
            JobDB.user_id == user_id,
            JobDB.status.in_([JobStatus.NEW, JobStatus.CONFIRMED]),
        )

    async def latest_needing_action(self, user_id: str) -> Optional[JobDB]:
        return await self._latest(
            JobDB.user_id == user_id,
            JobDB.needs_action.is_(True),
            JobDB.status.notin_([JobStatus.COMPLETE, JobStatus.CANCELLED]),
        )

    async def update(self, job_id: str, updates: Dict[str, Any]) -> None:
        updates['updated_at'] = _utc_now()
        await self.session.execute(
            update(JobDB).where(JobDB.id == job_id).values(**updates)
        )
        await self.session.commit()

    async def find_conflicts(
        self,
        user_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_job_id: Optional[str] = None,
    ) -> List[JobDB]:
        """Live jobs scheduled inside [window_start, window_end]"""
        conditions = [
            JobDB.user_id == user_id,
            JobDB.scheduled_at >= window_start,
            JobDB.scheduled_at <= window_end,
            JobDB.status.notin_([JobStatus.CANCELLED, JobStatus.COMPLETE]),
        ]
        if exclude_job_id:
            conditions.append(JobDB.id != exclude_job_id)
        result = await self.session.execute(
            select(JobDB).where(and_(*conditions)).order_by(JobDB.scheduled_at)
        )
        return list(result.scalars().all())

    async def list_stale(self, created_before: datetime, limit: int) -> List[JobDB]:
        """New jobs nobody has acted on since ``created_before``"""
        result = await self.session.execute(
            select(JobDB)
            .where(
                and_(
                    JobDB.status == JobStatus.NEW,
                    JobDB.needs_action.is_(False),
                    JobDB.created_at < created_before,
                )
            )
            .order_by(JobDB.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())


class OperatorNoteRepository:
    """Repository for the unified operator note feed"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> OperatorNoteDB:
        db_note = OperatorNoteDB(**fields)
        self.session.add(db_note)
        await self.session.commit()
        return db_note


class SmsLogRepository:
    """Repository for the append-only SMS audit log"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> SmsLogDB:
        db_log = SmsLogDB(**fields)
        self.session.add(db_log)
        await self.session.commit()
        await self.session.refresh(db_log)
        return db_log

    async def latest_outbound(
        self,
        user_id: str,
        lead_id: Optional[str],
        event_type: str,
        since: datetime,
    ) -> Optional[SmsLogDB]:
        """Newest outbound message for (user, lead, event type) created after ``since``"""
        lead_condition = SmsLogDB.lead_id.is_(None) if lead_id is None else SmsLogDB.lead_id == lead_id
        result = await self.session.execute(
            select(SmsLogDB)
            .where(
                and_(
                    SmsLogDB.user_id == user_id,
                    lead_condition,
                    SmsLogDB.event_type == event_type,
                    SmsLogDB.direction == SmsDirection.OUTBOUND.value,
                    SmsLogDB.created_at >= since,
                )
            )
            .order_by(SmsLogDB.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def recent_outbound(self, user_id: str, since: datetime, limit: int = 10) -> List[SmsLogDB]:
        result = await self.session.execute(
            select(SmsLogDB)
            .where(
                and_(
                    SmsLogDB.user_id == user_id,
                    SmsLogDB.direction == SmsDirection.OUTBOUND.value,
                    SmsLogDB.created_at >= since,
                )
            )
            .order_by(SmsLogDB.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update_delivery_status(self, twilio_sid: str, delivery_status: str, updated_at: datetime) -> int:
        """Record a provider delivery callback. Returns matched row count."""
        result = await self.session.execute(
            update(SmsLogDB)
            .where(SmsLogDB.twilio_sid == twilio_sid)
            .values(delivery_status=delivery_status, delivery_status_updated_at=updated_at)
        )
        await self.session.commit()
        return result.rowcount


class NotificationQueueRepository:
    """Repository for deferred outbound notifications"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, **fields) -> NotificationQueueDB:
        fields.setdefault('status', QueueStatus.QUEUED.value)
        db_entry = NotificationQueueDB(**fields)
        self.session.add(db_entry)
        await self.session.commit()
        await self.session.refresh(db_entry)
        return db_entry

    async def list_due(self, now: datetime, limit: int) -> List[NotificationQueueDB]:
        result = await self.session.execute(
            select(NotificationQueueDB)
            .where(
                and_(
                    NotificationQueueDB.status == QueueStatus.QUEUED.value,
                    NotificationQueueDB.send_at <= now,
                )
            )
            .order_by(NotificationQueueDB.send_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_due_for_user(self, user_id: str, now: datetime) -> List[NotificationQueueDB]:
        result = await self.session.execute(
            select(NotificationQueueDB)
            .where(
                and_(
                    NotificationQueueDB.user_id == user_id,
                    NotificationQueueDB.status == QueueStatus.QUEUED.value,
                    NotificationQueueDB.send_at <= now,
                )
            )
            .order_by(NotificationQueueDB.send_at)
        )
        return list(result.scalars().all())

    async def count_overdue(self, before: datetime) -> int:
        """Queued rows that should have gone out before ``before``."""
        result = await self.session.execute(
            select(func.count(NotificationQueueDB.id))
            .where(
                and_(
                    NotificationQueueDB.status == QueueStatus.QUEUED.value,
                    NotificationQueueDB.send_at < before,
                )
            )
        )
        return result.scalar_one()

    async def _transition(self, entry_ids: Sequence[str], values: Dict[str, Any]) -> int:
        """Move queued rows only; rows already claimed by another run are left alone."""
        result = await self.session.execute(
            update(NotificationQueueDB)
            .where(
                and_(
                    NotificationQueueDB.id.in_(list(entry_ids)),
                    NotificationQueueDB.status == QueueStatus.QUEUED.value,
                )
            )
            .values(**values)
        )
        await self.session.commit()
        return result.rowcount

    async def mark_sent(self, entry_id: str, twilio_sid: Optional[str], sent_at: datetime) -> bool:
        return await self._transition(
            [entry_id],
            {'status': QueueStatus.SENT.value, 'sent_at': sent_at, 'twilio_sid': twilio_sid},
        ) > 0

    async def mark_failed(self, entry_id: str, error_message: str) -> bool:
        return await self._transition(
            [entry_id],
            {'status': QueueStatus.FAILED.value, 'error_message': error_message},
        ) > 0

    async def mark_many_sent(self, entry_ids: Sequence[str], twilio_sid: Optional[str], sent_at: datetime) -> int:
        """Close out entries folded into one consolidated message"""
        return await self._transition(
            entry_ids,
            {'status': QueueStatus.SENT.value, 'sent_at': sent_at, 'twilio_sid': twilio_sid},
        )

    async def mark_cancelled(self, entry_ids: Sequence[str], reason: str) -> int:
        return await self._transition(
            entry_ids,
            {'status': QueueStatus.CANCELLED.value, 'error_message': reason},
        )

    async def reschedule(self, entry_id: str, send_at: datetime) -> bool:
        return await self._transition([entry_id], {'send_at': send_at}) > 0


class AlertContextRepository:
    """Repository for per-operator alert context rows"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> SmsAlertContextDB:
        fields.setdefault('status', AlertContextStatus.PENDING.value)
        db_context = SmsAlertContextDB(**fields)
        self.session.add(db_context)
        await self.session.commit()
        return db_context

    async def latest_for_phone(self, operator_phone: str) -> Optional[SmsAlertContextDB]:
        """The most recent alert sent to this operator phone"""
        result = await self.session.execute(
            select(SmsAlertContextDB)
            .where(SmsAlertContextDB.operator_phone == operator_phone)
            .order_by(SmsAlertContextDB.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_replied(self, operator_phone: str, reply_code: str, since: datetime, replied_at: datetime) -> int:
        """Mark every unanswered context for this phone created after ``since`` as replied"""
        result = await self.session.execute(
            update(SmsAlertContextDB)
            .where(
                and_(
                    SmsAlertContextDB.operator_phone == operator_phone,
                    SmsAlertContextDB.created_at > since,
                    SmsAlertContextDB.replied_at.is_(None),
                )
            )
            .values(
                status=AlertContextStatus.REPLIED.value,
                replied_at=replied_at,
                reply_code=reply_code,
            )
        )
        await self.session.commit()
        return result.rowcount

    async def list_unanswered(
        self,
        created_before: datetime,
        excluded_alert_types: Sequence[str],
        user_id: Optional[str] = None,
    ) -> List[Tuple[SmsAlertContextDB, LeadDB]]:
        """Unreplied alerts older than ``created_before`` whose lead is still active"""
        conditions = [
            SmsAlertContextDB.replied_at.is_(None),
            SmsAlertContextDB.created_at < created_before,
            SmsAlertContextDB.alert_type.notin_(list(excluded_alert_types)),
            LeadDB.status.notin_(TERMINAL_LEAD_STATUSES),
        ]
        if user_id:
            conditions.append(SmsAlertContextDB.user_id == user_id)

        result = await self.session.execute(
            select(SmsAlertContextDB, LeadDB)
            .join(LeadDB, LeadDB.id == SmsAlertContextDB.lead_id)
            .where(and_(*conditions))
            .order_by(SmsAlertContextDB.created_at)
        )
        return [(row[0], row[1]) for row in result.all()]


class PreferencesRepository:
    """Repository for per-user notification preferences (one row per user)"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> Optional[NotificationPreferencesDB]:
        result = await self.session.execute(
            select(NotificationPreferencesDB).where(NotificationPreferencesDB.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, user_id: str, values: Dict[str, Any]) -> NotificationPreferencesDB:
        """Update the user's row, creating it with defaults first if missing"""
        prefs = await self.get(user_id)
        if prefs is None:
            prefs = NotificationPreferencesDB(user_id=user_id, **values)
            self.session.add(prefs)
        else:
            for key, value in values.items():
                setattr(prefs, key, value)
            prefs.updated_at = _utc_now()
        await self.session.commit()
        await self.session.refresh(prefs)
        return prefs


class RetryQueueRepository:
    """Repository for failed sends awaiting redelivery"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, **fields) -> SmsRetryQueueDB:
        fields.setdefault('status', RetryStatus.PENDING.value)
        db_retry = SmsRetryQueueDB(**fields)
        self.session.add(db_retry)
        await self.session.commit()
        await self.session.refresh(db_retry)
        return db_retry

    async def list_due(self, now: datetime, limit: int) -> List[SmsRetryQueueDB]:
        result = await self.session.execute(
            select(SmsRetryQueueDB)
            .where(
                and_(
                    SmsRetryQueueDB.status == RetryStatus.PENDING.value,
                    SmsRetryQueueDB.retry_at <= now,
                )
            )
            .order_by(SmsRetryQueueDB.retry_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_completed(
        self,
        retry_id: str,
        status: RetryStatus,
        completed_at: datetime,
        twilio_sid: Optional[str] = None,
    ) -> bool:
        """Terminal transition from pending; False if another run got there first"""
        result = await self.session.execute(
            update(SmsRetryQueueDB)
            .where(
                and_(
                    SmsRetryQueueDB.id == retry_id,
                    SmsRetryQueueDB.status == RetryStatus.PENDING.value,
                )
            )
            .values(status=status.value, completed_at=completed_at, twilio_sid=twilio_sid)
        )
        await self.session.commit()
        return result.rowcount > 0


# ==================== BUNDLE ====================

@dataclass
class SmsRepositories:
    """All repositories bound to one session, handed to commands and services"""
    users: UserRepository
    leads: LeadRepository
    jobs: JobRepository
    notes: OperatorNoteRepository
    sms_log: SmsLogRepository
    queue: NotificationQueueRepository
    alert_contexts: AlertContextRepository
    preferences: PreferencesRepository
    retries: RetryQueueRepository
    session: Optional[AsyncSession] = None

    async def rollback(self, *reload) -> None:
        """
        Reset the session after a failed write so the next unit of work can run.

        Rollback expires every loaded row; ``reload`` lists rows the caller
        still needs and refreshes them.
        """
        if self.session is None:
            return
        await self.session.rollback()
        for instance in reload:
            await self.session.refresh(instance)

    @classmethod
    def from_session(cls, session: AsyncSession) -> "SmsRepositories":
        return cls(
            session=session,
            users=UserRepository(session),
            leads=LeadRepository(session),
            jobs=JobRepository(session),
            notes=OperatorNoteRepository(session),
            sms_log=SmsLogRepository(session),
            queue=NotificationQueueRepository(session),
            alert_contexts=AlertContextRepository(session),
            preferences=PreferencesRepository(session),
            retries=RetryQueueRepository(session),
        )
