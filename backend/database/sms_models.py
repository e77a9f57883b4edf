"""
Call Rescue SMS - Database Models

Records touched by the SMS command and notification subsystem.

Tables:
- users: operators (one phone number each)
- leads: unconverted customer contacts
- jobs: scheduled appointments
- operator_notes: unified note feed
- sms_log: append-only audit of every inbound/outbound SMS
- notification_queue: deferred outbound messages (quiet hours, batching)
- sms_alert_context: latest alert per operator phone, resolves short replies
- operator_notification_preferences: per-user toggles, quiet hours, unsubscribe
- sms_retry_queue: failed sends awaiting redelivery
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Text, Boolean, DateTime, Integer, Numeric,
    Index, Enum as SQLEnum, JSON
)

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS ====================

class LeadStatus(str, PyEnum):
    """Lead lifecycle status"""
    CALLBACK_REQUESTED = "callback_requested"
    THINKING = "thinking"
    VOICEMAIL_LEFT = "voicemail_left"
    CONTACTED = "contacted"
    INFO_ONLY = "info_only"
    DEFERRED = "deferred"
    CONVERTED = "converted"
    LOST = "lost"
    ABANDONED = "abandoned"
    SALES_OPPORTUNITY = "sales_opportunity"


TERMINAL_LEAD_STATUSES = (LeadStatus.CONVERTED, LeadStatus.LOST)


class JobStatus(str, PyEnum):
    """Job status: new -> confirmed -> en_route -> on_site -> complete/cancelled"""
    NEW = "new"
    CONFIRMED = "confirmed"
    EN_ROUTE = "en_route"
    ON_SITE = "on_site"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class PriorityColor(str, PyEnum):
    RED = "red"        # callback risk / escalated
    GREEN = "green"    # commercial / high value
    BLUE = "blue"      # standard
    GRAY = "gray"      # spam / vendor


class SmsDirection(str, PyEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SmsStatus(str, PyEnum):
    RECEIVED = "received"
    SENT = "sent"
    FAILED = "failed"


class QueueStatus(str, PyEnum):
    """notification_queue: queued -> sent | failed | cancelled"""
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AlertContextStatus(str, PyEnum):
    PENDING = "pending"
    REPLIED = "replied"
    RESOLVED = "resolved"
    EXPIRED = "expired"


class RetryStatus(str, PyEnum):
    """sms_retry_queue: pending -> sent | failed"""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# ==================== DATABASE MODELS ====================

class UserDB(Base):
    """Operator account. Inbound SMS is matched on ``phone``."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True, index=True)
    business_name = Column(String(255), nullable=True)
    timezone = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class LeadDB(Base):
    """
    A potential customer contact not yet converted to a job.

    ``remind_at`` in the past makes an active lead eligible for re-surfacing;
    terminal leads (converted/lost) are excluded from active views.
    """
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)

    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(20), nullable=True, index=True)
    customer_address = Column(Text, nullable=True)
    service_type = Column(String(50), nullable=True)
    urgency = Column(String(20), nullable=True)
    ai_summary = Column(Text, nullable=True)
    issue_description = Column(Text, nullable=True)
    estimated_value = Column(Numeric(12, 2), nullable=True)

    status = Column(
        SQLEnum(LeadStatus, name='lead_status_enum', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=LeadStatus.CALLBACK_REQUESTED,
        index=True
    )
    priority_color = Column(
        SQLEnum(PriorityColor, name='priority_color_enum', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PriorityColor.BLUE
    )
    priority_reason = Column(Text, nullable=True)

    # Snooze / callback tracking
    remind_at = Column(DateTime(timezone=True), nullable=True, index=True)
    callback_outcome = Column(String(30), nullable=True)
    callback_outcome_at = Column(DateTime(timezone=True), nullable=True)

    lost_reason = Column(Text, nullable=True)
    converted_job_id = Column(String(36), nullable=True)
    converted_at = Column(DateTime(timezone=True), nullable=True)

    # [{"text", "source", "created_by", "created_at"}]
    notes = Column(JSON, nullable=True, default=list)

    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_leads_user_status', 'user_id', 'status'),
    )

    @property
    def is_active(self) -> bool:
        return self.status not in TERMINAL_LEAD_STATUSES

    def needs_resurfacing(self, now: datetime = None) -> bool:
        """True once a snoozed, still-active lead's reminder time has passed."""
        now = now or utc_now()
        return self.is_active and self.remind_at is not None and self.remind_at <= now


class JobDB(Base):
    """A scheduled service appointment."""
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    lead_id = Column(String(36), nullable=True)

    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(20), nullable=False)
    customer_address = Column(Text, nullable=True)
    service_type = Column(String(50), nullable=True)
    urgency = Column(String(20), nullable=True)
    ai_summary = Column(Text, nullable=True)
    estimated_value = Column(Numeric(12, 2), nullable=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=True, index=True)
    status = Column(
        SQLEnum(JobStatus, name='job_status_enum', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.NEW,
        index=True
    )
    is_ai_booked = Column(Boolean, default=False)
    booking_confirmed = Column(Boolean, default=False)
    needs_action = Column(Boolean, default=False, index=True)
    needs_action_note = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    priority_color = Column(String(10), nullable=True)
    priority_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_jobs_user_scheduled', 'user_id', 'scheduled_at'),
    )


class OperatorNoteDB(Base):
    """Unified note feed shown next to a customer."""
    __tablename__ = "operator_notes"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    lead_id = Column(String(36), nullable=True, index=True)
    customer_phone = Column(String(20), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    note_text = Column(Text, nullable=False)
    created_by = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class SmsLogDB(Base):
    """
    Immutable audit record of one inbound or outbound SMS.

    Only ``delivery_status`` is updated afterwards, by the Twilio
    status callback.
    """
    __tablename__ = "sms_log"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=True, index=True)
    direction = Column(String(10), nullable=False)
    to_phone = Column(String(20), nullable=False)
    from_phone = Column(String(20), nullable=False)
    body = Column(Text, nullable=False)
    status = Column(String(20), nullable=False)
    event_type = Column(String(50), nullable=True)
    lead_id = Column(String(36), nullable=True)
    job_id = Column(String(36), nullable=True)
    twilio_sid = Column(String(64), nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    delivery_status = Column(String(20), nullable=True)
    delivery_status_updated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)

    __table_args__ = (
        Index('ix_sms_log_dedup', 'user_id', 'lead_id', 'event_type', 'created_at'),
    )


class NotificationQueueDB(Base):
    """A deferred outbound message awaiting ``send_at``."""
    __tablename__ = "notification_queue"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    lead_id = Column(String(36), nullable=True)
    job_id = Column(String(36), nullable=True)
    event_type = Column(String(50), nullable=False)
    tier = Column(String(20), nullable=True)
    message_body = Column(Text, nullable=False)
    context = Column(JSON, nullable=True, default=dict)
    send_at = Column(DateTime(timezone=True), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default=QueueStatus.QUEUED.value)
    error_message = Column(Text, nullable=True)
    twilio_sid = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('ix_notification_queue_due', 'status', 'send_at'),
    )


class SmsAlertContextDB(Base):
    """
    One row per alert sent to an operator phone.

    The newest row for a phone (ORDER BY created_at DESC LIMIT 1) tells
    the inbound handler which lead a bare reply such as "1" refers to.
    """
    __tablename__ = "sms_alert_context"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    operator_phone = Column(String(20), nullable=False)
    user_id = Column(String(36), nullable=True, index=True)
    alert_type = Column(String(50), nullable=False)
    lead_id = Column(String(36), nullable=True)
    customer_id = Column(String(36), nullable=True)
    job_id = Column(String(36), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    customer_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=AlertContextStatus.PENDING.value)
    replied_at = Column(DateTime(timezone=True), nullable=True)
    reply_code = Column(String(10), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('ix_sms_alert_context_phone_created', 'operator_phone', 'created_at'),
    )


class NotificationPreferencesDB(Base):
    """Singleton per user; upserted from the settings screen."""
    __tablename__ = "operator_notification_preferences"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, unique=True)

    sms_same_day_booking = Column(Boolean, default=True)
    sms_future_booking = Column(Boolean, default=False)
    sms_callback_request = Column(Boolean, default=True)
    sms_schedule_conflict = Column(Boolean, default=True)
    sms_cancellation = Column(Boolean, default=True)

    quiet_hours_enabled = Column(Boolean, default=True)
    quiet_hours_start = Column(String(5), default="19:00")
    quiet_hours_end = Column(String(5), default="06:00")

    sms_unsubscribed = Column(Boolean, default=False)
    sms_unsubscribed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class SmsRetryQueueDB(Base):
    """
    A failed send awaiting redelivery. Each attempt is its own row;
    ``retry_attempt`` grows across rows, never within one.
    """
    __tablename__ = "sms_retry_queue"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    original_message_id = Column(String(36), nullable=True)
    user_id = Column(String(36), nullable=False, index=True)
    to_phone = Column(String(20), nullable=False)
    message_body = Column(Text, nullable=False)
    event_type = Column(String(50), nullable=True)
    lead_id = Column(String(36), nullable=True)
    job_id = Column(String(36), nullable=True)
    tier = Column(String(20), nullable=False)
    retry_attempt = Column(Integer, nullable=False, default=1)
    max_attempts = Column(Integer, nullable=False)
    retry_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=RetryStatus.PENDING.value)
    twilio_sid = Column(String(64), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('ix_sms_retry_queue_due', 'status', 'retry_at'),
    )
