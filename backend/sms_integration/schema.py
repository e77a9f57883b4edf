"""
SMS Schema - event types and API models

Enums shared by the notification engine and the pydantic request/response
models used by the notification, webhook and cron routers.
"""

from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================

class NotificationEventType(str, Enum):
    """Outbound operator notification events"""
    SAME_DAY_BOOKING = "same_day_booking"
    FUTURE_BOOKING = "future_booking"
    CALLBACK_REQUEST = "callback_request"
    SCHEDULE_CONFLICT = "schedule_conflict"
    CANCELLATION = "cancellation"
    ABANDONED_CALL = "abandoned_call"
    STALE_JOB_ALERT = "stale_job_alert"


# Bypass per-event toggles; still blocked by a global unsubscribe
CRITICAL_EVENT_TYPES = frozenset({
    NotificationEventType.ABANDONED_CALL,
    NotificationEventType.STALE_JOB_ALERT,
})


class InboundEventType(str, Enum):
    """sms_log.event_type values written by inbound commands"""
    LEAD_UPDATE = "lead_update"
    LEAD_NOTE = "lead_note"
    LEAD_BOOKING = "lead_booking"
    LEAD_SNOOZE = "lead_snooze"
    OTHER = "other"


# Event types for messages that are not tied to one notification event
REPLY_EVENT_TYPE = "command_reply"
BATCH_SUMMARY_EVENT_TYPE = "batch_summary"
DAILY_DIGEST_EVENT_TYPE = "daily_digest"


# =============================================================================
# NOTIFICATION MODELS
# =============================================================================

class NotificationData(BaseModel):
    """Template inputs for one notification"""
    customer_name: str = Field(..., description="Customer display name")
    customer_phone: Optional[str] = Field(None, description="Customer phone (abandoned calls)")
    scheduled_at: Optional[datetime] = Field(None, description="Appointment time (aware)")
    service_type: Optional[str] = Field(None, description="hvac, plumbing, electrical...")
    address: Optional[str] = Field(None, description="Full service address; city is extracted")
    callback_timeframe: Optional[str] = Field(None, description="e.g. 'within the hour'")
    conflicting_job_name: Optional[str] = Field(None, description="Existing job the booking overlaps")
    hours_waiting: Optional[int] = Field(None, description="Stale job age in hours")
    urgency: Optional[str] = Field(None, description="Lead urgency, feeds tier selection")
    priority_color: Optional[str] = Field(None, description="Lead priority color, feeds tier selection")
    estimated_value: Optional[float] = Field(None, description="Estimated job value in dollars")


class SendNotificationRequest(BaseModel):
    """Request model for triggering an operator notification"""
    user_id: str = Field(..., description="Operator user ID")
    event_type: NotificationEventType
    data: NotificationData
    job_id: Optional[str] = None
    lead_id: Optional[str] = None
    customer_id: Optional[str] = None
    batch: bool = Field(False, description="Allow holding for the tier batch window")


class SendNotificationResponse(BaseModel):
    """Response model for a notification attempt"""
    sent: bool
    queued: bool = False
    reason: Optional[str] = None
    twilio_sid: Optional[str] = None


_CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class NotificationPreferencesUpdate(BaseModel):
    """Partial update of a user's notification preferences"""
    sms_same_day_booking: Optional[bool] = None
    sms_future_booking: Optional[bool] = None
    sms_callback_request: Optional[bool] = None
    sms_schedule_conflict: Optional[bool] = None
    sms_cancellation: Optional[bool] = None
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[str] = Field(None, pattern=_CLOCK_PATTERN, description="HH:MM")
    quiet_hours_end: Optional[str] = Field(None, pattern=_CLOCK_PATTERN, description="HH:MM")
    sms_unsubscribed: Optional[bool] = None


class NotificationPreferencesResponse(BaseModel):
    """Response model for notification preferences"""
    user_id: str
    sms_same_day_booking: bool = True
    sms_future_booking: bool = False
    sms_callback_request: bool = True
    sms_schedule_conflict: bool = True
    sms_cancellation: bool = True
    quiet_hours_enabled: bool = True
    quiet_hours_start: str = "19:00"
    quiet_hours_end: str = "06:00"
    sms_unsubscribed: bool = False
    sms_unsubscribed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# SWEEP MODELS
# =============================================================================

class SweepResponse(BaseModel):
    """Response model for cron-triggered sweeps"""
    success: bool = True
    processed: int = 0
    details: Dict[str, Any] = Field(default_factory=dict)
