"""
SMS Templates - operator notification texts

Each template is written to stay inside a single 160 character segment
for typical names and services.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any

from .schema import NotificationEventType, NotificationData
from .time_parser import format_clock, get_zone

logger = logging.getLogger(__name__)

SMS_SEGMENT_LENGTH = 160

DEFAULT_TEMPLATES = {
    NotificationEventType.SAME_DAY_BOOKING: (
        "CALLLOCK: New booking TODAY\n{customer_name} · {time}\n{service}{city_suffix}\nReply OK to confirm"
    ),
    NotificationEventType.FUTURE_BOOKING: (
        "CALLLOCK: Booking {date}\n{customer_name} · {time}\n{service}\nView in app"
    ),
    NotificationEventType.CALLBACK_REQUEST: (
        "CALLLOCK: Callback requested\n{customer_name} wants callback {timeframe}\nReply CALL for number"
    ),
    NotificationEventType.SCHEDULE_CONFLICT: (
        "CALLLOCK: Conflict!\n{customer_name} at {time}\nConflicts with {conflicting_job}\nReview in app"
    ),
    NotificationEventType.CANCELLATION: (
        "CALLLOCK: Cancel\n{customer_name} · {time} slot open"
    ),
    NotificationEventType.ABANDONED_CALL: (
        "CALLLOCK: Hung up\n{customer_name} · {customer_phone}\nCall back ASAP"
    ),
    NotificationEventType.STALE_JOB_ALERT: (
        "CALLLOCK: Stale job!\n{customer_name} waiting {hours_waiting}h\nNeeds attention"
    ),
}

FALLBACK_TEMPLATE = "CALLLOCK: Update for {customer_name}"

# Command reply texts
CONFIRM_BOOKING_TEMPLATE = "Confirmed: {customer_name}. Good luck!"
CUSTOMER_PHONE_TEMPLATE = "{customer_name}: {customer_phone}"
COMPLETE_JOB_TEMPLATE = "Job for {customer_name} marked complete. Great work!"

DAILY_DIGEST_TEMPLATE = (
    "CALLLOCK Daily:\n{leads} leads today\n{urgent} need callback\n{booked} booked\nOpen app for details"
)


# ==================== FORMAT HELPERS ====================

def format_time_for_sms(scheduled_at: Optional[datetime], tz: Optional[str]) -> str:
    """'2:30 PM' in the operator's timezone, or 'TBD'"""
    if not scheduled_at:
        return "TBD"
    zone = get_zone(tz)
    local = scheduled_at.astimezone(zone) if zone else scheduled_at
    return format_clock(local)


def format_date_for_sms(scheduled_at: Optional[datetime], tz: Optional[str]) -> str:
    """'Tue Dec 17' in the operator's timezone, or 'TBD'"""
    if not scheduled_at:
        return "TBD"
    zone = get_zone(tz)
    local = scheduled_at.astimezone(zone) if zone else scheduled_at
    return f"{local:%a %b} {local.day}"


def extract_city(address: Optional[str]) -> str:
    """
    City from a '123 Main St, Austin, TX 78701' style address.

    The city is the second-to-last comma separated part.
    """
    if not address:
        return ""
    parts = [p.strip() for p in address.split(",") if p.strip()]
    if len(parts) >= 2:
        return parts[-2]
    return ""


def format_service_type(service_type: Optional[str]) -> str:
    if not service_type:
        return "Service"
    if service_type.lower() == "hvac":
        return "HVAC"
    return service_type[:1].upper() + service_type[1:]


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """Render a template; a missing variable falls back to the generic update text."""
    try:
        return template.format(**variables)
    except KeyError as e:
        logger.error(f"Missing template variable: {e}")
        return FALLBACK_TEMPLATE.format(customer_name=variables.get("customer_name", "customer"))


def format_daily_digest(counts: Dict[str, int]) -> str:
    return DAILY_DIGEST_TEMPLATE.format(
        leads=counts.get("leads", 0),
        urgent=counts.get("urgent", 0),
        booked=counts.get("booked", 0),
    )


def format_notification_message(
    event_type: NotificationEventType,
    data: NotificationData,
    tz: Optional[str],
) -> str:
    """
    Build the operator SMS for an event.

    Args:
        event_type: Which notification is being sent
        data: Template inputs
        tz: Operator timezone for clock/date rendering

    Returns:
        Message body
    """
    city = extract_city(data.address)
    variables = {
        "customer_name": data.customer_name,
        "time": format_time_for_sms(data.scheduled_at, tz),
        "date": format_date_for_sms(data.scheduled_at, tz),
        "service": format_service_type(data.service_type),
        "city_suffix": f" · {city}" if city else "",
        "timeframe": data.callback_timeframe or "soon",
        "conflicting_job": data.conflicting_job_name or "existing job",
        "customer_phone": data.customer_phone or "Unknown",
        "hours_waiting": data.hours_waiting or 24,
    }

    template = DEFAULT_TEMPLATES.get(event_type, FALLBACK_TEMPLATE)
    message = render_template(template, variables)

    if len(message) > SMS_SEGMENT_LENGTH:
        logger.warning(f"{event_type.value} message is {len(message)} chars, exceeds one segment")

    return message
