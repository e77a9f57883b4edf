"""
SMS Time Parser

Turns the free text an operator replies with ("TUE 2PM", "TOMORROW 9AM",
"1H") into timezone-aware datetimes.

Features:
- Booking times: relative days, weekdays, MM/DD dates, bare clock times, presets
- Snooze durations: hours, minutes, tomorrow morning/afternoon
- Confirmation text for replies ("Tomorrow at 2:00 PM")

Every parse returns a result object; malformed input is reported back as
a clarification prompt, never raised.

Usage:
    result = parse_time_from_sms("TUE 2PM", tz="America/Chicago")
    if result.success:
        schedule(result.date_time)
    else:
        reply(result.clarification_prompt)
"""

import re
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple, Union

from dateutil import tz as dateutil_tz

logger = logging.getLogger(__name__)

# Python weekday numbering (Monday=0)
DAY_NAMES = {
    "MON": 0, "MONDAY": 0,
    "TUE": 1, "TUES": 1, "TUESDAY": 1,
    "WED": 2, "WEDNESDAY": 2,
    "THU": 3, "THUR": 3, "THURS": 3, "THURSDAY": 3,
    "FRI": 4, "FRIDAY": 4,
    "SAT": 5, "SATURDAY": 5,
    "SUN": 6, "SUNDAY": 6,
}

TIME_OF_DAY = {
    "MORNING": (9, 0),
    "AM": (9, 0),
    "NOON": (12, 0),
    "AFTERNOON": (14, 0),
    "PM": (14, 0),
    "EVENING": (17, 0),
    "EOD": (17, 0),
}

PRESETS_ONE_HOUR = ("ASAP", "NOW", "SOON")

DEFAULT_TIME = (9, 0)

SNOOZE_MIN_HOURS, SNOOZE_MAX_HOURS = 1, 24
SNOOZE_MIN_MINUTES, SNOOZE_MAX_MINUTES = 15, 120

# Reply texts
PROMPT_WHEN = "When? Reply with day & time (e.g., TUE 2PM, TOMORROW 9AM)"
PROMPT_TODAY = "What time today? Reply with time (e.g., 2PM, 10:30AM)"
PROMPT_PASSED = "That time has passed. Try a future date (e.g., TOMORROW 2PM)"
PROMPT_UNPARSED = "Couldn't understand that time. Try: TUE 2PM, TOMORROW 9AM, or MORNING"
SNOOZE_USAGE = "Invalid snooze format. Try: 1H, 3H, 30M, TOMORROW, TOMORROW AM"

_RELATIVE_DAY_RE = re.compile(r"^(TODAY|TOMORROW|TMRW|TMR)\b\s*(.*)$")
_NEXT_DAY_RE = re.compile(r"^NEXT\s+(\w+)\s*(.*)$")
_EXPLICIT_DATE_RE = re.compile(r"^(\d{1,2})[/\-](\d{1,2})\s*(.*)$")
_TWELVE_HOUR_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(AM|PM)$")
_TWENTY_FOUR_HOUR_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_BARE_HOUR_RE = re.compile(r"^(\d{1,2})$")

_SNOOZE_HOURS_RE = re.compile(r"^(\d+)\s*(?:H|HR|HRS|HOUR|HOURS)$")
_SNOOZE_MINUTES_RE = re.compile(r"^(\d+)\s*(?:M|MIN|MINS|MINUTE|MINUTES)$")
_SNOOZE_TOMORROW_RE = re.compile(r"^(?:TOMORROW|TMRW|TMR)(?:\s+(AM|PM|MORNING|AFTERNOON))?$")
_SNOOZE_BARE_DIGIT_RE = re.compile(r"^([1-9])$")


@dataclass
class ParsedTime:
    """Result of parsing a booking time"""
    success: bool
    date_time: Optional[datetime] = None
    display_text: Optional[str] = None
    error: Optional[str] = None
    needs_clarification: bool = False
    clarification_prompt: Optional[str] = None

    @classmethod
    def clarify(cls, prompt: str, error: Optional[str] = None) -> "ParsedTime":
        return cls(success=False, error=error, needs_clarification=True, clarification_prompt=prompt)


@dataclass
class ParsedSnooze:
    """Result of parsing a snooze duration"""
    success: bool
    snooze_until: Optional[datetime] = None
    display_text: Optional[str] = None
    error: Optional[str] = None


# ==================== TIME HELPERS ====================

def get_zone(tz: Union[str, tzinfo, None]) -> Optional[tzinfo]:
    """Resolve an IANA name (or tzinfo) to a tzinfo; unknown names fall back to UTC."""
    if tz is None or isinstance(tz, tzinfo):
        return tz
    zone = dateutil_tz.gettz(tz)
    if zone is None:
        logger.warning(f"Unknown timezone '{tz}', falling back to UTC")
        return dateutil_tz.UTC
    return zone


def resolve_now(now: Optional[datetime] = None, tz: Union[str, tzinfo, None] = None) -> datetime:
    """
    Current time as an aware datetime in ``tz``.

    A naive ``now`` is taken to already be wall-clock time in ``tz``.
    """
    zone = get_zone(tz)
    if now is None:
        return datetime.now(zone or dateutil_tz.tzlocal())
    if now.tzinfo is None:
        return now.replace(tzinfo=zone or dateutil_tz.tzlocal())
    return now.astimezone(zone) if zone else now


def _at(day: datetime, clock: Tuple[int, int]) -> datetime:
    hour, minute = clock
    return dateutil_tz.resolve_imaginary(day.replace(hour=hour, minute=minute, second=0, microsecond=0))


def _after(now: datetime, delta: timedelta) -> datetime:
    """Real elapsed time from ``now``, expressed in now's timezone (DST safe)."""
    return (now.astimezone(timezone.utc) + delta).astimezone(now.tzinfo)


def format_clock(dt: datetime) -> str:
    """'2:00 PM' style clock text without platform-specific strftime flags."""
    hour = dt.hour % 12 or 12
    period = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {period}"


def format_for_confirmation(dt: datetime, now: Optional[datetime] = None) -> str:
    """
    Human readable time for SMS replies.

    "Today at 2:00 PM", "Tomorrow at 9:00 AM" or "Sat, Dec 21 at 2:00 PM",
    relative to ``now`` in ``now``'s timezone.
    """
    now = now or datetime.now(dt.tzinfo)
    local = dt.astimezone(now.tzinfo) if (dt.tzinfo and now.tzinfo) else dt
    clock = format_clock(local)

    if local.date() == now.date():
        return f"Today at {clock}"
    if local.date() == (now + timedelta(days=1)).date():
        return f"Tomorrow at {clock}"
    return f"{local:%a, %b} {local.day} at {clock}"


# ==================== CLOCK SUB-PARSER ====================

def parse_time_string(text: Optional[str]) -> Optional[Tuple[int, int]]:
    """
    Parse a clock time into (hour, minute).

    Accepts time-of-day keywords (MORNING, NOON...), "2PM" / "2:30 PM",
    24-hour "14:00", and a bare hour where 1-6 means afternoon.
    """
    if not text:
        return None

    normalized = text.strip().upper()
    if normalized.startswith("AT "):
        normalized = normalized[3:].strip()

    if normalized in TIME_OF_DAY:
        return TIME_OF_DAY[normalized]

    match = _TWELVE_HOUR_RE.match(normalized)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if not 1 <= hour <= 12 or minute > 59:
            return None
        if match.group(3) == "PM" and hour != 12:
            hour += 12
        elif match.group(3) == "AM" and hour == 12:
            hour = 0
        return hour, minute

    match = _TWENTY_FOUR_HOUR_RE.match(normalized)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            return None
        return hour, minute

    match = _BARE_HOUR_RE.match(normalized)
    if match:
        hour = int(match.group(1))
        # Nobody books a 3 AM visit by text
        if 1 <= hour <= 6:
            hour += 12
        if hour > 23:
            return None
        return hour, 0

    return None


# ==================== PARSE STRATEGIES ====================
# Each returns None when it does not apply to the input.

def _parse_relative_day(text: str, now: datetime) -> Optional[ParsedTime]:
    match = _RELATIVE_DAY_RE.match(text)
    if not match:
        return None

    word, rest = match.groups()
    clock = parse_time_string(rest)

    if word == "TODAY":
        if clock is None:
            return ParsedTime.clarify(PROMPT_TODAY)
        return ParsedTime(success=True, date_time=_at(now, clock))

    return ParsedTime(success=True, date_time=_at(now + timedelta(days=1), clock or DEFAULT_TIME))


def _parse_day_of_week(text: str, now: datetime) -> Optional[ParsedTime]:
    match = _NEXT_DAY_RE.match(text)
    if match and match.group(1) in DAY_NAMES:
        target = DAY_NAMES[match.group(1)]
        # Skip the nearest occurrence: always 7-13 days out
        days_ahead = (target - now.weekday()) % 7 + 7
        clock = parse_time_string(match.group(2)) or DEFAULT_TIME
        return ParsedTime(success=True, date_time=_at(now + timedelta(days=days_ahead), clock))

    first, _, rest = text.partition(" ")
    if first in DAY_NAMES:
        # Nearest future occurrence, today excluded: 1-7 days out
        days_ahead = (DAY_NAMES[first] - now.weekday()) % 7 or 7
        clock = parse_time_string(rest) or DEFAULT_TIME
        return ParsedTime(success=True, date_time=_at(now + timedelta(days=days_ahead), clock))

    return None


def _parse_explicit_date(text: str, now: datetime) -> Optional[ParsedTime]:
    match = _EXPLICIT_DATE_RE.match(text)
    if not match:
        return None

    month, day = int(match.group(1)), int(match.group(2))
    clock = parse_time_string(match.group(3)) or DEFAULT_TIME

    try:
        target = now.replace(month=month, day=day)
        if target.date() < now.date():
            target = target.replace(year=now.year + 1)
    except ValueError:
        return ParsedTime.clarify(PROMPT_UNPARSED, error=f"Invalid date {month}/{day}")

    return ParsedTime(success=True, date_time=_at(target, clock))


def _parse_time_only(text: str, now: datetime) -> Optional[ParsedTime]:
    clock = parse_time_string(text)
    if clock is None:
        return None

    date_time = _at(now, clock)
    if date_time < now:
        date_time += timedelta(days=1)
    return ParsedTime(success=True, date_time=date_time)


def _parse_preset(text: str, now: datetime) -> Optional[ParsedTime]:
    if text in PRESETS_ONE_HOUR:
        return ParsedTime(success=True, date_time=_after(now, timedelta(hours=1)))

    if text in TIME_OF_DAY:
        date_time = _at(now, TIME_OF_DAY[text])
        if date_time < now:
            date_time += timedelta(days=1)
        return ParsedTime(success=True, date_time=date_time)

    return None


_STRATEGIES = (
    _parse_relative_day,
    _parse_day_of_week,
    _parse_explicit_date,
    _parse_time_only,
    _parse_preset,
)


def parse_time_from_sms(
    text: Optional[str],
    now: Optional[datetime] = None,
    tz: Union[str, tzinfo, None] = None,
) -> ParsedTime:
    """
    Parse an operator's booking time.

    Args:
        text: Free text such as "TUE 2PM", "TOMORROW", "12/20 10AM", "ASAP"
        now: Reference time (defaults to the current time)
        tz: Operator timezone (IANA name or tzinfo)

    Returns:
        ParsedTime with an aware ``date_time`` in the operator's timezone,
        or a clarification prompt to send back.
    """
    normalized = re.sub(r"\s+", " ", (text or "").strip().upper())
    if not normalized:
        return ParsedTime.clarify(PROMPT_WHEN)

    now = resolve_now(now, tz)

    result = None
    for strategy in _STRATEGIES:
        result = strategy(normalized, now)
        if result is not None:
            break

    if result is None:
        return ParsedTime.clarify(PROMPT_UNPARSED, error="Unrecognized time format")
    if not result.success:
        return result

    date_time = result.date_time
    if date_time < now:
        if date_time.date() != now.date():
            return ParsedTime.clarify(PROMPT_PASSED, error="That time has already passed")
        date_time += timedelta(days=1)

    return ParsedTime(
        success=True,
        date_time=date_time,
        display_text=format_for_confirmation(date_time, now),
    )


# ==================== SNOOZE ====================

def parse_snooze_from_sms(
    text: Optional[str],
    now: Optional[datetime] = None,
    tz: Union[str, tzinfo, None] = None,
) -> ParsedSnooze:
    """
    Parse a snooze duration ("1H", "30M", "TOMORROW PM", "3").

    Hours are bounded to 1-24, minutes to 15-120. TOMORROW and TOMORROW AM
    mean 9:00, TOMORROW PM means 14:00 in the operator's timezone.
    """
    normalized = re.sub(r"\s+", " ", (text or "").strip().upper())
    now = resolve_now(now, tz)

    until = None

    match = _SNOOZE_HOURS_RE.match(normalized) or _SNOOZE_BARE_DIGIT_RE.match(normalized)
    if match:
        hours = int(match.group(1))
        if not SNOOZE_MIN_HOURS <= hours <= SNOOZE_MAX_HOURS:
            return ParsedSnooze(
                success=False,
                error=f"Snooze hours must be between {SNOOZE_MIN_HOURS} and {SNOOZE_MAX_HOURS}",
            )
        until = _after(now, timedelta(hours=hours))

    match = _SNOOZE_MINUTES_RE.match(normalized)
    if match:
        minutes = int(match.group(1))
        if not SNOOZE_MIN_MINUTES <= minutes <= SNOOZE_MAX_MINUTES:
            return ParsedSnooze(
                success=False,
                error=f"Snooze minutes must be between {SNOOZE_MIN_MINUTES} and {SNOOZE_MAX_MINUTES}",
            )
        until = _after(now, timedelta(minutes=minutes))

    match = _SNOOZE_TOMORROW_RE.match(normalized)
    if match:
        clock = (14, 0) if match.group(1) in ("PM", "AFTERNOON") else (9, 0)
        until = _at(now + timedelta(days=1), clock)

    if until is None:
        return ParsedSnooze(success=False, error=SNOOZE_USAGE)

    return ParsedSnooze(
        success=True,
        snooze_until=until,
        display_text=format_for_confirmation(until, now),
    )


# ==================== CONFIRMATIONS ====================

def generate_booking_confirmation(customer_name: str, date_time: datetime, now: Optional[datetime] = None) -> str:
    return f"Booked: {customer_name}\n{format_for_confirmation(date_time, now)}\nAdded to your calendar"


def generate_snooze_confirmation(customer_name: str, snooze_until: datetime, now: Optional[datetime] = None) -> str:
    return f"Snoozed: {customer_name}\nReminder: {format_for_confirmation(snooze_until, now)}"
