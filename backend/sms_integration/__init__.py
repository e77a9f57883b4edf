"""
SMS Integration Module

Twilio delivery, inbound webhook parsing, time parsing and message
templates for the call rescue SMS channel.

Usage:
    from sms_integration import SMSClient, SMSSender, OutboundSMS

    sender = SMSSender(SMSClient(), repos.sms_log)
    result = await sender.send(OutboundSMS(to='+15551234567', body='Hello!', user_id=uid))

    from sms_integration import parse_time_from_sms
    parsed = parse_time_from_sms('TUE 2PM', tz='America/Chicago')

Environment Variables:
    TWILIO_ACCOUNT_SID: Twilio Account SID
    TWILIO_AUTH_TOKEN: Twilio Auth Token (also validates webhook signatures)
    TWILIO_PHONE_NUMBER: Twilio Phone Number (sender)
"""

from .sms_client import SMSClient, SMSResult, normalize_phone_number, validate_phone_number
from .sms_sender import SMSSender, OutboundSMS, SendResult
from .time_parser import (
    ParsedTime, ParsedSnooze, parse_time_from_sms, parse_snooze_from_sms,
    format_for_confirmation, generate_booking_confirmation, generate_snooze_confirmation,
)
from .templates import format_notification_message, DEFAULT_TEMPLATES

__all__ = [
    'SMSClient',
    'SMSResult',
    'normalize_phone_number',
    'validate_phone_number',
    'SMSSender',
    'OutboundSMS',
    'SendResult',
    'ParsedTime',
    'ParsedSnooze',
    'parse_time_from_sms',
    'parse_snooze_from_sms',
    'format_for_confirmation',
    'generate_booking_confirmation',
    'generate_snooze_confirmation',
    'format_notification_message',
    'DEFAULT_TEMPLATES',
]
