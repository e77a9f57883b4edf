from .connection import get_db, get_engine, get_session_factory, init_db, Base

# Import SMS models to ensure they are registered with Base
from .sms_models import (
    UserDB, LeadDB, JobDB, OperatorNoteDB, SmsLogDB, NotificationQueueDB,
    SmsAlertContextDB, NotificationPreferencesDB, SmsRetryQueueDB,
    LeadStatus, JobStatus, PriorityColor, SmsDirection, SmsStatus,
    QueueStatus, AlertContextStatus, RetryStatus, TERMINAL_LEAD_STATUSES,
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'init_db', 'Base',
    # SMS models
    'UserDB', 'LeadDB', 'JobDB', 'OperatorNoteDB', 'SmsLogDB', 'NotificationQueueDB',
    'SmsAlertContextDB', 'NotificationPreferencesDB', 'SmsRetryQueueDB',
    # Enums
    'LeadStatus', 'JobStatus', 'PriorityColor', 'SmsDirection', 'SmsStatus',
    'QueueStatus', 'AlertContextStatus', 'RetryStatus', 'TERMINAL_LEAD_STATUSES',
]
