from .twilio_webhooks import router as twilio_router
from .notifications import router as notifications_router
from .cron import router as cron_router

__all__ = [
    'twilio_router',
    'notifications_router',
    'cron_router',
]
