"""
Cron Sweep Router

Endpoints hit by the scheduler. All require Authorization: Bearer <CRON_SECRET>.

Endpoints:
- POST /api/cron/process-notification-queue - Deliver queued notifications (every minute)
- POST /api/cron/retry-failed - Redeliver failed sends (every minute)
- POST /api/cron/escalations - Flag unanswered leads (every 15 minutes)
- POST /api/cron/stale-jobs - Alert on stale new jobs (hourly)
- POST /api/cron/daily-digest - Evening summary per operator (daily)
"""

import logging
from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from middleware.internal_auth import require_cron_secret
from sentry_integration import capture_exception
from services.notification_sweeps import NotificationSweeps
from services.sms_storage import SmsRepositories
from sms_integration.schema import SweepResponse
from sms_integration.sms_sender import SMSSender
from .deps import get_repositories, get_sms_sender

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cron",
    tags=["Cron"],
    dependencies=[Depends(require_cron_secret)],
)


async def get_sweeps(
    repos: SmsRepositories = Depends(get_repositories),
    sender: SMSSender = Depends(get_sms_sender),
) -> NotificationSweeps:
    return NotificationSweeps(repos, sender)


async def _run_sweep(name: str, sweep: Callable[[], Awaitable[Dict[str, Any]]]) -> SweepResponse:
    logger.info(f"Cron sweep started: {name}")
    try:
        details = await sweep()
    except Exception as e:
        logger.error(f"Cron sweep {name} failed: {e}", exc_info=True)
        capture_exception(e, sweep=name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to run {name}"
        )

    return SweepResponse(success=True, processed=details.get("processed", 0), details=details)


# ==================== SWEEPS ====================

@router.post("/process-notification-queue", response_model=SweepResponse)
async def process_notification_queue(sweeps: NotificationSweeps = Depends(get_sweeps)):
    """Deliver due queued notifications, folding multi-lead backlogs into one SMS."""
    return await _run_sweep("notification queue", sweeps.process_notification_queue)


@router.post("/retry-failed", response_model=SweepResponse)
async def retry_failed_sms(sweeps: NotificationSweeps = Depends(get_sweeps)):
    """Redeliver failed sends whose retry time has come."""
    return await _run_sweep("retry queue", sweeps.process_retry_queue)


@router.post("/escalations", response_model=SweepResponse)
async def run_escalations(sweeps: NotificationSweeps = Depends(get_sweeps)):
    """Flag leads whose alerts went unanswered."""
    return await _run_sweep("escalations", sweeps.run_escalation_sweep)


@router.post("/stale-jobs", response_model=SweepResponse)
async def process_stale_jobs(sweeps: NotificationSweeps = Depends(get_sweeps)):
    return await _run_sweep("stale jobs", sweeps.process_stale_jobs)


@router.post("/daily-digest", response_model=SweepResponse)
async def send_daily_digest(sweeps: NotificationSweeps = Depends(get_sweeps)):
    return await _run_sweep("daily digest", sweeps.send_daily_digests)
