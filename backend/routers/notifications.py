"""
Operator Notifications Router

Endpoints used by the voice-AI backend and the dashboard backend.

All endpoints require Internal Service Token authentication.

Endpoints:
- POST /api/notifications/send - Notify an operator about a call outcome
- GET /api/notifications/preferences/{user_id} - Current SMS preferences
- PUT /api/notifications/preferences/{user_id} - Update SMS preferences
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from middleware.internal_auth import InternalService, require_internal_service
from services.notification_service import NotificationService
from services.sms_storage import SmsRepositories
from sms_integration.schema import (
    SendNotificationRequest,
    SendNotificationResponse,
    NotificationPreferencesUpdate,
    NotificationPreferencesResponse,
)
from sms_integration.sms_sender import SMSSender
from .deps import get_repositories, get_sms_sender

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ==================== SEND ====================

@router.post("/send", response_model=SendNotificationResponse)
async def send_notification(
    request: SendNotificationRequest,
    service: InternalService = Depends(require_internal_service),
    repos: SmsRepositories = Depends(get_repositories),
    sender: SMSSender = Depends(get_sms_sender),
):
    """
    Send (or queue) an SMS notification to an operator.

    **Auth:** Internal Service Token (X-Internal-Api-Key header)

    A blocked, duplicate or deferred notification still answers 200;
    ``sent``, ``queued`` and ``reason`` say what happened.
    """
    user = await repos.users.get(request.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    if not user.phone:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User has no phone number configured"
        )

    logger.info(f"Notification {request.event_type.value} for user {user.id} requested by {service.name}")

    notifications = NotificationService(repos, sender)
    result = await notifications.send_operator_notification(
        user_id=user.id,
        event_type=request.event_type,
        data=request.data,
        operator_phone=user.phone,
        tz=user.timezone,
        job_id=request.job_id,
        lead_id=request.lead_id,
        customer_id=request.customer_id,
        batch=request.batch,
    )

    return SendNotificationResponse(
        sent=result.sent,
        queued=result.queued,
        reason=result.reason,
        twilio_sid=result.twilio_sid,
    )


# ==================== PREFERENCES ====================

@router.get("/preferences/{user_id}", response_model=NotificationPreferencesResponse)
async def get_preferences(
    user_id: str,
    service: InternalService = Depends(require_internal_service),
    repos: SmsRepositories = Depends(get_repositories),
):
    """
    Get a user's notification preferences; defaults when none are stored.

    **Auth:** Internal Service Token (X-Internal-Api-Key header)
    """
    prefs = await repos.preferences.get(user_id)
    if prefs is None:
        return NotificationPreferencesResponse(user_id=user_id)
    return NotificationPreferencesResponse.model_validate(prefs)


@router.put("/preferences/{user_id}", response_model=NotificationPreferencesResponse)
async def update_preferences(
    user_id: str,
    request: NotificationPreferencesUpdate,
    service: InternalService = Depends(require_internal_service),
    repos: SmsRepositories = Depends(get_repositories),
):
    """
    Update a user's notification preferences. Omitted fields are unchanged.

    **Auth:** Internal Service Token (X-Internal-Api-Key header)
    """
    user = await repos.users.get(user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    updates = request.model_dump(exclude_unset=True)
    if "sms_unsubscribed" in updates:
        updates["sms_unsubscribed_at"] = datetime.now(timezone.utc) if updates["sms_unsubscribed"] else None
    prefs = await repos.preferences.upsert(user_id, updates)

    logger.info(f"Notification preferences updated for user {user_id} by {service.name}: {sorted(updates)}")
    return NotificationPreferencesResponse.model_validate(prefs)
