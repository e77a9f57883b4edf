"""
Twilio Webhook Router

Endpoints called by Twilio, authenticated by X-Twilio-Signature:
- POST /api/twilio/inbound - Operator SMS reply (returns TwiML)
- POST /api/twilio/status - Delivery status callback

Both endpoints answer 200 whenever the signature is valid; Twilio retries
and eventually disables webhooks that keep failing.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from config import get_settings
from logging_config import mask_phone
from sentry_integration import capture_exception
from services.sms_storage import SmsRepositories
from sms_integration.sms_sender import SMSSender
from sms_integration.webhook_handler import SMSWebhookHandler, twiml_response
from .deps import get_repositories, get_sms_sender

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["Twilio Webhooks"])

SIGNATURE_HEADER = "X-Twilio-Signature"


def _twiml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


def _signed_url(request: Request) -> str:
    """URL Twilio signed: the public base URL when we sit behind a proxy."""
    base_url = get_settings().APP_BASE_URL
    if base_url:
        url = base_url.rstrip("/") + request.url.path
        if request.url.query:
            url += "?" + request.url.query
        return url
    return str(request.url)


# ==================== INBOUND SMS ====================

@router.post("/inbound")
async def receive_inbound_sms(
    request: Request,
    repos: SmsRepositories = Depends(get_repositories),
    sender: SMSSender = Depends(get_sms_sender),
):
    """
    Handle an operator's SMS reply.

    **Auth:** X-Twilio-Signature

    Always answers with TwiML. Processing errors are reported and
    answered with an empty response.
    """
    form = dict(await request.form())
    handler = SMSWebhookHandler(repos, sender)

    if not handler.verify_signature(_signed_url(request), form, request.headers.get(SIGNATURE_HEADER)):
        logger.warning(f"Invalid Twilio signature on inbound SMS from {mask_phone(form.get('From'))}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid signature"
        )

    sms = handler.parse_webhook(form)
    if sms is None:
        logger.warning("Inbound webhook missing From or Body")
        return _twiml(twiml_response())

    try:
        return _twiml(await handler.process_inbound(sms))
    except Exception as e:
        logger.error(f"Error processing inbound SMS from {mask_phone(sms.from_number)}: {e}", exc_info=True)
        capture_exception(e, message_sid=sms.message_id)
        return _twiml(twiml_response())


# ==================== STATUS CALLBACK ====================

@router.post("/status")
async def receive_status_callback(
    request: Request,
    repos: SmsRepositories = Depends(get_repositories),
    sender: SMSSender = Depends(get_sms_sender),
):
    """
    Record a delivery status update for an outbound message.

    **Auth:** X-Twilio-Signature
    """
    form = dict(await request.form())
    handler = SMSWebhookHandler(repos, sender)

    if not handler.verify_signature(_signed_url(request), form, request.headers.get(SIGNATURE_HEADER)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid signature"
        )

    message_sid = form.get("MessageSid")
    message_status = form.get("MessageStatus")
    if not message_sid or not message_status:
        return {"received": True, "updated": 0}

    try:
        updated = await repos.sms_log.update_delivery_status(
            message_sid, message_status, datetime.now(timezone.utc)
        )
    except Exception as e:
        logger.error(f"Failed to record delivery status for {message_sid}: {e}")
        capture_exception(e, message_sid=message_sid)
        return {"received": True, "updated": 0}

    logger.info(f"Delivery status for {message_sid}: {message_status}")
    return {"received": True, "updated": updated}
