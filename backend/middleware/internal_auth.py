"""
Internal Service Authentication Middleware

Shared-secret authentication for the two non-user callers of this API:
- the voice-AI backend triggering notifications (X-Internal-Api-Key)
- the scheduler hitting cron sweeps (Authorization: Bearer <CRON_SECRET>)

Settings:
    INTERNAL_API_KEY: Accepted key(s); comma-separated to allow rotation
    CRON_SECRET: Bearer token expected on /api/cron/*

Usage:
    from middleware.internal_auth import require_internal_service, require_cron_secret

    @router.post("/send")
    async def send(
        data: SendNotificationRequest,
        service: InternalService = Depends(require_internal_service)
    ):
        pass

Headers:
    X-Internal-Api-Key: <api_key>
    X-Service-Name: <service_name> (optional, for logging)
"""

import secrets
import logging
from typing import Optional, Set
from dataclasses import dataclass

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import APIKeyHeader

from config import get_settings

logger = logging.getLogger(__name__)

# Header names
API_KEY_HEADER = "X-Internal-Api-Key"
SERVICE_NAME_HEADER = "X-Service-Name"


@dataclass
class InternalService:
    """Represents an authenticated internal service"""
    name: str
    api_key_hash: str  # Last 8 chars of key for logging


def _get_valid_api_keys() -> Set[str]:
    raw = get_settings().INTERNAL_API_KEY or ""
    return {key.strip() for key in raw.split(",") if key.strip()}


def _secret_matches(candidate: str, secret: str) -> bool:
    """Constant-time comparison over UTF-8 bytes, so any header text is comparable"""
    return secrets.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


def validate_internal_key(api_key: Optional[str]) -> bool:
    """
    Validate an internal API key.

    Args:
        api_key: The API key to validate

    Returns:
        True if valid, False otherwise
    """
    if not api_key:
        return False

    valid_keys = _get_valid_api_keys()
    if not valid_keys:
        logger.warning("No internal API keys configured")
        return False

    # Constant-time comparison to prevent timing attacks
    return any(_secret_matches(api_key, valid_key) for valid_key in valid_keys)


# FastAPI dependency for API key header
api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def get_internal_service(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> InternalService:
    """
    FastAPI dependency to authenticate internal service requests.

    Raises:
        HTTPException: 401 if the key is missing or invalid
    """
    service_name = request.headers.get(SERVICE_NAME_HEADER, "unknown")

    if not api_key:
        logger.warning(f"Missing API key from service: {service_name}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing internal API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not validate_internal_key(api_key):
        logger.warning(f"Invalid API key from service: {service_name}, key ending: ...{api_key[-8:]}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    logger.info(f"Internal service authenticated: {service_name}")
    return InternalService(name=service_name, api_key_hash=f"...{api_key[-8:]}")


# Convenience alias - use directly as dependency
require_internal_service = get_internal_service


async def require_cron_secret(request: Request) -> None:
    """
    FastAPI dependency guarding the cron sweep endpoints.

    Without a configured CRON_SECRET the endpoints are open in
    development and unavailable in production.
    """
    settings = get_settings()
    cron_secret = settings.CRON_SECRET

    if not cron_secret:
        if settings.is_production:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Cron secret not configured"
            )
        logger.warning("CRON_SECRET not configured, cron endpoints are unauthenticated")
        return

    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not _secret_matches(token.strip(), cron_secret):
        logger.warning(f"Rejected cron call to {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"}
        )
