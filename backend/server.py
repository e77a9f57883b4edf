"""
Call Rescue SMS API

FastAPI entry point. Run with: uvicorn server:app --host 0.0.0.0 --port 8001
"""

import time
import uuid
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv
from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings, validate_environment
from logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception
from database import init_db, get_engine, get_session_factory
from routers import twilio_router, notifications_router, cron_router
from services.sms_storage import NotificationQueueRepository

settings = get_settings()

# Use JSON format in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
)
logger = get_logger(__name__)

if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )

# Queue rows this far past send_at mean the cron sweep is not running
QUEUE_BACKLOG_GRACE = timedelta(minutes=10)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Call Rescue SMS API ({settings.ENVIRONMENT}, debug={settings.debug_enabled})")

    env_status = validate_environment()
    for error in env_status["errors"]:
        logger.error(f"Configuration Error: {error}")
    for warning in env_status["warnings"]:
        logger.warning(f"Configuration Warning: {warning}")
    if not env_status["valid"] and settings.is_production:
        raise RuntimeError("Cannot start in production with invalid configuration")

    try:
        await init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise
    logger.info("PostgreSQL connection established")

    yield

    logger.info("Shutting down Call Rescue SMS API")
    await get_engine().dispose()


app = FastAPI(
    title=settings.API_TITLE,
    description="""
    SMS channel for missed call rescue: operator notifications and reply commands.

    ### Twilio Webhooks (/api/twilio)
    - Inbound operator replies (status codes, BOOK, SNOOZE, NOTE, CALL, DONE, HELP)
    - Delivery status callbacks

    ### Notifications (/api/notifications)
    - Send operator notifications (preferences, quiet hours, dedup, batching)
    - Per-operator SMS preferences

    ### Cron Sweeps (/api/cron)
    - Notification queue and retry delivery
    - Escalation of unanswered leads
    - Stale job alerts and daily digest
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/", tags=["Health"])
async def root():
    return {
        "message": "Call Rescue SMS API",
        "status": "healthy",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@api_router.get("/health", tags=["Health"])
async def health_check():
    """
    Readiness check for load balancers and uptime monitors.

    Returns:
    - 200: Database reachable (queue backlog and Twilio are reported, not fatal)
    - 503: Database unavailable
    """
    now = datetime.now(timezone.utc)
    checks = {}
    healthy = True

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = {"status": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        healthy = False
        checks["database"] = {"status": "disconnected", "error": str(e)}

    if healthy:
        async with get_session_factory()() as session:
            overdue = await NotificationQueueRepository(session).count_overdue(now - QUEUE_BACKLOG_GRACE)
        checks["notification_queue"] = {
            "status": "ok" if overdue == 0 else "backlogged",
            "overdue": overdue,
        }

    checks["twilio"] = {"status": "configured" if settings.twilio_configured else "not_configured"}

    env_status = validate_environment()
    checks["configuration"] = {
        "status": "valid" if env_status["valid"] else "invalid",
        "warnings": len(env_status["warnings"]),
        "errors": len(env_status["errors"]),
    }

    health_status = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": now.isoformat(),
        "version": settings.API_VERSION,
        "checks": checks,
    }
    if not healthy:
        raise HTTPException(status_code=503, detail=health_status)
    return health_status


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    """Liveness check; does not touch dependencies."""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


api_router.include_router(twilio_router)
api_router.include_router(notifications_router)
api_router.include_router(cron_router)

app.include_router(api_router)


# ==================== MIDDLEWARE ====================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag each request with an id and log slow or failed ones."""
    start_time = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    set_request_context(request_id=request_id)

    try:
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.0f}ms)")
        return response
    finally:
        clear_request_context()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    capture_exception(exc, path=request.url.path)

    # Don't expose internal errors in production
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc), "type": type(exc).__name__})
