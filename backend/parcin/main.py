"""
Parcin API

Wires the routers under /api, the error handlers, rate limiting and the
background purge of unpaid reservations. `/health` reports the database ping
and the purge heartbeat.
"""
import asyncio
import logging
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from parcin.api.routes import reservations, payments, lots, operator, users, vehicles, subscriptions
from parcin.core.config import settings
from parcin.core.database import AsyncSessionLocal, create_tables
from parcin.core.error_handler import ErrorSanitizationMiddleware, parcin_error_handler
from parcin.core.exceptions import ParcinError
from parcin.core.rate_limit import limiter, rate_limit_exceeded_handler
from parcin.services.reservation_cleanup import purge_stale_pending_reservations

logger = logging.getLogger(__name__)

_reservation_cleanup_task: Optional[asyncio.Task] = None
_cleanup_heartbeat: dict = {
    "last_run": None,
    "last_success": None,
    "reservations_purged": 0,
    "errors": 0,
    "interval_minutes": settings.RESERVATION_CLEANUP_INTERVAL_MINUTES,
}


async def run_reservation_cleanup():
    """One purge pass; the outcome lands in the heartbeat shown by /health."""
    _cleanup_heartbeat["last_run"] = datetime.now(timezone.utc).isoformat()

    try:
        stats = await purge_stale_pending_reservations()
        _cleanup_heartbeat["last_success"] = datetime.now(timezone.utc).isoformat()
        _cleanup_heartbeat["reservations_purged"] += stats.get("reservations_purged", 0)
        _cleanup_heartbeat["errors"] += stats.get("errors", 0)
    except Exception as e:
        _cleanup_heartbeat["errors"] += 1
        logger.exception(f"Unpaid reservation purge crashed: {e}")


async def reservation_cleanup_scheduler():
    interval_seconds = settings.RESERVATION_CLEANUP_INTERVAL_MINUTES * 60
    logger.info(f"Unpaid reservation purge every {settings.RESERVATION_CLEANUP_INTERVAL_MINUTES} min")

    while True:
        await run_reservation_cleanup()
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables (optional) and start background tasks on startup."""
    global _reservation_cleanup_task

    if settings.AUTO_CREATE_TABLES:
        await create_tables()
        logger.info("Database tables ensured")

    if settings.RESERVATION_CLEANUP_ENABLED:
        _reservation_cleanup_task = asyncio.create_task(reservation_cleanup_scheduler())
        logger.info("Reservation cleanup scheduler ENABLED")
    else:
        logger.info("Reservation cleanup scheduler DISABLED via config")

    yield

    if _reservation_cleanup_task and not _reservation_cleanup_task.done():
        _reservation_cleanup_task.cancel()
        try:
            await _reservation_cleanup_task
        except asyncio.CancelledError:
            logger.info("Reservation cleanup scheduler cancelled")

    for name in ("notifier", "vehicle_catalog"):
        client = getattr(app.state, name, None)
        if client is None:
            continue
        await client.close()
        logger.info(f"{name} HTTP client closed")


app = FastAPI(
    lifespan=lifespan,
    title=f"{settings.APP_NAME} API",
    description="""
## Parcin Parking API

Parking-lot marketplace: drivers find lots, reserve a spot by paying a small
reservation fee, then check in and out; operators manage their lots.

### Reservation lifecycle
`PENDING_PAYMENT` -> `CONFIRMED` -> `CHECKED_IN` -> `CHECKED_OUT`, with
`EXPIRED`, `CANCELLED` and `NO_SHOW` as the other terminal states.

### Rate Limits
- Booking and payment intents: 10 requests/minute
- General: 100 requests/minute
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Health", "description": "Health check and monitoring endpoints"},
        {"name": "reservations", "description": "Booking and reservation lifecycle"},
        {"name": "payments", "description": "Stripe payment intents, refunds and webhooks"},
        {"name": "lots", "description": "Public parking lot search and availability"},
        {"name": "operator", "description": "Operator lot management"},
        {"name": "users", "description": "Driver reservation history"},
        {"name": "vehicles", "description": "Vehicle brand/model catalog"},
    ],
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Domain errors -> typed JSON bodies
app.add_exception_handler(ParcinError, parcin_error_handler)

# Error sanitization (catches unhandled exceptions)
app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(reservations.router, prefix="/api")
app.include_router(payments.router, prefix="/api")
app.include_router(lots.router, prefix="/api")
app.include_router(operator.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(vehicles.router, prefix="/api")
app.include_router(subscriptions.router, prefix="/api")


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": "1.0.0",
        "status": "operational"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with DB ping and cleanup heartbeat.
    Returns 503 if database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "reservation_cleanup": _cleanup_heartbeat,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
