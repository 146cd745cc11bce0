"""
Request throttling for booking and payment endpoints.

Limits are kept in process memory by SlowAPI, keyed on the caller's IP.
Limit strings come from settings (RATE_LIMIT_DEFAULT, RATE_LIMIT_BOOKING).
"""
import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from parcin.core.config import settings

logger = logging.getLogger(__name__)

PERIOD_SECONDS = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}


def get_client_ip(request: Request) -> str:
    # Behind the load balancer the left-most X-Forwarded-For entry is the driver
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def retry_after_seconds(limit: str) -> int:
    """Window length of a limit string such as "10/minute" or "10 per 1 minute"."""
    period = limit.replace("/", " ").split()[-1].lower().rstrip("s")
    return PERIOD_SECONDS.get(period, 60)


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render a 429 in the same {error, message, details} shape as ParcinError."""
    limit = exc.detail or settings.RATE_LIMIT_DEFAULT
    retry_after = retry_after_seconds(limit)
    logger.warning(f"RATE_LIMITED: ip={get_client_ip(request)} path={request.url.path} limit={limit}")

    return JSONResponse(
        status_code=429,
        content={
            "error": "RATE_LIMITED",
            "message": "Too many requests, slow down and try again shortly",
            "details": {"limit": limit, "retry_after_seconds": retry_after},
        },
        headers={"Retry-After": str(retry_after)},
    )
