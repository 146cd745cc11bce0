"""
Error rendering

ParcinError subclasses become `{"error", "message", "details"}` bodies with
their own status code. Anything else that escapes a route is logged with its
traceback and answered with a generic 500 carrying an error id that can be
matched against the logs.
"""
import logging
import re
import uuid
from typing import Union

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from parcin.core.config import settings
from parcin.core.exceptions import ParcinError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An internal error occurred. Please try again later."
MAX_MESSAGE_LENGTH = 200

# Driver/DB internals, credentials and stack frames
SENSITIVE_MESSAGE = re.compile(
    r"password|secret|token|api[_ ]?key|credential|sqlalchemy|asyncpg|postgres|"
    r"traceback|file \"|line \d+|whsec_|sk_(live|test)_",
    re.IGNORECASE,
)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Message safe to show a client. DEBUG returns it untouched."""
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message
    if SENSITIVE_MESSAGE.search(message):
        return GENERIC_MESSAGE
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:MAX_MESSAGE_LENGTH] + "..."
    return message


async def parcin_error_handler(request: Request, exc: ParcinError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc!r} on {request.method} {request.url.path}: {exc.details}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    body = exc.to_dict()
    body["message"] = sanitize_error_message(exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """Last line of defence for exceptions no handler claimed."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            error_id = uuid.uuid4().hex[:12]
            logger.exception(
                f"Unhandled {type(e).__name__} [{error_id}] on {request.method} {request.url.path}"
            )

            details = {"error_id": error_id}
            if settings.DEBUG:
                details.update(type=type(e).__name__, raw=str(e))

            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": GENERIC_MESSAGE,
                    "details": details,
                },
            )
