"""
Exception handlers for the verification API.

Register these on a FastAPI app instance via `register_exception_handlers(app)`.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from .core.env import is_local_env
from .utils.email import InvalidEmailError
from .services.verification_errors import (
    VerificationError,
    CooldownActiveError,
    SessionLockedError,
    SessionConflictError,
)

logger = logging.getLogger(__name__)


async def verification_error_handler(request: Request, exc: VerificationError):
    """Map a verification outcome onto its status code and error body."""
    headers = {}
    retry_after = None
    if isinstance(exc, (CooldownActiveError, SessionLockedError)):
        retry_after = exc.retry_after
    if retry_after:
        headers["Retry-After"] = str(retry_after)

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers or None,
    )


async def invalid_email_handler(request: Request, exc: InvalidEmailError):
    """Email normalization failures that slipped past request validation."""
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_email", "detail": str(exc)},
    )


async def session_conflict_handler(request: Request, exc: SessionConflictError):
    logger.error(f"[OTP] {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "conflict", "detail": "Too many concurrent requests. Please try again."},
        headers={"Retry-After": "1"},
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)

    # Details stay in logs outside local/dev
    if is_local_env():
        detail = f"Internal server error: {exc}"
    else:
        detail = "Internal server error"

    return JSONResponse(
        status_code=500,
        content={"error": "internal", "detail": detail},
    )


def register_exception_handlers(app):
    """Register all exception handlers on the given FastAPI app."""
    app.add_exception_handler(VerificationError, verification_error_handler)
    app.add_exception_handler(SessionConflictError, session_conflict_handler)
    app.add_exception_handler(InvalidEmailError, invalid_email_handler)
    app.add_exception_handler(Exception, global_exception_handler)
