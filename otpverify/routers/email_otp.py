"""
Email OTP router: request, resend and verify one-time codes for signup
confirmation and password reset.
"""
import logging

from fastapi import APIRouter, Depends, Query, Request
from pydantic import EmailStr

from ..models.verification_session import VerificationPurpose
from ..schemas.verification import (
    CodeRequest,
    CodeRequestResponse,
    VerifyRequest,
    VerifyResponse,
    VerificationStatusResponse,
    VerificationErrorResponse,
)
from ..services.auth.audit import RequestContext
from ..services.engine_factory import get_verification_service
from ..services.verification_errors import SessionNotFoundError
from ..services.verification_service import VerificationService, CodeRequestResult
from ..utils.email import normalize_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth/email-otp", tags=["email-otp"])

ERROR_RESPONSES = {
    404: {"model": VerificationErrorResponse, "description": "No active code"},
    410: {"model": VerificationErrorResponse, "description": "Code expired"},
    423: {"model": VerificationErrorResponse, "description": "Too many failed attempts"},
    429: {"model": VerificationErrorResponse, "description": "Cooldown active"},
    502: {"model": VerificationErrorResponse, "description": "Code could not be delivered"},
}


def _request_context(request: Request) -> RequestContext:
    return RequestContext(
        request_id=request.headers.get("X-Request-ID"),
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def _code_response(result: CodeRequestResult) -> CodeRequestResponse:
    return CodeRequestResponse(
        email=result.email,
        purpose=result.purpose,
        expires_at=result.expires_at,
        resend_available_at=result.resend_available_at,
        debug_code=result.debug_code,
    )


@router.post("/request", response_model=CodeRequestResponse, responses=ERROR_RESPONSES)
def request_code(
    payload: CodeRequest,
    request: Request,
    service: VerificationService = Depends(get_verification_service),
):
    """Issue a new code and email it. Replaces any earlier code for the same email and purpose."""
    result = service.request_code(payload.email, payload.purpose, _request_context(request))
    return _code_response(result)


@router.post("/resend", response_model=CodeRequestResponse, responses=ERROR_RESPONSES)
def resend_code(
    payload: CodeRequest,
    request: Request,
    service: VerificationService = Depends(get_verification_service),
):
    """Send a fresh code once the resend cooldown has elapsed."""
    result = service.resend(payload.email, payload.purpose, _request_context(request))
    return _code_response(result)


@router.post("/verify", response_model=VerifyResponse, responses={400: {"model": VerificationErrorResponse}, **ERROR_RESPONSES})
def verify_code(
    payload: VerifyRequest,
    request: Request,
    service: VerificationService = Depends(get_verification_service),
):
    result = service.verify(payload.email, payload.code, payload.purpose, _request_context(request))
    return VerifyResponse(
        verified=True,
        email=result.identifier,
        purpose=result.purpose,
        verified_at=result.verified_at,
    )


@router.get("/status", response_model=VerificationStatusResponse)
def verification_status(
    email: EmailStr = Query(...),
    purpose: VerificationPurpose = Query(VerificationPurpose.SIGNUP),
    service: VerificationService = Depends(get_verification_service),
):
    """
    Countdown snapshot for the verification screen.

    Clients poll this on their own refresh cadence; nothing is scheduled server-side.
    """
    snapshot = service.status(email, purpose)
    if snapshot is None:
        raise SessionNotFoundError()
    return VerificationStatusResponse(
        email=normalize_email(email),
        purpose=purpose,
        state=snapshot.state,
        expires_in=snapshot.expires_in,
        locked_for=snapshot.locked_for,
        resend_in=snapshot.resend_in,
        attempts_remaining=snapshot.attempts_remaining,
    )
