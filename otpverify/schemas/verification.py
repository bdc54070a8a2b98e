"""
Schemas for the email verification API
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from ..models.verification_session import VerificationPurpose, SessionState


class CodeRequest(BaseModel):
    email: EmailStr
    purpose: VerificationPurpose = VerificationPurpose.SIGNUP


class CodeRequestResponse(BaseModel):
    email: str
    purpose: VerificationPurpose
    expires_at: datetime
    resend_available_at: datetime
    message: str = "Verification code sent to your email address"
    debug_code: Optional[str] = None  # Only populated when DEBUG_RETURN_OTP_CODE is on outside prod


class VerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=1, max_length=32)
    purpose: VerificationPurpose = VerificationPurpose.SIGNUP


class VerifyResponse(BaseModel):
    verified: bool
    email: str
    purpose: VerificationPurpose
    verified_at: datetime
    message: str = "Email verified successfully!"


class VerificationStatusResponse(BaseModel):
    email: str
    purpose: VerificationPurpose
    state: SessionState
    expires_in: int  # seconds
    locked_for: int  # seconds
    resend_in: int  # seconds
    attempts_remaining: int


class VerificationErrorResponse(BaseModel):
    error: str
    detail: str
    attempts_remaining: Optional[int] = None
    locked_until: Optional[datetime] = None
    retry_after: Optional[int] = None
