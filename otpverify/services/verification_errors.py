"""
Verification failure taxonomy.

Each error maps one-to-one onto a user-facing message and an HTTP status so
the API layer never has to conflate, say, a wrong code with a lockout.
"""
from datetime import datetime
from typing import Any, Dict, Optional


class VerificationError(Exception):
    """Base exception for verification outcomes other than success"""
    error_code = "verification_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "detail": self.message}


class SessionNotFoundError(VerificationError):
    """No active session for the identifier"""
    error_code = "not_found"
    status_code = 404

    def __init__(self, message: str = "No verification code was requested for this email. Please request a new code."):
        super().__init__(message)


class CodeExpiredError(VerificationError):
    """Session TTL elapsed"""
    error_code = "expired"
    status_code = 410

    def __init__(self, expired_at: Optional[datetime] = None):
        super().__init__("Verification code has expired. Please request a new code.")
        self.expired_at = expired_at


class InvalidCodeError(VerificationError):
    """Code mismatch with attempts still remaining"""
    error_code = "invalid_code"
    status_code = 400

    def __init__(self, attempts_remaining: int):
        noun = "attempt" if attempts_remaining == 1 else "attempts"
        super().__init__(f"Invalid verification code. {attempts_remaining} {noun} remaining.")
        self.attempts_remaining = attempts_remaining

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["attempts_remaining"] = self.attempts_remaining
        return data


class SessionLockedError(VerificationError):
    """Attempt ceiling reached; time-bounded"""
    error_code = "locked"
    status_code = 423

    def __init__(self, locked_until: Optional[datetime], retry_after: int):
        if retry_after > 0 and locked_until is not None:
            message = (
                "Too many failed attempts. Verification is locked until "
                f"{locked_until.strftime('%H:%M:%S')} UTC."
            )
        else:
            message = "Too many failed attempts. Please request a new code."
        super().__init__(message)
        self.locked_until = locked_until
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["locked_until"] = self.locked_until.isoformat() if self.locked_until else None
        data["retry_after"] = self.retry_after
        return data


class CooldownActiveError(VerificationError):
    """Request or resend arrived before the cooldown window elapsed"""
    error_code = "cooldown_active"
    status_code = 429

    def __init__(self, retry_after: int):
        super().__init__(f"Please wait {retry_after} seconds before requesting another code.")
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class DeliveryFailedError(VerificationError):
    """The dispatcher could not deliver the code (observed by the caller, not the engine)"""
    error_code = "delivery_failed"
    status_code = 502

    def __init__(self, message: str = "We could not send the verification code. Please try again."):
        super().__init__(message)


class SessionConflictError(Exception):
    """Optimistic update kept losing to concurrent writers"""

    def __init__(self, key: str, attempts: int):
        super().__init__(f"Concurrent modification of {key} after {attempts} attempts")
        self.key = key
        self.attempts = attempts
