from .verification_session import (
    VerificationPurpose,
    VerificationSession,
    SessionState,
    RemainingTime,
    session_key,
    session_state,
    remaining,
)

__all__ = [
    "VerificationPurpose",
    "VerificationSession",
    "SessionState",
    "RemainingTime",
    "session_key",
    "session_state",
    "remaining",
]
