"""
Email one-time-code verification services
"""
from .codes import CodeAlphabet, CodeGenerator, generate_code, normalize_code
from .session_store import SessionRepository, InMemorySessionRepository, RedisSessionRepository
from .verification_engine import VerificationEngine, VerificationPolicy, IssuedCode, VerificationResult
from .verification_errors import (
    VerificationError,
    SessionNotFoundError,
    CodeExpiredError,
    InvalidCodeError,
    SessionLockedError,
    CooldownActiveError,
    DeliveryFailedError,
    SessionConflictError,
)
from .verification_service import VerificationService, CodeRequestResult

__all__ = [
    "CodeAlphabet",
    "CodeGenerator",
    "generate_code",
    "normalize_code",
    "SessionRepository",
    "InMemorySessionRepository",
    "RedisSessionRepository",
    "VerificationEngine",
    "VerificationPolicy",
    "IssuedCode",
    "VerificationResult",
    "VerificationError",
    "SessionNotFoundError",
    "CodeExpiredError",
    "InvalidCodeError",
    "SessionLockedError",
    "CooldownActiveError",
    "DeliveryFailedError",
    "SessionConflictError",
    "VerificationService",
    "CodeRequestResult",
]
