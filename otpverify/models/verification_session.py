"""
Verification session model and the pure functions derived from it.

A session is immutable: every change (failed attempt, lock, resend) produces a
new instance via dataclasses.replace, so the code digest can never change
underneath a live session.
"""
from dataclasses import dataclass, replace, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from ..core.clock import seconds_until, parse_timestamp


class VerificationPurpose(str, Enum):
    SIGNUP = "signup"
    PASSWORD_RESET = "password_reset"


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    LOCKED = "locked"
    EXPIRED = "expired"
    VERIFIED = "verified"


def session_key(identifier: str, purpose: VerificationPurpose) -> str:
    """Repository key: one live session per (purpose, identifier)."""
    return f"{VerificationPurpose(purpose).value}:{identifier}"


@dataclass(frozen=True)
class VerificationSession:
    identifier: str
    purpose: VerificationPurpose
    code_hash: str
    created_at: datetime
    expires_at: datetime
    last_issued_at: datetime
    max_attempts: int
    attempt_count: int = 0
    locked_until: Optional[datetime] = None

    @property
    def key(self) -> str:
        return session_key(self.identifier, self.purpose)

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempt_count)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def retain_until(self, retention: timedelta) -> datetime:
        """Point after which the session is stale and may be evicted."""
        horizon = self.expires_at
        if self.locked_until is not None and self.locked_until > horizon:
            horizon = self.locked_until
        return horizon + retention

    def with_failed_attempt(self, now: datetime, lock_duration: timedelta) -> "VerificationSession":
        attempt_count = min(self.attempt_count + 1, self.max_attempts)
        locked_until = self.locked_until
        if attempt_count >= self.max_attempts:
            locked_until = now + lock_duration
        return replace(self, attempt_count=attempt_count, locked_until=locked_until)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["purpose"] = self.purpose.value
        for field in ("created_at", "expires_at", "last_issued_at", "locked_until"):
            value = data[field]
            data[field] = value.isoformat() if value is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationSession":
        return cls(
            identifier=data["identifier"],
            purpose=VerificationPurpose(data["purpose"]),
            code_hash=data["code_hash"],
            created_at=parse_timestamp(data["created_at"]),
            expires_at=parse_timestamp(data["expires_at"]),
            last_issued_at=parse_timestamp(data["last_issued_at"]),
            max_attempts=int(data["max_attempts"]),
            attempt_count=int(data.get("attempt_count", 0)),
            locked_until=parse_timestamp(data.get("locked_until")),
        )


@dataclass(frozen=True)
class RemainingTime:
    """Countdown snapshot for display layers; recomputed on every refresh."""
    state: SessionState
    expires_in: int
    locked_for: int
    resend_in: int
    attempts_remaining: int


def session_state(session: Optional[VerificationSession], now: datetime) -> SessionState:
    """
    Derive the state of a session at a point in time.

    Expiry wins over lock state. A session whose attempts are exhausted but
    whose lock has elapsed still reports LOCKED: verify never clears a lock,
    only a new code does.
    """
    if session is None:
        return SessionState.NO_SESSION
    if session.is_expired(now):
        return SessionState.EXPIRED
    if session.is_locked(now) or session.attempt_count >= session.max_attempts:
        return SessionState.LOCKED
    return SessionState.ACTIVE


def remaining(
    session: VerificationSession,
    now: datetime,
    cooldown: timedelta = timedelta(0),
) -> RemainingTime:
    """Pure countdown computation; the engine owns no timers."""
    return RemainingTime(
        state=session_state(session, now),
        expires_in=seconds_until(session.expires_at, now),
        locked_for=seconds_until(session.locked_until, now),
        resend_in=seconds_until(session.last_issued_at + cooldown, now),
        attempts_remaining=session.attempts_remaining,
    )
