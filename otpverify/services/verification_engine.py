"""
Email verification engine: issues, verifies and expires one-time codes.

State is derived from the stored session (see models.session_state):
NoSession -> Active -> (Locked | Expired | Verified). Every mutation of a
session runs inside SessionRepository.compare_and_update so concurrent
requests for the same identifier cannot lose updates or double-issue.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from ..core.clock import Clock, utc_now, seconds_until
from ..models.verification_session import (
    VerificationPurpose,
    VerificationSession,
    RemainingTime,
    SessionState,
    session_key,
    session_state,
    remaining,
)
from ..utils.email import mask_email
from .auth.rate_limit import RateLimitService
from .codes import CodeAlphabet, CodeGenerator, codes_match, hash_code
from .session_store import SessionRepository
from .verification_errors import (
    SessionNotFoundError,
    CodeExpiredError,
    InvalidCodeError,
    SessionLockedError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationPolicy:
    """Engine tunables; see core.config for the environment variables behind them."""
    code_length: int = 6
    alphabet: CodeAlphabet = CodeAlphabet.NUMERIC
    ttl: timedelta = timedelta(minutes=5)
    max_attempts: int = 3
    lock_duration: timedelta = timedelta(minutes=15)
    resend_cooldown: timedelta = timedelta(seconds=60)
    issue_limit: int = 5
    issue_window: timedelta = timedelta(minutes=10)
    retention: timedelta = timedelta(hours=1)
    pepper: str = "dev-pepper-change-me"

    @classmethod
    def from_settings(cls, settings) -> "VerificationPolicy":
        return cls(
            code_length=settings.OTP_CODE_LENGTH,
            alphabet=CodeAlphabet(settings.OTP_CODE_ALPHABET.lower()),
            ttl=timedelta(seconds=settings.OTP_TTL_SECONDS),
            max_attempts=settings.OTP_MAX_ATTEMPTS,
            lock_duration=timedelta(seconds=settings.OTP_LOCK_SECONDS),
            resend_cooldown=timedelta(seconds=settings.OTP_RESEND_COOLDOWN_SECONDS),
            issue_limit=settings.OTP_ISSUE_LIMIT,
            issue_window=timedelta(seconds=settings.OTP_ISSUE_WINDOW_SECONDS),
            retention=timedelta(seconds=settings.OTP_SESSION_RETENTION_SECONDS),
            pepper=settings.OTP_CODE_PEPPER,
        )


@dataclass(frozen=True)
class IssuedCode:
    """
    A freshly issued code. The plaintext code is for the dispatch
    collaborator only and must not be echoed to the verifying client.
    """
    identifier: str
    purpose: VerificationPurpose
    code: str
    issued_at: datetime
    expires_at: datetime
    resend_available_at: datetime


@dataclass(frozen=True)
class VerificationResult:
    identifier: str
    purpose: VerificationPurpose
    verified_at: datetime


class VerificationEngine:
    """
    Orchestrates request_code / verify / resend over a session repository,
    a code generator and an issuance rate limiter.

    Failures are raised as VerificationError subclasses and never retried.
    """

    def __init__(
        self,
        repository: SessionRepository,
        rate_limiter: RateLimitService,
        policy: Optional[VerificationPolicy] = None,
        generator: Optional[CodeGenerator] = None,
        clock: Clock = utc_now,
    ):
        self.policy = policy or VerificationPolicy()
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.generator = generator or CodeGenerator(self.policy.code_length, self.policy.alphabet)
        self._clock = clock

    def request_code(
        self,
        identifier: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
    ) -> IssuedCode:
        """
        Issue a new code, replacing any existing session for the identifier.

        Raises:
            CooldownActiveError: Within cooldown (or over the window cap)
            SessionLockedError: The current session is locked
        """
        return self._issue(identifier, VerificationPurpose(purpose), resend=False)

    def resend(
        self,
        identifier: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
    ) -> IssuedCode:
        """
        Replace the current code with a fresh one.

        Behaves as request_code when no session exists. A successful resend
        resets the attempt count and clears any elapsed lock.

        Raises:
            CooldownActiveError: Cooldown since the last issuance has not elapsed
            SessionLockedError: The current session is still locked
        """
        return self._issue(identifier, VerificationPurpose(purpose), resend=True)

    def _issue(self, identifier: str, purpose: VerificationPurpose, resend: bool) -> IssuedCode:
        key = session_key(identifier, purpose)
        now = self._clock()
        code = self.generator.generate()
        code_digest = hash_code(code, self.policy.pepper)

        def mutate(current: Optional[VerificationSession]) -> VerificationSession:
            if current is not None and current.is_locked(now):
                raise SessionLockedError(current.locked_until, seconds_until(current.locked_until, now))
            self.rate_limiter.check_issue(key, now, current.last_issued_at if current else None)
            return VerificationSession(
                identifier=identifier,
                purpose=purpose,
                code_hash=code_digest,
                created_at=now,
                expires_at=now + self.policy.ttl,
                last_issued_at=now,
                max_attempts=self.policy.max_attempts,
            )

        session = self.repository.compare_and_update(key, mutate)
        self.rate_limiter.record_issue(key, now)

        action = "Resent" if resend else "Issued"
        logger.info(f"[OTP] {action} {purpose.value} code for {mask_email(identifier)}, expires {session.expires_at.isoformat()}")

        return IssuedCode(
            identifier=identifier,
            purpose=purpose,
            code=code,
            issued_at=now,
            expires_at=session.expires_at,
            resend_available_at=now + self.policy.resend_cooldown,
        )

    def verify(
        self,
        identifier: str,
        code: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
    ) -> VerificationResult:
        """
        Check a submitted code.

        Order of checks: missing session, expiry, lock, code. A correct code
        deletes the session; a wrong one counts an attempt and locks the
        session once max_attempts is reached.

        Raises:
            SessionNotFoundError, CodeExpiredError, SessionLockedError, InvalidCodeError
        """
        purpose = VerificationPurpose(purpose)
        key = session_key(identifier, purpose)
        now = self._clock()

        def mutate(current: Optional[VerificationSession]) -> Optional[VerificationSession]:
            if current is None:
                raise SessionNotFoundError()
            if current.is_expired(now):
                raise CodeExpiredError(current.expires_at)
            if current.is_locked(now):
                raise SessionLockedError(current.locked_until, seconds_until(current.locked_until, now))
            if current.attempt_count >= current.max_attempts:
                # Lock elapsed but verify never unlocks; a new code is required
                raise SessionLockedError(current.locked_until, 0)

            if codes_match(code, current.code_hash, self.policy.pepper):
                return None
            return current.with_failed_attempt(now, self.policy.lock_duration)

        try:
            updated = self.repository.compare_and_update(key, mutate)
        except (SessionNotFoundError, CodeExpiredError, SessionLockedError) as e:
            logger.info(f"[OTP] Verification refused for {mask_email(identifier)}: {e.error_code}")
            raise

        if updated is None:
            logger.info(f"[OTP] Verification successful for {mask_email(identifier)} ({purpose.value})")
            return VerificationResult(identifier=identifier, purpose=purpose, verified_at=now)

        logger.warning(
            f"[OTP] Verification failed for {mask_email(identifier)} "
            f"(attempt {updated.attempt_count}/{updated.max_attempts})"
        )
        if updated.is_locked(now):
            logger.warning(f"[OTP] Locked {mask_email(identifier)} until {updated.locked_until.isoformat()}")
            raise SessionLockedError(updated.locked_until, seconds_until(updated.locked_until, now))
        raise InvalidCodeError(attempts_remaining=updated.attempts_remaining)

    def get_session(
        self,
        identifier: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
    ) -> Optional[VerificationSession]:
        return self.repository.get(session_key(identifier, VerificationPurpose(purpose)))

    def state(
        self,
        identifier: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
    ) -> SessionState:
        return session_state(self.get_session(identifier, purpose), self._clock())

    def status(
        self,
        identifier: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
    ) -> Optional[RemainingTime]:
        """Countdown snapshot for display layers, or None without a session."""
        purpose = VerificationPurpose(purpose)
        session = self.get_session(identifier, purpose)
        if session is None:
            return None
        now = self._clock()
        snapshot = remaining(session, now, self.policy.resend_cooldown)
        resend_in = self.rate_limiter.retry_after(session.key, now, session.last_issued_at)
        if resend_in > snapshot.resend_in:
            snapshot = replace(snapshot, resend_in=resend_in)
        return snapshot

    def discard(self, issued: IssuedCode, forget_issue: bool = True) -> bool:
        """
        Delete the session created by `issued` if it is still the live one.

        Used by callers to roll back a code that could not be delivered, so
        the undeliverable code does not hold a cooldown window.

        Returns:
            True if the session was removed
        """
        key = session_key(issued.identifier, issued.purpose)
        issued_digest = hash_code(issued.code, self.policy.pepper)
        removed = False

        def mutate(current: Optional[VerificationSession]) -> Optional[VerificationSession]:
            nonlocal removed
            removed = (
                current is not None
                and current.created_at == issued.issued_at
                and current.code_hash == issued_digest
            )
            return None if removed else current

        self.repository.compare_and_update(key, mutate)
        if forget_issue:
            self.rate_limiter.forget_issue(key, issued.issued_at)

        if removed:
            logger.info(f"[OTP] Discarded undelivered code for {mask_email(issued.identifier)}")
        return removed
