"""
Email verification service: the engine's caller.

Normalizes the email, runs the engine, dispatches the code, reconciles
delivery failures and writes audit events.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..models.verification_session import VerificationPurpose, RemainingTime
from ..utils.email import normalize_email, mask_email
from .auth.audit import AuditService, RequestContext
from .code_dispatch import CodeDispatcher
from .verification_engine import VerificationEngine, IssuedCode, VerificationResult
from .verification_errors import (
    CooldownActiveError,
    DeliveryFailedError,
    InvalidCodeError,
    SessionLockedError,
    VerificationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodeRequestResult:
    email: str
    purpose: VerificationPurpose
    expires_at: datetime
    resend_available_at: datetime
    debug_code: Optional[str] = None


class VerificationService:
    """
    Email OTP service with dispatch, delivery rollback and audit logging.
    """

    def __init__(
        self,
        engine: VerificationEngine,
        dispatcher: CodeDispatcher,
        audit: Optional[AuditService] = None,
        rollback_on_delivery_failure: bool = True,
        return_debug_code: bool = False,
    ):
        self.engine = engine
        self.dispatcher = dispatcher
        self.audit = audit or AuditService()
        self.rollback_on_delivery_failure = rollback_on_delivery_failure
        self.return_debug_code = return_debug_code

    def request_code(
        self,
        email: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
        context: Optional[RequestContext] = None,
    ) -> CodeRequestResult:
        """
        Issue and send a new code.

        Raises:
            InvalidEmailError: If email is invalid
            CooldownActiveError, SessionLockedError: Issuance refused
            DeliveryFailedError: Code could not be sent
        """
        return self._issue_and_send(email, purpose, context, resend=False)

    def resend(
        self,
        email: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
        context: Optional[RequestContext] = None,
    ) -> CodeRequestResult:
        return self._issue_and_send(email, purpose, context, resend=True)

    def _issue_and_send(
        self,
        email: str,
        purpose: VerificationPurpose,
        context: Optional[RequestContext],
        resend: bool,
    ) -> CodeRequestResult:
        normalized_email = normalize_email(email)
        purpose = VerificationPurpose(purpose)

        self.audit.log_code_requested(normalized_email, purpose.value, context, resend=resend)

        try:
            if resend:
                issued = self.engine.resend(normalized_email, purpose)
            else:
                issued = self.engine.request_code(normalized_email, purpose)
        except CooldownActiveError as e:
            self.audit.log_code_rate_limited(normalized_email, purpose.value, context, retry_after=e.retry_after)
            raise
        except SessionLockedError as e:
            self.audit.log_blocked(normalized_email, purpose.value, context, locked_until=e.locked_until)
            raise

        self._dispatch(issued, context)
        self.audit.log_code_sent(normalized_email, purpose.value, context, expires_at=issued.expires_at)

        return CodeRequestResult(
            email=normalized_email,
            purpose=purpose,
            expires_at=issued.expires_at,
            resend_available_at=issued.resend_available_at,
            debug_code=issued.code if self.return_debug_code else None,
        )

    def _dispatch(self, issued: IssuedCode, context: Optional[RequestContext]) -> None:
        try:
            delivered = self.dispatcher.send(issued.identifier, issued.code, issued.purpose)
            error: Optional[Exception] = None
        except Exception as e:
            logger.error(f"[OTP] Dispatcher error for {mask_email(issued.identifier)}: {e}", exc_info=True)
            delivered = False
            error = e

        if delivered:
            return

        rolled_back = False
        if self.rollback_on_delivery_failure:
            rolled_back = self.engine.discard(issued)
        self.audit.log_delivery_failed(issued.identifier, issued.purpose.value, context, rolled_back=rolled_back)
        raise DeliveryFailedError() from error

    def verify(
        self,
        email: str,
        code: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
        context: Optional[RequestContext] = None,
    ) -> VerificationResult:
        """
        Verify a submitted code.

        Raises:
            InvalidEmailError: If email is invalid
            VerificationError: NotFound/Expired/Locked/InvalidCode
        """
        normalized_email = normalize_email(email)
        purpose = VerificationPurpose(purpose)

        try:
            result = self.engine.verify(normalized_email, code, purpose)
        except SessionLockedError as e:
            self.audit.log_blocked(normalized_email, purpose.value, context, locked_until=e.locked_until)
            raise
        except InvalidCodeError as e:
            self.audit.log_verify_fail(
                normalized_email,
                purpose.value,
                context,
                error=e.error_code,
                attempts_remaining=e.attempts_remaining,
            )
            raise
        except VerificationError as e:
            self.audit.log_verify_fail(normalized_email, purpose.value, context, error=e.error_code)
            raise

        self.audit.log_verify_success(normalized_email, purpose.value, context)
        return result

    def status(
        self,
        email: str,
        purpose: VerificationPurpose = VerificationPurpose.SIGNUP,
    ) -> Optional[RemainingTime]:
        return self.engine.status(normalize_email(email), purpose)
