"""
Structured audit logging service for email verification events
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ...utils.email import get_email_domain, hash_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Caller metadata attached to every audit event"""
    request_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None


class AuditService:
    """
    Structured audit logging service for verification events.

    Never logs codes or full email addresses.
    """

    def __init__(self, env: Optional[str] = None):
        self.env = env

    def _log_audit_event(
        self,
        event_type: str,
        email: Optional[str] = None,
        purpose: Optional[str] = None,
        context: Optional[RequestContext] = None,
        outcome: Optional[str] = None,
        error: Optional[str] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Log structured audit event.

        Args:
            event_type: Event type (e.g., 'email_otp_requested')
            email: Normalized email; only its domain and a short hash are logged
            purpose: Verification purpose (signup/password_reset)
            context: Request metadata
            outcome: Outcome (success/fail/rate_limited/locked/expired/...)
            error: Error code (if any)
            **kwargs: Additional event-specific fields

        Returns:
            The logged payload
        """
        audit_data: Dict[str, Any] = {
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "outcome": outcome,
        }

        if email:
            audit_data["email_hash"] = hash_email(email)
            audit_data["email_domain"] = get_email_domain(email)
        if purpose:
            audit_data["purpose"] = purpose
        if context is not None:
            if context.request_id:
                audit_data["request_id"] = context.request_id
            if context.ip:
                audit_data["ip"] = context.ip
            if context.user_agent:
                audit_data["user_agent"] = context.user_agent
        if self.env:
            audit_data["env"] = self.env
        if error:
            audit_data["error"] = error

        audit_data.update({k: v for k, v in kwargs.items() if v is not None})

        # Log as JSON for structured logging
        logger.info(f"[Auth][Audit] {json.dumps(audit_data, default=str)}")
        return audit_data

    def log_code_requested(self, email: str, purpose: str, context: Optional[RequestContext] = None, resend: bool = False):
        """Log a code request or resend before any checks run"""
        return self._log_audit_event(
            "email_otp_resend_requested" if resend else "email_otp_requested",
            email=email,
            purpose=purpose,
            context=context,
            outcome="requested",
        )

    def log_code_sent(self, email: str, purpose: str, context: Optional[RequestContext] = None, expires_at: Optional[datetime] = None):
        return self._log_audit_event(
            "email_otp_sent",
            email=email,
            purpose=purpose,
            context=context,
            outcome="success",
            expires_at=expires_at.isoformat() if expires_at else None,
        )

    def log_code_rate_limited(self, email: str, purpose: str, context: Optional[RequestContext] = None, retry_after: Optional[int] = None):
        return self._log_audit_event(
            "email_otp_rate_limited",
            email=email,
            purpose=purpose,
            context=context,
            outcome="rate_limited",
            error="cooldown_active",
            retry_after=retry_after,
        )

    def log_delivery_failed(self, email: str, purpose: str, context: Optional[RequestContext] = None, rolled_back: bool = False):
        return self._log_audit_event(
            "email_otp_delivery_failed",
            email=email,
            purpose=purpose,
            context=context,
            outcome="fail",
            error="delivery_failed",
            rolled_back=rolled_back,
        )

    def log_verify_success(self, email: str, purpose: str, context: Optional[RequestContext] = None):
        return self._log_audit_event(
            "email_otp_verify_success",
            email=email,
            purpose=purpose,
            context=context,
            outcome="success",
        )

    def log_verify_fail(
        self,
        email: str,
        purpose: str,
        context: Optional[RequestContext] = None,
        error: Optional[str] = None,
        attempts_remaining: Optional[int] = None,
    ):
        return self._log_audit_event(
            "email_otp_verify_fail",
            email=email,
            purpose=purpose,
            context=context,
            outcome="fail",
            error=error,
            attempts_remaining=attempts_remaining,
        )

    def log_blocked(
        self,
        email: str,
        purpose: str,
        context: Optional[RequestContext] = None,
        locked_until: Optional[datetime] = None,
    ):
        """Log a request refused because the session is locked"""
        return self._log_audit_event(
            "email_otp_blocked",
            email=email,
            purpose=purpose,
            context=context,
            outcome="locked",
            error="locked",
            locked_until=locked_until.isoformat() if locked_until else None,
        )
