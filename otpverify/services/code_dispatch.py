"""
Code dispatch collaborators.

The engine never sends anything; callers hand the issued code to a
CodeDispatcher after request_code/resend returns.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..core.email_sender import EmailSender, get_email_sender
from ..models.verification_session import VerificationPurpose
from ..utils.email import mask_email

logger = logging.getLogger(__name__)


SUBJECTS = {
    VerificationPurpose.SIGNUP: "{app_name} - Email Verification Code",
    VerificationPurpose.PASSWORD_RESET: "{app_name} - Password Reset Code",
}


class CodeDispatcher(ABC):
    """Abstract base class for code delivery"""

    @abstractmethod
    def send(self, identifier: str, code: str, purpose: VerificationPurpose) -> bool:
        """
        Deliver a code to the identifier.

        Returns:
            True if the transport accepted the message
        """
        pass


class EmailCodeDispatcher(CodeDispatcher):
    """Delivers codes through an EmailSender"""

    def __init__(self, sender: Optional[EmailSender] = None, app_name: str = "Dev Diaries", ttl_minutes: int = 5):
        self._sender = sender
        self.app_name = app_name
        self.ttl_minutes = ttl_minutes

    @property
    def sender(self) -> EmailSender:
        return self._sender or get_email_sender()

    def send(self, identifier: str, code: str, purpose: VerificationPurpose) -> bool:
        purpose = VerificationPurpose(purpose)
        subject = SUBJECTS[purpose].format(app_name=self.app_name)
        body_text = (
            f"Your {self.app_name} verification code is: {code}\n\n"
            f"This code expires in {self.ttl_minutes} minutes.\n"
            "If you didn't request this, please ignore this email."
        )
        delivered = self.sender.send_email(to_email=identifier, subject=subject, body_text=body_text)
        if delivered:
            logger.info(f"[OTP][Email] Code sent to {mask_email(identifier)}")
        else:
            logger.warning(f"[OTP][Email] Sender rejected message for {mask_email(identifier)}")
        return delivered
