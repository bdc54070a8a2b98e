"""
Email Sender Abstraction

Provides an interface for handing a message to a mail transport. Only
ConsoleEmailSender ships here; real transports (SMTP, provider APIs) live
outside this package and are installed with set_email_sender().
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging

from ..utils.email import mask_email
from .env import is_local_env

logger = logging.getLogger(__name__)


class EmailSender(ABC):
    """Abstract base class for email senders"""

    @abstractmethod
    def send_email(
        self,
        to_email: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
    ) -> bool:
        """
        Send an email

        Args:
            to_email: Recipient email address
            subject: Email subject
            body_text: Plain text email body
            body_html: Optional HTML email body

        Returns:
            True if email was sent successfully, False otherwise
        """
        pass


class ConsoleEmailSender(EmailSender):
    """
    Writes messages to the log instead of a mail transport.

    The recipient is always masked. Bodies carry codes, so they are only
    logged in local/dev, where the console stands in for the inbox.
    """

    def send_email(
        self,
        to_email: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
    ) -> bool:
        logger.info(f"[EMAIL] To: {mask_email(to_email)} Subject: {subject}")
        if is_local_env():
            logger.info(f"[EMAIL] Body (text):\n{body_text}")
            if body_html:
                logger.info(f"[EMAIL] Body (HTML):\n{body_html}")
        else:
            logger.info(f"[EMAIL] Body suppressed ({len(body_text)} chars)")
        return True


# Global email sender instance (can be swapped at runtime)
_email_sender: Optional[EmailSender] = None


def get_email_sender() -> EmailSender:
    """Get the configured email sender instance"""
    global _email_sender
    if _email_sender is None:
        from .config import settings
        if settings.EMAIL_PROVIDER != "console":
            logger.warning(
                f"[EMAIL] EMAIL_PROVIDER={settings.EMAIL_PROVIDER} has no built-in sender; "
                "call set_email_sender() at startup. Falling back to console."
            )
        _email_sender = ConsoleEmailSender()
    return _email_sender


def set_email_sender(sender: Optional[EmailSender]) -> None:
    """Set a custom email sender (useful for testing or runtime configuration)"""
    global _email_sender
    _email_sender = sender
