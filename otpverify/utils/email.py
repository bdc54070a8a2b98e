"""
Email address normalization and masking utilities
"""
import hashlib

from email_validator import validate_email as _validate_email, EmailNotValidError


class InvalidEmailError(ValueError):
    """Email address is empty or malformed"""


def normalize_email(email: str) -> str:
    """
    Normalize an email address for use as a verification key.

    Args:
        email: Email address as typed by the user

    Returns:
        Lower-cased, syntax-checked address (e.g., jane.doe@example.com)

    Raises:
        InvalidEmailError: If the address is empty or malformed
    """
    candidate = (email or "").strip()
    if not candidate:
        raise InvalidEmailError("Email address is required")

    try:
        result = _validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as e:
        raise InvalidEmailError(f"Invalid email address: {str(e)}") from e

    return result.normalized.lower()


def validate_email(email: str) -> bool:
    """
    Validate email address without raising exception.

    Returns:
        True if valid, False otherwise
    """
    try:
        normalize_email(email)
        return True
    except ValueError:
        return False


def mask_email(email: str) -> str:
    """
    Mask an email address for safe logging (jane@example.com -> j***@example.com).
    """
    local, sep, domain = (email or "").partition("@")
    if not sep:
        return "***"
    head = local[:1] if local else ""
    return f"{head}***@{domain}"


def get_email_domain(email: str) -> str:
    _, sep, domain = (email or "").partition("@")
    return domain if sep else ""


def hash_email(email: str) -> str:
    """Short stable hash used as a correlation id in audit logs."""
    return hashlib.sha256((email or "").encode()).hexdigest()[:16]
