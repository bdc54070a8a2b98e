from pydantic import BaseModel
import os
from datetime import timedelta


class Settings(BaseModel):
    # Environment: dev, staging, prod
    ENV: str = os.getenv("ENV", "dev")

    # Code shape
    OTP_CODE_LENGTH: int = int(os.getenv("OTP_CODE_LENGTH", "6"))
    OTP_CODE_ALPHABET: str = os.getenv("OTP_CODE_ALPHABET", "numeric")  # numeric or alphanumeric

    # Session lifetime and lockout policy (seconds)
    OTP_TTL_SECONDS: int = int(os.getenv("OTP_TTL_SECONDS", "300"))  # 5 minutes
    OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))
    OTP_LOCK_SECONDS: int = int(os.getenv("OTP_LOCK_SECONDS", "900"))  # 15 minutes

    # Issuance rate limits
    OTP_RESEND_COOLDOWN_SECONDS: int = int(os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "60"))
    OTP_ISSUE_LIMIT: int = int(os.getenv("OTP_ISSUE_LIMIT", "5"))  # Max codes per identifier per window
    OTP_ISSUE_WINDOW_SECONDS: int = int(os.getenv("OTP_ISSUE_WINDOW_SECONDS", "600"))  # 10 minutes

    # How long a dead session (expired or lock elapsed) is kept before eviction
    OTP_SESSION_RETENTION_SECONDS: int = int(os.getenv("OTP_SESSION_RETENTION_SECONDS", "3600"))

    # Session storage backend: memory (single instance) or redis (shared)
    OTP_STORE_BACKEND: str = os.getenv("OTP_STORE_BACKEND", "memory")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    OTP_REDIS_KEY_PREFIX: str = os.getenv("OTP_REDIS_KEY_PREFIX", "otpverify")
    OTP_REDIS_MAX_RETRIES: int = int(os.getenv("OTP_REDIS_MAX_RETRIES", "5"))  # WATCH conflicts before giving up

    # Secret mixed into stored code digests
    OTP_CODE_PEPPER: str = os.getenv("OTP_CODE_PEPPER", "dev-pepper-change-me")

    # Delete the just-issued session when email delivery fails
    OTP_ROLLBACK_ON_DELIVERY_FAILURE: bool = os.getenv("OTP_ROLLBACK_ON_DELIVERY_FAILURE", "true").lower() == "true"

    # Email dispatch
    EMAIL_PROVIDER: str = os.getenv("EMAIL_PROVIDER", "console")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "no-reply@devdiaries.local")
    APP_NAME: str = os.getenv("APP_NAME", "Dev Diaries")

    # Return the generated code in API responses (dev only, ignored in prod)
    DEBUG_RETURN_OTP_CODE: bool = os.getenv("DEBUG_RETURN_OTP_CODE", "false").lower() == "true"

    @property
    def otp_ttl(self) -> timedelta:
        return timedelta(seconds=self.OTP_TTL_SECONDS)

    @property
    def debug_return_code(self) -> bool:
        """Only honour DEBUG_RETURN_OTP_CODE outside production."""
        return self.DEBUG_RETURN_OTP_CODE and self.ENV.lower() not in {"prod", "production"}


settings = Settings()


def validate_config():
    """Validate configuration at startup. Raises ValueError if invalid."""
    import logging
    logger = logging.getLogger(__name__)

    if settings.OTP_CODE_ALPHABET.lower() not in {"numeric", "alphanumeric"}:
        error_msg = f"OTP_CODE_ALPHABET must be 'numeric' or 'alphanumeric', got '{settings.OTP_CODE_ALPHABET}'"
        logger.error(error_msg)
        raise ValueError(error_msg)

    if settings.OTP_CODE_LENGTH < 4 or settings.OTP_CODE_LENGTH > 12:
        error_msg = f"OTP_CODE_LENGTH must be between 4 and 12, got {settings.OTP_CODE_LENGTH}"
        logger.error(error_msg)
        raise ValueError(error_msg)

    non_positive = [
        name for name in (
            "OTP_TTL_SECONDS",
            "OTP_MAX_ATTEMPTS",
            "OTP_LOCK_SECONDS",
            "OTP_ISSUE_LIMIT",
            "OTP_ISSUE_WINDOW_SECONDS",
            "OTP_REDIS_MAX_RETRIES",
        )
        if getattr(settings, name) <= 0
    ]
    if non_positive:
        error_msg = f"OTP settings must be positive: {', '.join(non_positive)}"
        logger.error(error_msg)
        raise ValueError(error_msg)

    if settings.OTP_RESEND_COOLDOWN_SECONDS < 0 or settings.OTP_SESSION_RETENTION_SECONDS < 0:
        error_msg = "OTP_RESEND_COOLDOWN_SECONDS and OTP_SESSION_RETENTION_SECONDS must not be negative"
        logger.error(error_msg)
        raise ValueError(error_msg)

    if settings.OTP_STORE_BACKEND not in {"memory", "redis"}:
        error_msg = f"Unknown OTP_STORE_BACKEND: {settings.OTP_STORE_BACKEND}. Must be one of: memory, redis"
        logger.error(error_msg)
        raise ValueError(error_msg)

    # Validate OTP configuration in production
    if settings.ENV == "prod":
        if settings.OTP_CODE_PEPPER == "dev-pepper-change-me":
            error_msg = "OTP_CODE_PEPPER must be set in production"
            logger.error(error_msg)
            raise ValueError(error_msg)

        if settings.OTP_STORE_BACKEND == "memory":
            logger.warning("[OTP] In-memory session store in production: sessions are not shared across instances")

        if settings.EMAIL_PROVIDER == "console":
            logger.warning("[OTP] Console email provider in production: codes will only be logged")

    logger.info("OTP configuration validated")
