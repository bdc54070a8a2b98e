"""
Verification engine factory

Builds the repository, rate limiter, engine and service from settings and
keeps process-wide singletons for the API layer.
"""
import logging
from typing import Optional

import redis

from ..core.config import settings
from .auth.audit import AuditService
from .auth.rate_limit import RateLimitService
from .code_dispatch import EmailCodeDispatcher
from .session_store import SessionRepository, InMemorySessionRepository, RedisSessionRepository
from .verification_engine import VerificationEngine, VerificationPolicy
from .verification_service import VerificationService

logger = logging.getLogger(__name__)

_engine_instance: Optional[VerificationEngine] = None
_service_instance: Optional[VerificationService] = None


def create_redis_client(redis_url: Optional[str] = None):
    """Create and ping a Redis client. Raises redis.RedisError if unreachable."""
    url = redis_url or settings.REDIS_URL
    client = redis.from_url(url, decode_responses=True, socket_connect_timeout=3, socket_timeout=3)
    client.ping()  # Test connection
    logger.info(f"[OTP] Redis session store enabled: {url.split('@')[-1]}")
    return client


def build_engine(redis_client=None) -> VerificationEngine:
    """
    Build an engine according to OTP_STORE_BACKEND.

    Args:
        redis_client: Existing client to use for the redis backend

    Returns:
        VerificationEngine instance
    """
    policy = VerificationPolicy.from_settings(settings)
    backend = settings.OTP_STORE_BACKEND.lower()

    repository: SessionRepository
    if backend == "redis":
        client = redis_client or create_redis_client()
        repository = RedisSessionRepository(
            client,
            retention=policy.retention,
            key_prefix=settings.OTP_REDIS_KEY_PREFIX,
            max_retries=settings.OTP_REDIS_MAX_RETRIES,
        )
        rate_limiter = RateLimitService(
            cooldown=policy.resend_cooldown,
            issue_limit=policy.issue_limit,
            issue_window=policy.issue_window,
            redis_client=client,
            key_prefix=settings.OTP_REDIS_KEY_PREFIX,
        )
    elif backend == "memory":
        repository = InMemorySessionRepository(retention=policy.retention)
        rate_limiter = RateLimitService(
            cooldown=policy.resend_cooldown,
            issue_limit=policy.issue_limit,
            issue_window=policy.issue_window,
        )
    else:
        raise ValueError(f"Unknown OTP_STORE_BACKEND: {backend}. Must be one of: memory, redis")

    logger.info(f"[OTP] Using {backend} session store")
    return VerificationEngine(repository, rate_limiter, policy=policy)


def get_verification_engine() -> VerificationEngine:
    """Get or create the engine singleton"""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = build_engine()
    return _engine_instance


def get_verification_service() -> VerificationService:
    """Get or create the service singleton (FastAPI dependency)"""
    global _service_instance
    if _service_instance is None:
        engine = get_verification_engine()
        dispatcher = EmailCodeDispatcher(
            app_name=settings.APP_NAME,
            ttl_minutes=max(1, settings.OTP_TTL_SECONDS // 60),
        )
        _service_instance = VerificationService(
            engine,
            dispatcher,
            audit=AuditService(env=settings.ENV),
            rollback_on_delivery_failure=settings.OTP_ROLLBACK_ON_DELIVERY_FAILURE,
            return_debug_code=settings.debug_return_code,
        )
    return _service_instance


def reset_verification_singletons() -> None:
    """Forget cached instances (tests, config reloads)"""
    global _engine_instance, _service_instance
    _engine_instance = None
    _service_instance = None
