"""
Pytest configuration and fixtures for verification tests.

Every engine built here shares one FakeClock, so tests move time with
clock.advance() instead of sleeping.
"""
import sys
import pathlib
from datetime import timedelta

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from otpverify.core.email_sender import set_email_sender
from otpverify.services.auth.audit import AuditService
from otpverify.services.auth.rate_limit import RateLimitService
from otpverify.services.engine_factory import reset_verification_singletons
from otpverify.services.session_store import InMemorySessionRepository
from otpverify.services.verification_engine import VerificationEngine, VerificationPolicy
from otpverify.services.verification_service import VerificationService
from tests.helpers.clock import FakeClock
from tests.helpers.dispatch import RecordingDispatcher

# TTL 300s, 3 attempts, 15 minute lock, 60s cooldown
TEST_POLICY = VerificationPolicy(
    code_length=6,
    ttl=timedelta(seconds=300),
    max_attempts=3,
    lock_duration=timedelta(seconds=900),
    resend_cooldown=timedelta(seconds=60),
    issue_limit=5,
    issue_window=timedelta(seconds=600),
    retention=timedelta(seconds=3600),
    pepper="test-pepper",
)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Keep process-wide engine/service/email singletons from leaking between tests."""
    reset_verification_singletons()
    set_email_sender(None)
    yield
    reset_verification_singletons()
    set_email_sender(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return TEST_POLICY


@pytest.fixture
def repository(clock, policy):
    return InMemorySessionRepository(retention=policy.retention, clock=clock)


@pytest.fixture
def rate_limiter(policy):
    return RateLimitService(
        cooldown=policy.resend_cooldown,
        issue_limit=policy.issue_limit,
        issue_window=policy.issue_window,
    )


@pytest.fixture
def engine(repository, rate_limiter, policy, clock):
    return VerificationEngine(repository, rate_limiter, policy=policy, clock=clock)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(engine, dispatcher):
    return VerificationService(engine, dispatcher, audit=AuditService(env="test"))


@pytest.fixture
def client(service):
    """
    FastAPI TestClient wired to the fixture service.

    Overrides get_verification_service so requests share the fake clock and
    recording dispatcher with the test.
    """
    from fastapi.testclient import TestClient
    from otpverify.main import app
    from otpverify.services.engine_factory import get_verification_service

    app.dependency_overrides[get_verification_service] = lambda: service
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
