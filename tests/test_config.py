"""
Tests for configuration validation and the engine factory
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from otpverify.core import env
from otpverify.core.config import Settings, settings, validate_config
from otpverify.services import engine_factory
from otpverify.services.codes import CodeAlphabet
from otpverify.services.session_store import InMemorySessionRepository, RedisSessionRepository
from otpverify.services.verification_engine import VerificationPolicy


def test_defaults_validate():
    validate_config()


@pytest.mark.parametrize(
    "field,value",
    [
        ("OTP_CODE_ALPHABET", "hex"),
        ("OTP_CODE_LENGTH", 3),
        ("OTP_CODE_LENGTH", 13),
        ("OTP_TTL_SECONDS", 0),
        ("OTP_MAX_ATTEMPTS", 0),
        ("OTP_RESEND_COOLDOWN_SECONDS", -1),
        ("OTP_STORE_BACKEND", "memcached"),
    ],
)
def test_invalid_settings_rejected(monkeypatch, field, value):
    monkeypatch.setattr(settings, field, value)
    with pytest.raises(ValueError):
        validate_config()


def test_default_pepper_rejected_in_prod(monkeypatch):
    monkeypatch.setattr(settings, "ENV", "prod")
    with pytest.raises(ValueError, match="OTP_CODE_PEPPER"):
        validate_config()

    monkeypatch.setattr(settings, "OTP_CODE_PEPPER", "a-real-secret")
    validate_config()


def test_debug_code_ignored_in_prod():
    assert Settings(DEBUG_RETURN_OTP_CODE=True, ENV="dev").debug_return_code is True
    assert Settings(DEBUG_RETURN_OTP_CODE=True, ENV="prod").debug_return_code is False


def test_policy_from_settings():
    policy = VerificationPolicy.from_settings(
        Settings(
            OTP_CODE_ALPHABET="ALPHANUMERIC",
            OTP_TTL_SECONDS=600,
            OTP_LOCK_SECONDS=60,
            OTP_CODE_PEPPER="pepper",
        )
    )
    assert policy.alphabet is CodeAlphabet.ALPHANUMERIC
    assert policy.ttl == timedelta(minutes=10)
    assert policy.lock_duration == timedelta(minutes=1)
    assert policy.pepper == "pepper"


def test_env_helpers(monkeypatch):
    for fn in (env.get_env_name, env.is_local_env, env.is_production_env):
        fn.cache_clear()
    monkeypatch.setenv("ENV", "Prod")
    try:
        assert env.get_env_name() == "prod"
        assert env.is_production_env() is True
        assert env.is_local_env() is False
    finally:
        for fn in (env.get_env_name, env.is_local_env, env.is_production_env):
            fn.cache_clear()


def test_build_engine_memory(monkeypatch):
    monkeypatch.setattr(settings, "OTP_STORE_BACKEND", "memory")
    engine = engine_factory.build_engine()
    assert isinstance(engine.repository, InMemorySessionRepository)


def test_build_engine_redis(monkeypatch):
    monkeypatch.setattr(settings, "OTP_STORE_BACKEND", "redis")
    client = MagicMock()
    engine = engine_factory.build_engine(redis_client=client)
    assert isinstance(engine.repository, RedisSessionRepository)


def test_build_engine_unknown_backend(monkeypatch):
    monkeypatch.setattr(settings, "OTP_STORE_BACKEND", "sqlite")
    with pytest.raises(ValueError):
        engine_factory.build_engine()


def test_service_singleton():
    assert engine_factory.get_verification_service() is engine_factory.get_verification_service()
    engine_factory.reset_verification_singletons()
    assert engine_factory.get_verification_engine() is engine_factory.get_verification_service().engine
