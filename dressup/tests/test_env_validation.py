"""Tests for environment validation."""

from types import SimpleNamespace

import logging

import pytest

from dressup.core.config import validate_config
from dressup.core.validation import validate_env, EnvValidationError


@pytest.fixture(autouse=True)
def enforce_validation(monkeypatch):
    monkeypatch.delenv("SKIP_ENV_VALIDATION", raising=False)


def make_settings(**overrides):
    defaults = dict(
        ENV="development",
        GEMINI_API_KEY=None,
        SUPABASE_URL=None,
        SUPABASE_SERVICE_ROLE_KEY=None,
        STRIPE_SECRET_KEY=None,
        STRIPE_WEBHOOK_SECRET=None,
        STRIPE_PRICE_LIGHT=None,
        STRIPE_PRICE_BASIC=None,
        STRIPE_PRICE_PRO=None,
        PUBLIC_APP_URL=None,
        ECHO_GENERATE=False,
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def production_settings(**overrides):
    values = dict(
        ENV="production",
        GEMINI_API_KEY="gemini",
        SUPABASE_URL="https://project.supabase.co",
        SUPABASE_SERVICE_ROLE_KEY="service-role",
        STRIPE_SECRET_KEY="sk_live",
        STRIPE_WEBHOOK_SECRET="whsec_live",
        STRIPE_PRICE_LIGHT="price_l",
        STRIPE_PRICE_BASIC="price_b",
        STRIPE_PRICE_PRO="price_p",
        PUBLIC_APP_URL="https://dressup.example.com",
    )
    values.update(overrides)
    return make_settings(**values)


def test_valid_production_config_passes():
    assert validate_env(settings_obj=production_settings()) is True


def test_development_tolerates_missing_keys():
    assert validate_env(settings_obj=make_settings()) is True


@pytest.mark.parametrize(
    "missing",
    ["GEMINI_API_KEY", "SUPABASE_SERVICE_ROLE_KEY", "STRIPE_WEBHOOK_SECRET", "PUBLIC_APP_URL", "STRIPE_PRICE_PRO"],
)
def test_missing_key_in_production_fails(missing):
    settings = production_settings(**{missing: None})
    with pytest.raises(EnvValidationError) as exc:
        validate_env(settings_obj=settings)
    assert missing in str(exc.value)


def test_invalid_supabase_url_format_fails():
    settings = make_settings(SUPABASE_URL="project.supabase.co")
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=settings)


def test_echo_generate_forbidden_in_prod():
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=production_settings(ECHO_GENERATE=True))


def test_skip_env_validation_bypass(monkeypatch):
    monkeypatch.setenv("SKIP_ENV_VALIDATION", "1")
    settings = make_settings(ENV="production")
    assert validate_env(settings_obj=settings) is True


def test_validate_config_warns_about_missing_keys(caplog):
    logger = logging.getLogger("dressup.test")
    with caplog.at_level(logging.WARNING, logger="dressup.test"):
        validate_config(strict=False, settings_obj=make_settings(), logger=logger)
    assert "GEMINI_API_KEY" in caplog.text
    assert "sk_" not in caplog.text


def test_validate_config_strict_raises():
    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=make_settings(GEMINI_API_KEY="x"))
