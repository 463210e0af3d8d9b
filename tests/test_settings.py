"""
Tests for configuration loading.
"""

import pytest
from pydantic import ValidationError

from config.settings import Settings

SECRET = "x" * 40


def make_settings(**overrides):
    values = {"jwt_secret": SECRET, "stripe_secret_key": "sk_test_abc"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_short_jwt_secret_rejected():
    """JWT secrets shorter than 32 chars are refused."""
    with pytest.raises(ValidationError):
        make_settings(jwt_secret="too-short")


def test_publishable_key_rejected():
    """Only secret or restricted keys are accepted server-side."""
    with pytest.raises(ValidationError):
        make_settings(stripe_secret_key="pk_test_abc")


def test_restricted_key_accepted():
    assert make_settings(stripe_secret_key="rk_live_abc").stripe_secret_key == "rk_live_abc"


def test_base_url_trailing_slash_stripped():
    assert make_settings(app_base_url="https://billing.example.com/").app_base_url == "https://billing.example.com"


def test_database_url_defaults_to_data_dir():
    settings = make_settings(database_url=None, data_dir="/tmp/billing-data")
    assert settings.resolved_database_url == "sqlite:////tmp/billing-data/billing.db"


def test_explicit_database_url_wins():
    settings = make_settings(database_url="postgresql://localhost/billing")
    assert settings.resolved_database_url == "postgresql://localhost/billing"
