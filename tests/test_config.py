"""Unit tests for core/config.py -- Settings validation.

Covers:
- production mode refuses to start without SECRET_KEY
- short SECRET_KEY is rejected in every mode
- debug mode auto-generates a key
- PASSWORD_HASH_COST must be a power of two
- defaults match the documented token lifetimes and lockout thresholds
"""

from __future__ import annotations

import pytest

from core.config import Settings


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, debug=True, secret_key="too-short")


def test_debug_generates_secret_key() -> None:
    settings = Settings(_env_file=None, debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_debug_keys_differ_per_instance() -> None:
    first = Settings(_env_file=None, debug=True, secret_key="")
    second = Settings(_env_file=None, debug=True, secret_key="")
    assert first.secret_key != second.secret_key


@pytest.mark.parametrize("cost", [0, 1, 1000, 3])
def test_hash_cost_must_be_power_of_two(cost: int) -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, secret_key="k" * 32, password_hash_cost=cost)


def test_defaults() -> None:
    settings = Settings(_env_file=None, secret_key="k" * 32)
    assert settings.access_token_ttl == "15m"
    assert settings.refresh_token_ttl == "7d"
    assert settings.max_login_failures == 5
    assert settings.lock_duration == "15m"
    assert settings.password_hash_cost == 16384
