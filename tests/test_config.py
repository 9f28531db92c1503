"""Unit tests for core/config.py -- Settings validation and duration parsing."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from core.config import Settings, parse_duration

LONG_SECRET = "x" * 32


@pytest.mark.parametrize(
    "raw,seconds",
    [("900", 900), (900, 900), ("15m", 900), ("12h", 43200), ("7d", 604800), ("30s", 30)],
)
def test_parse_duration(raw, seconds):
    assert parse_duration(raw) == seconds


@pytest.mark.parametrize("raw", ["", "15 minutes", "-5m", "0", "1w"])
def test_parse_duration_rejects(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_defaults(monkeypatch):
    for var in (
        "JWT_ACCESS_EXPIRATION",
        "JWT_REFRESH_EXPIRATION",
        "MAX_LOGIN_ATTEMPTS",
        "LOCKOUT_DURATION_MINUTES",
        "BCRYPT_ROUNDS",
    ):
        monkeypatch.delenv(var, raising=False)
    s = Settings(jwt_secret=LONG_SECRET, _env_file=None)
    assert s.access_ttl == timedelta(minutes=15)
    assert s.refresh_ttl == timedelta(days=7)
    assert s.max_login_attempts == 5
    assert s.lockout_duration == timedelta(minutes=30)
    assert s.bcrypt_rounds == 12


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", LONG_SECRET)
    monkeypatch.setenv("JWT_ACCESS_EXPIRATION", "5m")
    monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
    monkeypatch.setenv("LOCKOUT_DURATION_MINUTES", "10")
    s = Settings(_env_file=None)
    assert s.jwt_access_expiration == 300
    assert s.max_login_attempts == 3
    assert s.lockout_duration == timedelta(minutes=10)


def test_missing_secret_in_production(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(ValidationError):
        Settings(debug=False, _env_file=None)


def test_missing_secret_in_debug_generates_one(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    s = Settings(debug=True, _env_file=None)
    assert len(s.jwt_secret) >= 32


def test_short_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="short", _env_file=None)
