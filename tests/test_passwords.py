"""Unit tests for auth/passwords.py -- bcrypt hashing and the 72-byte limit."""

import pytest

from auth.passwords import BCRYPT_MAX_BYTES, dummy_hash, hash_password, verify_password

ROUNDS = 4


def test_hash_and_verify():
    hashed = hash_password("Doctor123!", rounds=ROUNDS)
    assert hashed.startswith("$2b$04$")
    assert verify_password("Doctor123!", hashed) is True
    assert verify_password("Doctor123?", hashed) is False


def test_multibyte_password_at_limit():
    password = "é" * (BCRYPT_MAX_BYTES // 2)
    assert verify_password(password, hash_password(password, rounds=ROUNDS)) is True


def test_password_over_limit_rejected():
    with pytest.raises(ValueError):
        hash_password("é" * 72, rounds=ROUNDS)


def test_verify_over_limit_is_mismatch():
    hashed = hash_password("a" * BCRYPT_MAX_BYTES, rounds=ROUNDS)
    assert verify_password("a" * BCRYPT_MAX_BYTES + "b", hashed) is False


def test_malformed_hash_is_mismatch():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_dummy_hash_is_cached():
    assert dummy_hash(ROUNDS) is dummy_hash(ROUNDS)
