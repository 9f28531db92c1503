"""Unit tests for auth/tokens.py -- TokenCodec and refresh-token hashing.

Covers:
- mint/verify round trip returns exactly the minted claims
- expired tokens raise TokenExpired, tampered/foreign tokens TokenInvalid
- access and refresh codecs reject each other's tokens
- reserved claims cannot be supplied by callers
- hash_token / token_matches are keyed and deterministic
"""

from datetime import timedelta

import pytest

from auth.errors import TokenExpired, TokenInvalid
from auth.tokens import (
    ACCESS,
    REFRESH,
    TokenCodec,
    access_claims,
    hash_token,
    refresh_claims,
    token_matches,
)

SECRET = "unit-test-secret-key-0123456789abcdef"
OTHER_SECRET = "another-secret-key-0123456789abcdefgh"


@pytest.fixture
def access() -> TokenCodec:
    return TokenCodec(SECRET, timedelta(minutes=15), ACCESS)


@pytest.fixture
def refresh() -> TokenCodec:
    return TokenCodec(SECRET, timedelta(days=7), REFRESH)


class TestRoundTrip:
    def test_access_claims_round_trip(self, access):
        claims = access_claims("user-1", "doctor@clinic.com", "DOCTOR", "family-1")
        assert access.verify(access.mint(claims)) == claims

    def test_refresh_claims_round_trip(self, refresh):
        claims = refresh_claims("user-1", "family-1", 3)
        assert refresh.verify(refresh.mint(claims)) == {"sub": "user-1", "tokenFamily": "family-1", "version": 3}

    def test_same_claims_mint_distinct_tokens(self, refresh):
        claims = refresh_claims("user-1", "family-1", 1)
        assert refresh.mint(claims) != refresh.mint(claims)


class TestFailures:
    def test_expired(self, access):
        token = access.mint({"sub": "user-1"}, ttl=timedelta(seconds=-30))
        with pytest.raises(TokenExpired):
            access.verify(token)

    def test_swapped_payload(self, access):
        head, _payload, sig = access.mint({"sub": "user-1", "role": "STAFF"}).split(".")
        _head, payload, _sig = access.mint({"sub": "user-1", "role": "ADMIN"}).split(".")
        forged = ".".join([head, payload, sig])
        with pytest.raises(TokenInvalid):
            access.verify(forged)

    def test_wrong_key(self, access):
        token = TokenCodec(OTHER_SECRET, timedelta(minutes=5), ACCESS).mint({"sub": "user-1"})
        with pytest.raises(TokenInvalid):
            access.verify(token)

    def test_garbage(self, access):
        with pytest.raises(TokenInvalid):
            access.verify("not-a-token")

    def test_empty(self, access):
        with pytest.raises(TokenInvalid):
            access.verify("")

    def test_refresh_token_rejected_by_access_codec(self, access, refresh):
        with pytest.raises(TokenInvalid):
            access.verify(refresh.mint({"sub": "user-1"}))

    def test_access_token_rejected_by_refresh_codec(self, access, refresh):
        with pytest.raises(TokenInvalid):
            refresh.verify(access.mint({"sub": "user-1"}))


def test_reserved_claims_rejected(access):
    with pytest.raises(ValueError):
        access.mint({"sub": "user-1", "exp": 0})


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        TokenCodec("", timedelta(minutes=1), ACCESS)


def test_repr_hides_secret(access):
    assert SECRET not in repr(access)


class TestTokenHash:
    def test_deterministic(self):
        assert hash_token(SECRET, "abc") == hash_token(SECRET, "abc")

    def test_keyed(self):
        assert hash_token(SECRET, "abc") != hash_token(OTHER_SECRET, "abc")

    def test_matches(self):
        stored = hash_token(SECRET, "raw-token")
        assert token_matches(SECRET, "raw-token", stored) is True
        assert token_matches(SECRET, "raw-token-2", stored) is False
