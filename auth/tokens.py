"""
auth/tokens.py -- Signed token codec and refresh-token hashing.

Security design decisions:
  JWT: python-jose with HS256. A TokenCodec is constructed with an explicit
       secret key, a default lifetime and a token type. The app builds two
       independent codecs -- one for access tokens, one for refresh tokens --
       rather than a class hierarchy. The "type" claim is stamped on mint and
       checked on verify, so a refresh token is never accepted where an access
       token is expected (and vice versa).

  Failures: verify() raises TokenExpired for a correctly signed token past its
       exp, and TokenInvalid for everything else (bad signature, malformed,
       wrong type). Signature is checked on every call.

  Refresh-token hashing: the refresh store keeps HMAC-SHA256(JWT_SECRET, token)
       instead of the raw token. Refresh tokens are long random-bearing JWTs,
       so bcrypt's intentional slowness buys nothing; the keyed hash means a
       leaked database alone cannot be used to forge a matching token.

The secret key is never logged and never stored next to tokens.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid

ACCESS = "access"
REFRESH = "refresh"

# Claims owned by the codec. Stripped from verify() output so a round trip
# returns exactly the claims the caller minted.
_RESERVED = ("exp", "iat", "type", "jti")


class TokenCodec:
    """Mint and verify compact, expiring, tamper-evident tokens."""

    def __init__(
        self,
        secret_key: str,
        ttl: timedelta,
        token_type: str,
        algorithm: str = "HS256",
    ) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key.")
        self._secret_key = secret_key
        self.ttl = ttl
        self.token_type = token_type
        self.algorithm = algorithm

    def __repr__(self) -> str:
        # Never include the key.
        return f"TokenCodec(type={self.token_type!r}, ttl={self.ttl!r}, algorithm={self.algorithm!r})"

    def mint(self, claims: dict[str, Any], ttl: timedelta | None = None) -> str:
        """Encode `claims` into a signed token that expires after `ttl`.

        A random jti makes two tokens minted for the same claims in the same
        second distinct -- the refresh store keys on the token hash.
        """
        clash = set(claims) & set(_RESERVED)
        if clash:
            raise ValueError(f"Reserved claims cannot be supplied: {sorted(clash)}")
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload.update(
            {
                "iat": now,
                "exp": now + (self.ttl if ttl is None else ttl),
                "type": self.token_type,
                "jti": secrets.token_hex(16),
            }
        )
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        """Return the caller claims of a valid token.

        Raises TokenExpired or TokenInvalid. Never returns a partially trusted
        payload.
        """
        if not token:
            raise TokenInvalid()
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise TokenInvalid() from exc
        if payload.get("type") != self.token_type:
            raise TokenInvalid("Wrong token type.")
        return {k: v for k, v in payload.items() if k not in _RESERVED}


def access_claims(user_id: str, email: str, role: str, session_id: str) -> dict[str, Any]:
    return {"sub": user_id, "email": email, "role": role, "sessionId": session_id}


def refresh_claims(user_id: str, token_family: str, version: int) -> dict[str, Any]:
    return {"sub": user_id, "tokenFamily": token_family, "version": version}


def hash_token(secret_key: str, raw_token: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string."""
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


def token_matches(secret_key: str, raw_token: str, token_hash: str) -> bool:
    """Constant-time comparison of a presented token against a stored hash."""
    return hmac.compare_digest(hash_token(secret_key, raw_token), token_hash)
