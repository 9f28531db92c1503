"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

The cost factor comes from BCRYPT_ROUNDS and is embedded in every hash, so
verification works across cost changes: old hashes keep their original cost.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from functools import lru_cache

import bcrypt

DEFAULT_ROUNDS = 12
BCRYPT_MAX_BYTES = 72


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError if the password is longer than 72 bytes UTF-8 encoded.
    bcrypt 4.x would silently truncate it and 5.x rejects it, so the limit is
    enforced here for both. The API models reject such input with a 422 first.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password exceeds {BCRYPT_MAX_BYTES} bytes.")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash raises
    ValueError inside bcrypt; that is a mismatch, not a server error. So is a
    password over 72 bytes, which hash_password() never accepts.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=8)
def dummy_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """Timing equalization hash [C1].

    The verifier checks the submitted password against this when the email is
    unknown, so response time does not reveal whether an account exists. Cached
    per cost factor so only the first unknown-email attempt pays for hashing.
    """
    return hash_password("clinicauth_timing_dummy", rounds=rounds)
