"""
auth/seed.py -- Default clinic accounts for development and demos.

seed_default_users() is idempotent: an email that already exists is left
untouched, so re-running never resets a changed password.

  admin@clinic.com  / Admin123!   ADMIN
  doctor@clinic.com / Doctor123!  DOCTOR
  staff@clinic.com  / Staff123!   STAFF
"""

from __future__ import annotations

import logging

from auth.errors import EmailAlreadyRegistered
from auth.models import Account, Role
from auth.passwords import DEFAULT_ROUNDS, hash_password
from auth.store import UserStore

logger = logging.getLogger("clinicauth.seed")

DEFAULT_USERS: tuple[tuple[str, str, Role], ...] = (
    ("admin@clinic.com", "Admin123!", Role.ADMIN),
    ("doctor@clinic.com", "Doctor123!", Role.DOCTOR),
    ("staff@clinic.com", "Staff123!", Role.STAFF),
)


def seed_default_users(store: UserStore, rounds: int = DEFAULT_ROUNDS) -> list[str]:
    """Create any missing default account. Returns the emails that were created."""
    created: list[str] = []
    for email, password, role in DEFAULT_USERS:
        if store.get_by_email(email) is not None:
            continue
        try:
            store.create_user(Account(email=email, password_hash=hash_password(password, rounds), role=role))
        except EmailAlreadyRegistered:
            continue
        logger.info("Seeded %s account %s", role.value, email)
        created.append(email)
    return created
