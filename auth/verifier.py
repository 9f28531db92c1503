"""
auth/verifier.py -- Password authentication with progressive lockout.

authenticate() order of checks:
  1. Unknown email      -> InvalidCredentials (after a dummy bcrypt check [C1])
  2. Inactive account   -> InvalidCredentials (fail closed, counters untouched)
  3. Locked account     -> AccountLocked(locked_until)
  4. Wrong password     -> counters += 1 (maybe lock), InvalidCredentials
  5. Correct password   -> counters reset, last_login_at stamped, Account

Exactly one lockout-state write happens per call that reaches step 4 or 5.

The failure-path write is a compare-and-set on the counter value that was
read. If a concurrent attempt moved the counter first, the account is re-read
and the policy applied again, up to _MAX_CAS_ATTEMPTS times. If the write
itself fails, the StorageFailure is logged and InvalidCredentials is still
what the caller sees.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from auth.errors import AccountLocked, InvalidCredentials, StorageFailure
from auth.lockout import LockoutPolicy
from auth.models import Account
from auth.passwords import DEFAULT_ROUNDS, dummy_hash, verify_password
from auth.store import UserStore

logger = logging.getLogger("clinicauth.auth")

_MAX_CAS_ATTEMPTS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialVerifier:
    def __init__(
        self,
        users: UserStore,
        policy: LockoutPolicy,
        *,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.policy = policy
        self.bcrypt_rounds = bcrypt_rounds
        self.clock = clock

    def authenticate(self, email: str, password: str) -> Account:
        """Return the authenticated Account or raise InvalidCredentials / AccountLocked."""
        account = self.users.get_by_email(email)
        if account is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            verify_password(password, dummy_hash(self.bcrypt_rounds))
            raise InvalidCredentials()
        if not account.is_active:
            verify_password(password, dummy_hash(self.bcrypt_rounds))
            logger.info("Login rejected for inactive account %s", account.id)
            raise InvalidCredentials()

        now = self.clock()
        if self.policy.is_locked(account, now):
            logger.info("Login rejected for locked account %s", account.id)
            raise AccountLocked(account.locked_until)

        if not verify_password(password, account.password_hash):
            self._record_failure(account, now)
            raise InvalidCredentials()

        state = self.policy.on_success()
        self.users.update_lockout_state(account.id, state.failed_login_attempts, state.locked_until, last_login_at=now)
        account.failed_login_attempts = state.failed_login_attempts
        account.locked_until = state.locked_until
        account.last_login_at = now
        logger.info("Login succeeded for account %s", account.id)
        return account

    def _record_failure(self, account: Account, now: datetime) -> None:
        current: Account | None = account
        try:
            for _ in range(_MAX_CAS_ATTEMPTS):
                state = self.policy.on_failure(current, now)
                written = self.users.update_lockout_state(
                    current.id,
                    state.failed_login_attempts,
                    state.locked_until,
                    expected_attempts=current.failed_login_attempts,
                )
                if written:
                    logger.info(
                        "Failed login for account %s (attempt %d)", current.id, state.failed_login_attempts
                    )
                    if state.locked_until is not None and state.locked_until != current.locked_until:
                        logger.warning("Account %s locked until %s", current.id, state.locked_until.isoformat())
                    return
                current = self.users.get_by_id(account.id)
                if current is None:
                    return
            logger.error("Gave up recording failed login for account %s after concurrent updates", account.id)
        except StorageFailure:
            logger.exception("Could not persist failed login for account %s", account.id)
