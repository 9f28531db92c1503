"""
auth/lockout.py -- Progressive account lockout decisions.

Pure functions over an Account snapshot: no I/O, no clock reads. The caller
passes `now` in and persists whatever LockoutState comes back.

Rules:
  - An account is locked while locked_until is set and strictly in the future.
    An expired lock needs no explicit unlock; the next attempt is evaluated
    normally.
  - Each failure increments the counter by exactly one. Reaching max_attempts
    sets locked_until = now + lockout_duration. Below the threshold an existing
    locked_until is carried over unchanged.
  - Success resets both fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from auth.models import Account, LockoutState


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=30)

    def is_locked(self, account: Account, now: datetime) -> bool:
        return account.locked_until is not None and account.locked_until > now

    def on_failure(self, account: Account, now: datetime) -> LockoutState:
        attempts = account.failed_login_attempts + 1
        locked_until = account.locked_until
        if attempts >= self.max_attempts:
            locked_until = now + self.lockout_duration
        return LockoutState(failed_login_attempts=attempts, locked_until=locked_until)

    def on_success(self) -> LockoutState:
        return LockoutState(failed_login_attempts=0, locked_until=None)
