"""
auth/sessions.py -- Login, refresh-token rotation and logout.

Session family lifecycle:
  ISSUED   refresh token minted and recorded, not yet used
  ROTATED  redeemed exactly once; its successor (same family, version + 1)
           is now the ISSUED token
  REVOKED  terminal -- reached by redemption, logout or administrative action

Refresh protocol:
  1. Account must exist and be active            else UserNotFound
  2. User must have an unexpired, unrevoked row  else NoValidSession
  3. Presented token's HMAC must match one row   else InvalidRefreshToken
     (nothing is revoked -- a garbled or forged token cannot end a session)
  4. Conditional revoke + successor insert in one transaction. Losing the
     race to a concurrent redemption of the same token -> InvalidRefreshToken.

Tokens are minted before anything is persisted, and a pair is only returned
after its refresh record is durable. A StorageFailure at any point propagates
with no pair returned.

Session rows are stamped with the issuer's clock, the same clock refresh()
checks expiry against.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidRefreshToken, NoValidSession, UserNotFound
from auth.models import Account, LoginResult, TokenPair
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec, access_claims, refresh_claims, token_matches
from auth.verifier import CredentialVerifier

logger = logging.getLogger("clinicauth.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionIssuer:
    def __init__(
        self,
        verifier: CredentialVerifier,
        users: UserStore,
        refresh_store: RefreshTokenStore,
        access_codec: TokenCodec,
        refresh_codec: TokenCodec,
        *,
        secret_key: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.verifier = verifier
        self.users = users
        self.refresh_store = refresh_store
        self.access_codec = access_codec
        self.refresh_codec = refresh_codec
        self._secret_key = secret_key
        self.clock = clock

    @property
    def refresh_ttl(self) -> timedelta:
        return self.refresh_codec.ttl

    def login(self, email: str, password: str) -> LoginResult:
        """Authenticate and open a new session family at version 1."""
        account = self.verifier.authenticate(email, password)
        family = str(uuid.uuid4())
        pair = self._mint_pair(account, family, 1)
        self.refresh_store.record(account.id, family, 1, pair.refresh_token, self.refresh_ttl, now=self.clock())
        return LoginResult(access_token=pair.access_token, refresh_token=pair.refresh_token, account=account)

    def refresh(self, user_id: str, presented_token: str) -> TokenPair:
        """Redeem a refresh token for a new pair in the same family."""
        account = self.users.get_by_id(user_id)
        if account is None or not account.is_active:
            raise UserNotFound()

        now = self.clock()
        active = [s for s in self.refresh_store.list_active_for_user(user_id) if s.expires_at > now]
        if not active:
            raise NoValidSession()

        current = next((s for s in active if token_matches(self._secret_key, presented_token, s.token_hash)), None)
        if current is None:
            logger.warning("Refresh token mismatch for account %s", user_id)
            raise InvalidRefreshToken()

        version = current.version + 1
        pair = self._mint_pair(account, current.token_family, version)
        successor = self.refresh_store.rotate(
            current.id, account.id, current.token_family, version, pair.refresh_token, self.refresh_ttl, now=now
        )
        if successor is None:
            logger.warning("Concurrent redemption of refresh session %s for account %s", current.id, user_id)
            raise InvalidRefreshToken()
        logger.info("Rotated session family %s to version %d for account %s", current.token_family, version, user_id)
        return pair

    def logout(self, user_id: str) -> None:
        """Revoke every live session of the user. Idempotent."""
        if self.users.get_by_id(user_id) is None:
            raise UserNotFound()
        revoked = self.refresh_store.revoke_all_for_user(user_id)
        logger.info("Logout for account %s revoked %d session(s)", user_id, revoked)

    def _mint_pair(self, account: Account, family: str, version: int) -> TokenPair:
        access = self.access_codec.mint(access_claims(account.id, account.email, account.role.value, family))
        refresh = self.refresh_codec.mint(refresh_claims(account.id, family, version))
        return TokenPair(access_token=access, refresh_token=refresh)
