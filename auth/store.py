"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore (the user directory) and RefreshTokenStore are the repositories;
_row_to_account / _row_to_session are the mappers. The verifier, the session
issuer and the routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Refresh tokens are stored only as HMAC hashes (see auth/tokens.py).

Concurrency:
  update_lockout_state() takes an optional expected_attempts value and only
  writes when the stored counter still equals it (compare-and-set). The
  verifier re-reads and recomputes on a lost race, so concurrent failures are
  never undercounted.

  rotate() revokes the consumed session with `WHERE is_revoked = 0` and inserts
  the successor in the same transaction. Two concurrent redemptions of one
  token cannot both see rowcount == 1.

Errors:
  Every SQLAlchemyError is re-raised as StorageFailure, except a duplicate
  email on create_user(), which becomes EmailAlreadyRegistered.

Timestamps are stored as ISO 8601 UTC strings with microsecond precision so
lexicographic order equals chronological order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import EmailAlreadyRegistered, StorageFailure
from auth.models import Account, RefreshSession, Role
from auth.tokens import hash_token

logger = logging.getLogger("clinicauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default="STAFF"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("last_login_at", String(32)),
    Column("password_changed_at", String(32), nullable=False),
    Column("mfa_enabled", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_sessions = Table(
    "refresh_sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("token_family", String(36), nullable=False, index=True),
    Column("version", Integer, nullable=False, server_default="1"),
    Column("is_revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine and make sure the auth schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageFailure(f"Storage operation failed: {operation}.") from exc


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Account entities.

    Usage:
        store = UserStore("sqlite:///clinicauth.db")
        uid = store.create_user(Account(email="a@b.c", password_hash=h, role=Role.STAFF))
        account = store.get_by_email("a@b.c")
        store.close()
    """

    def __init__(self, db_url: str | None = None, *, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("UserStore needs a db_url or an engine.")
            engine = make_engine(db_url)
        self.engine: Engine = engine

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email (case-sensitive). Returns None if not found."""
        with _storage_errors("get_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, user_id: str) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with _storage_errors("get_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def has_users(self) -> bool:
        with _storage_errors("has_users"), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def list_users(self, page: int = 1, limit: int = 10) -> tuple[list[Account], int]:
        """Return one page of accounts ordered by creation time, and the total count."""
        offset = (max(page, 1) - 1) * limit
        with _storage_errors("list_users"), self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users)).scalar() or 0
            rows = conn.execute(
                _users.select().order_by(_users.c.created_at, _users.c.email).limit(limit).offset(offset)
            ).fetchall()
        return [_row_to_account(r) for r in rows], total

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, account: Account) -> str:
        """Insert a new account and return its id.

        Raises EmailAlreadyRegistered if the email is taken. Callers racing on
        the same email get exactly one success.
        """
        now = _now()
        user_id = account.id or str(uuid.uuid4())
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=account.email,
                        password_hash=account.password_hash,
                        role=Role(account.role).value,
                        is_active=1 if account.is_active else 0,
                        failed_login_attempts=account.failed_login_attempts,
                        locked_until=_iso(account.locked_until),
                        last_login_at=_iso(account.last_login_at),
                        password_changed_at=_iso(account.password_changed_at or now),
                        mfa_enabled=1 if account.mfa_enabled else 0,
                        created_at=_iso(now),
                        updated_at=_iso(now),
                    )
                )
        except IntegrityError as exc:
            raise EmailAlreadyRegistered() from exc
        except SQLAlchemyError as exc:
            logger.error("Storage failure during create_user: %s", exc.__class__.__name__)
            raise StorageFailure("Storage operation failed: create_user.") from exc
        return user_id

    def update_lockout_state(
        self,
        user_id: str,
        failed_login_attempts: int,
        locked_until: datetime | None,
        last_login_at: datetime | None = None,
        *,
        expected_attempts: int | None = None,
    ) -> bool:
        """Write the lockout counters (and optionally last_login_at).

        When expected_attempts is given the write only happens if the stored
        counter still equals it. Returns True if a row was updated.
        """
        values: dict = {
            "failed_login_attempts": failed_login_attempts,
            "locked_until": _iso(locked_until),
            "updated_at": _iso(_now()),
        }
        if last_login_at is not None:
            values["last_login_at"] = _iso(last_login_at)
        stmt = _users.update().where(_users.c.id == user_id)
        if expected_attempts is not None:
            stmt = stmt.where(_users.c.failed_login_attempts == expected_attempts)
        with _storage_errors("update_lockout_state"), self.engine.begin() as conn:
            result = conn.execute(stmt.values(**values))
        return result.rowcount > 0

    def unlock(self, user_id: str) -> bool:
        """Administrative unlock: reset the counter and clear locked_until."""
        return self.update_lockout_state(user_id, 0, None)

    def reset_password(self, user_id: str, password_hash: str) -> bool:
        """Replace the password hash, stamp password_changed_at and clear lockout."""
        now = _iso(_now())
        with _storage_errors("reset_password"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    password_hash=password_hash,
                    password_changed_at=now,
                    failed_login_attempts=0,
                    locked_until=None,
                    updated_at=now,
                )
            )
        return result.rowcount > 0

    def deactivate(self, user_id: str) -> bool:
        """Soft delete. The row stays; is_active=0 stops all future logins."""
        with _storage_errors("deactivate"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_active=0, updated_at=_iso(_now()))
            )
        return result.rowcount > 0

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Refresh sessions
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for RefreshSession records.

    Rows are never deleted. Revocation flips is_revoked from 0 to 1 once.
    The HMAC key is the token signing key, passed in explicitly.
    """

    def __init__(self, secret_key: str, db_url: str | None = None, *, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("RefreshTokenStore needs a db_url or an engine.")
            engine = make_engine(db_url)
        self.engine: Engine = engine
        self._secret_key = secret_key

    def record(
        self,
        user_id: str,
        token_family: str,
        version: int,
        raw_token: str,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> RefreshSession:
        """Persist a new, unrevoked session for raw_token. Returns the stored record.

        created_at is now (default: wall clock) and expires_at is now + ttl.
        """
        with _storage_errors("record"), self.engine.begin() as conn:
            return self._insert(conn, user_id, token_family, version, raw_token, ttl, now)

    def find_active_for_user(self, user_id: str) -> RefreshSession | None:
        """Return the most recently created non-revoked session, or None."""
        sessions = self.list_active_for_user(user_id, limit=1)
        return sessions[0] if sessions else None

    def list_active_for_user(self, user_id: str, limit: int | None = None) -> list[RefreshSession]:
        """Return every non-revoked session for the user, newest first."""
        stmt = (
            _refresh_sessions.select()
            .where((_refresh_sessions.c.user_id == user_id) & (_refresh_sessions.c.is_revoked == 0))
            .order_by(_refresh_sessions.c.created_at.desc(), _refresh_sessions.c.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with _storage_errors("list_active_for_user"), self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_session(r) for r in rows]

    def get(self, session_id: int) -> RefreshSession | None:
        with _storage_errors("get"), self.engine.connect() as conn:
            row = conn.execute(_refresh_sessions.select().where(_refresh_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def revoke(self, session_id: int) -> bool:
        """Mark a session revoked. Idempotent; True only on the first call."""
        with _storage_errors("revoke"), self.engine.begin() as conn:
            result = conn.execute(
                _refresh_sessions.update()
                .where((_refresh_sessions.c.id == session_id) & (_refresh_sessions.c.is_revoked == 0))
                .values(is_revoked=1)
            )
        return result.rowcount > 0

    def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every live session of the user. Returns how many were revoked."""
        with _storage_errors("revoke_all_for_user"), self.engine.begin() as conn:
            result = conn.execute(
                _refresh_sessions.update()
                .where((_refresh_sessions.c.user_id == user_id) & (_refresh_sessions.c.is_revoked == 0))
                .values(is_revoked=1)
            )
        return result.rowcount

    def rotate(
        self,
        session_id: int,
        user_id: str,
        token_family: str,
        version: int,
        raw_token: str,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> RefreshSession | None:
        """Revoke session_id and record its successor in one transaction.

        Returns None, writing nothing, if session_id was already revoked.
        """
        with _storage_errors("rotate"), self.engine.begin() as conn:
            result = conn.execute(
                _refresh_sessions.update()
                .where((_refresh_sessions.c.id == session_id) & (_refresh_sessions.c.is_revoked == 0))
                .values(is_revoked=1)
            )
            if result.rowcount == 0:
                return None
            return self._insert(conn, user_id, token_family, version, raw_token, ttl, now)

    def _insert(
        self,
        conn,
        user_id: str,
        token_family: str,
        version: int,
        raw_token: str,
        ttl: timedelta,
        now: datetime | None,
    ) -> RefreshSession:
        now = now or _now()
        session = RefreshSession(
            user_id=user_id,
            token_hash=hash_token(self._secret_key, raw_token),
            token_family=token_family,
            version=version,
            expires_at=now + ttl,
            created_at=now,
        )
        result = conn.execute(
            _refresh_sessions.insert().values(
                user_id=session.user_id,
                token_hash=session.token_hash,
                token_family=session.token_family,
                version=session.version,
                is_revoked=0,
                created_at=_iso(now),
                expires_at=_iso(session.expires_at),
            )
        )
        session.id = result.inserted_primary_key[0]
        return session

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        is_active=bool(row.is_active),
        failed_login_attempts=row.failed_login_attempts,
        locked_until=_parse(row.locked_until),
        last_login_at=_parse(row.last_login_at),
        password_changed_at=_parse(row.password_changed_at),
        mfa_enabled=bool(row.mfa_enabled),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_session(row) -> RefreshSession:
    return RefreshSession(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        token_family=row.token_family,
        version=row.version,
        is_revoked=bool(row.is_revoked),
        created_at=_parse(row.created_at),
        expires_at=_parse(row.expires_at),
    )
