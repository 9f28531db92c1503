"""
tests/test_cli.py -- The `seed` and `unlock` administration commands in main.py.

Settings are patched to point at a throwaway SQLite file so the commands run
against a real database without touching the configured one.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

import main
from auth.store import UserStore
from core.config import Settings


@pytest.fixture
def db_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    settings = Settings(database_url=url, jwt_secret="c" * 32, bcrypt_rounds=4, _env_file=None)
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    return url


def test_seed_creates_default_accounts(db_url, capsys):
    assert main.main(["seed"]) == 0
    assert "admin@clinic.com" in capsys.readouterr().out

    store = UserStore(db_url)
    try:
        assert store.list_users(limit=10)[1] == 3
    finally:
        store.close()


def test_seed_twice_is_a_no_op(db_url, capsys):
    main.main(["seed"])
    capsys.readouterr()
    assert main.main(["seed"]) == 0
    assert "already exist" in capsys.readouterr().out


def test_unlock(db_url):
    main.main(["seed"])
    store = UserStore(db_url)
    try:
        account = store.get_by_email("staff@clinic.com")
        store.update_lockout_state(account.id, 5, datetime.now(timezone.utc) + timedelta(minutes=30))
        assert main.main(["unlock", "staff@clinic.com"]) == 0
        unlocked = store.get_by_id(account.id)
        assert unlocked.failed_login_attempts == 0
        assert unlocked.locked_until is None
    finally:
        store.close()


def test_unlock_unknown_email(db_url):
    assert main.main(["unlock", "ghost@clinic.com"]) == 1
