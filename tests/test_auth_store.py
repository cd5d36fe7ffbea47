"""Unit tests for auth/store.py -- the session and credential repository.

Covers:
- user + credentials created together; duplicate email raises IntegrityError
- find_valid_session() treats expired rows as absent before they are purged
- invalidate_session() is idempotent
- rotate_session() is one-time-use and writes nothing when it loses
- delete_user_cascade() removes sessions, accounts and the user
- cached token pair is written on open_session() and nulled by clear_cached_tokens()
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import QueuePool, SingletonThreadPool

from auth.models import ClientInfo, IssuedTokens
from auth.store import AuthStore, new_id


def _iso(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat(timespec="seconds")


def _tokens(refresh: str, session_id: str | None = None) -> IssuedTokens:
    return IssuedTokens(
        access_token=f"access-for-{refresh}",
        refresh_token=refresh,
        access_expires_at=_iso(timedelta(minutes=15)),
        refresh_expires_at=_iso(timedelta(days=30)),
        session_id=session_id or new_id(),
    )


@pytest.fixture
def user(store: AuthStore):
    return store.create_user_with_credentials("ada@example.com", "Ada", "hash")


class TestUsers:
    def test_create_user_with_credentials(self, store: AuthStore, user) -> None:
        found = store.get_credentials_by_email("ada@example.com")
        assert found is not None
        account, found_user = found
        assert found_user.id == user.id
        assert account.user_id == user.id
        assert account.provider_id == "credentials"
        assert account.password == "hash"

    def test_duplicate_email_raises_integrity_error(self, store: AuthStore, user) -> None:
        with pytest.raises(IntegrityError):
            store.create_user_with_credentials("ada@example.com", "Other", "hash2")
        # The failed transaction left no orphaned account behind.
        assert len(store.list_users()) == 1

    def test_unknown_email_returns_none(self, store: AuthStore) -> None:
        assert store.get_credentials_by_email("nobody@example.com") is None
        assert store.get_user_by_email("nobody@example.com") is None

    def test_update_profile(self, store: AuthStore, user) -> None:
        updated = store.update_user_profile(user.id, name="Ada L.", image="https://img/ada.png")
        assert updated.name == "Ada L."
        assert updated.image == "https://img/ada.png"
        assert updated.email == "ada@example.com"

    def test_update_profile_rejects_other_fields(self, store: AuthStore, user) -> None:
        with pytest.raises(ValueError):
            store.update_user_profile(user.id, role="ADMIN")

    def test_update_missing_user_returns_none(self, store: AuthStore) -> None:
        assert store.update_user_profile("missing", name="x") is None


class TestSessions:
    def test_open_session_caches_tokens(self, store: AuthStore, user) -> None:
        tokens = _tokens("refresh-1")
        session = store.open_session(user.id, tokens, ClientInfo("10.0.0.1", "pytest"))
        assert session.id == tokens.session_id
        assert session.ip_address == "10.0.0.1"
        account = store.get_credentials_account(user.id)
        assert account.refresh_token == "refresh-1"
        assert account.access_token == "access-for-refresh-1"

    def test_find_valid_session(self, store: AuthStore, user) -> None:
        created = store.create_session(user.id, "refresh-1", _iso(timedelta(days=30)))
        found = store.find_valid_session("refresh-1")
        assert found is not None
        assert found.id == created.id

    def test_expired_session_is_absent(self, store: AuthStore, user) -> None:
        """Expired rows must read as absent even before they are purged."""
        store.create_session(user.id, "old", _iso(timedelta(seconds=-5)))
        assert store.find_valid_session("old") is None
        assert store.list_sessions_for_user(user.id) == []

    def test_purge_removes_only_expired(self, store: AuthStore, user) -> None:
        store.create_session(user.id, "old", _iso(timedelta(seconds=-5)))
        store.create_session(user.id, "live", _iso(timedelta(days=1)))
        assert store.purge_expired_sessions() == 1
        assert store.find_valid_session("live") is not None

    def test_sessions_are_additive(self, store: AuthStore, user) -> None:
        store.open_session(user.id, _tokens("r1"))
        store.open_session(user.id, _tokens("r2"))
        assert len(store.list_sessions_for_user(user.id)) == 2

    def test_invalidate_is_idempotent(self, store: AuthStore, user) -> None:
        store.create_session(user.id, "r1", _iso(timedelta(days=1)))
        store.invalidate_session("r1")
        store.invalidate_session("r1")
        store.invalidate_session("never-existed")
        assert store.find_valid_session("r1") is None

    def test_delete_sessions_for_user(self, store: AuthStore, user) -> None:
        other = store.create_user_with_credentials("bob@example.com", "Bob", "hash")
        store.open_session(user.id, _tokens("r1"))
        store.open_session(user.id, _tokens("r2"))
        store.open_session(other.id, _tokens("r3"))
        assert store.delete_sessions_for_user(user.id) == 2
        assert store.find_valid_session("r3") is not None

    def test_duplicate_refresh_token_rejected(self, store: AuthStore, user) -> None:
        store.create_session(user.id, "same", _iso(timedelta(days=1)))
        with pytest.raises(IntegrityError):
            store.create_session(user.id, "same", _iso(timedelta(days=1)))


class TestRotation:
    def test_rotate_replaces_session(self, store: AuthStore, user) -> None:
        old = store.open_session(user.id, _tokens("r1"))
        new_tokens = _tokens("r2")
        new = store.rotate_session(old, new_tokens)
        assert new is not None
        assert new.id == new_tokens.session_id
        assert store.find_valid_session("r1") is None
        assert store.find_valid_session("r2").id == new.id
        assert store.get_credentials_account(user.id).refresh_token == "r2"

    def test_rotate_is_one_time_use(self, store: AuthStore, user) -> None:
        old = store.open_session(user.id, _tokens("r1"))
        assert store.rotate_session(old, _tokens("r2")) is not None
        assert store.rotate_session(old, _tokens("r3")) is None
        # The losing rotation wrote nothing.
        assert store.find_valid_session("r3") is None
        assert store.get_credentials_account(user.id).refresh_token == "r2"

    def test_rotate_expired_session_fails(self, store: AuthStore, user) -> None:
        old = store.create_session(user.id, "r1", _iso(timedelta(seconds=-1)))
        assert store.rotate_session(old, _tokens("r2")) is None


class TestDeletion:
    def test_delete_user_cascade(self, store: AuthStore, user) -> None:
        store.open_session(user.id, _tokens("r1"))
        store.open_session(user.id, _tokens("r2"))
        assert store.delete_user_cascade(user.id) is True
        assert store.get_user_by_id(user.id) is None
        assert store.get_credentials_account(user.id) is None
        assert store.find_valid_session("r1") is None
        assert store.find_valid_session("r2") is None

    def test_delete_missing_user(self, store: AuthStore) -> None:
        assert store.delete_user_cascade("missing") is False

    def test_clear_cached_tokens(self, store: AuthStore, user) -> None:
        store.open_session(user.id, _tokens("r1"))
        store.clear_cached_tokens(user.id)
        account = store.get_credentials_account(user.id)
        assert account.access_token is None
        assert account.refresh_token is None
        assert account.refresh_token_expires_at is None
        assert account.password == "hash"

    def test_ping(self, store: AuthStore) -> None:
        assert store.ping() is True


class TestEngine:
    def test_memory_url_uses_per_thread_pool(self, store: AuthStore) -> None:
        assert isinstance(store.engine.pool, SingletonThreadPool)

    def test_file_url_uses_queue_pool(self, tmp_path) -> None:
        file_store = AuthStore(f"sqlite:///{tmp_path / 'auth.db'}")
        try:
            assert isinstance(file_store.engine.pool, QueuePool)
            assert file_store.ping() is True
        finally:
            file_store.close()
