"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_user / _row_to_account / _row_to_session
are the mappers. Route, dependency and orchestrator code never touches SQL
directly.

Lifecycle:
  The store owns its Engine. The process entry point (api/main.py lifespan)
  constructs exactly one AuthStore, hands it to every component that needs it,
  and calls close() on shutdown. There is no module-level store instance.

Transactions:
  Multi-step mutations run inside a single engine.begin() block so they
  commit or roll back as a unit:
    create_user_with_credentials  -- users + accounts
    open_session                  -- accounts token cache + sessions insert
    rotate_session                -- conditional sessions delete + insert + cache
    delete_user_cascade           -- sessions + accounts + users

  rotate_session() deletes the old row with WHERE id AND token AND unexpired
  and checks rowcount before inserting. Two concurrent rotations of the same
  refresh token serialize on that DELETE; the loser sees rowcount 0 and gets
  None back, never a half-rotated state.

Security:
  All queries use bound parameters. No f-strings in SQL.

Expiry:
  A session whose expires_at has passed is treated as absent by every lookup,
  even before purge_expired_sessions() physically removes it.

Layer rule: no imports from api/, replica/, or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import SingletonThreadPool

from auth.models import CREDENTIALS_PROVIDER, Account, ClientInfo, IssuedTokens, Role, Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercase
    Column("name", String(255), nullable=False),
    Column("image", Text),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("provider_id", String(50), nullable=False),
    Column("account_id", String(255), nullable=False),
    Column("password", Text),  # bcrypt hash; NULL for non-password providers
    Column("access_token", Text),
    Column("access_token_expires_at", String(32)),
    Column("refresh_token", Text),
    Column("refresh_token_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("provider_id", "account_id", name="uq_accounts_provider_account"),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_id() -> str:
    return str(uuid.uuid4())


def _is_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in db_url


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, Account and Session entities.

    Usage:
        store = AuthStore("sqlite:///eventdesk_auth.db")
        user = store.create_user_with_credentials("a@x.com", "Ada", hash_password("secret"))
        session = store.find_valid_session(refresh_token)
        store.close()
    """

    _PROFILE_FIELDS = frozenset({"name", "image"})

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            if _is_memory_url(db_url):
                # One connection per thread; the shared-cache database lives
                # as long as any of them stays open.
                engine_kwargs["poolclass"] = SingletonThreadPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user_with_credentials(
        self,
        email: str,
        name: str,
        password_hash: str,
        image: str | None = None,
        role: str = Role.USER.value,
    ) -> User:
        """Insert a user and its credentials account in one transaction.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a conflict: a concurrent registration won.
        """
        now = _now_iso()
        user_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=email,
                    name=name,
                    image=image,
                    role=role,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.execute(
                _accounts.insert().values(
                    id=new_id(),
                    user_id=user_id,
                    provider_id=CREDENTIALS_PROVIDER,
                    account_id=user_id,
                    password=password_hash,
                    created_at=now,
                    updated_at=now,
                )
            )
        return User(
            id=user_id,
            email=email,
            name=name,
            image=image,
            role=role,
            created_at=now,
            updated_at=now,
        )

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Exact match. Callers pass the lowercase-normalized email."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user_profile(self, user_id: str, **fields) -> User | None:
        """Update name and/or image. Returns the fresh user, or None if not found.

        Unknown keys raise ValueError -- only profile fields are writable here.
        """
        unknown = set(fields) - self._PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def delete_user_cascade(self, user_id: str) -> bool:
        """Remove every session, every account and the user row atomically.

        Returns True if the user row existed.
        """
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.execute(_accounts.delete().where(_accounts.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_credentials_by_email(self, email: str) -> tuple[Account, User] | None:
        """Look up the password account joined with its user."""
        query = (
            select(_accounts)
            .select_from(_accounts.join(_users, _accounts.c.user_id == _users.c.id))
            .where((_accounts.c.provider_id == CREDENTIALS_PROVIDER) & (_users.c.email == email))
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
            if row is None:
                return None
            user_row = conn.execute(_users.select().where(_users.c.id == row.user_id)).fetchone()
        if user_row is None:
            return None
        return _row_to_account(row), _row_to_user(user_row)

    def get_credentials_account(self, user_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where(
                    (_accounts.c.user_id == user_id) & (_accounts.c.provider_id == CREDENTIALS_PROVIDER)
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def clear_cached_tokens(self, user_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where((_accounts.c.user_id == user_id) & (_accounts.c.provider_id == CREDENTIALS_PROVIDER))
                .values(
                    access_token=None,
                    access_token_expires_at=None,
                    refresh_token=None,
                    refresh_token_expires_at=None,
                    updated_at=_now_iso(),
                )
            )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        user_id: str,
        token: str,
        expires_at: str,
        client: ClientInfo | None = None,
        session_id: str | None = None,
    ) -> Session:
        with self.engine.begin() as conn:
            return _insert_session(conn, user_id, token, expires_at, client, session_id)

    def open_session(self, user_id: str, tokens: IssuedTokens, client: ClientInfo | None = None) -> Session:
        """Cache the new pair on the credentials account and insert its session row."""
        with self.engine.begin() as conn:
            _cache_tokens(conn, user_id, tokens)
            return _insert_session(
                conn, user_id, tokens.refresh_token, tokens.refresh_expires_at, client, tokens.session_id
            )

    def find_valid_session(self, token: str) -> Session | None:
        """Return the session for this refresh token if it exists and is unexpired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.token == token) & (_sessions.c.expires_at > _now_iso()))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def rotate_session(
        self,
        old: Session,
        tokens: IssuedTokens,
        client: ClientInfo | None = None,
    ) -> Session | None:
        """Replace old with a session for tokens.refresh_token, one-time-use.

        Returns the new Session, or None if the old row was already gone
        (rotated, revoked or expired in the meantime). Nothing is written in
        that case.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _sessions.delete().where(
                    (_sessions.c.id == old.id)
                    & (_sessions.c.token == old.token)
                    & (_sessions.c.expires_at > _now_iso())
                )
            )
            if deleted.rowcount != 1:
                return None
            _cache_tokens(conn, old.user_id, tokens)
            return _insert_session(
                conn, old.user_id, tokens.refresh_token, tokens.refresh_expires_at, client, tokens.session_id
            )

    def invalidate_session(self, token: str) -> None:
        """Delete the session for this refresh token. Absence is not an error."""
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.token == token))

    def delete_sessions_for_user(self, user_id: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def list_sessions_for_user(self, user_id: str) -> list[Session]:
        """Return the user's live sessions, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > _now_iso()))
                .order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_expired_sessions(self) -> int:
        """Physically delete expired sessions. Returns number of rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= _now_iso()))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Statement helpers shared by transactional methods
# ---------------------------------------------------------------------------


def _insert_session(
    conn,
    user_id: str,
    token: str,
    expires_at: str,
    client: ClientInfo | None,
    session_id: str | None,
) -> Session:
    client = client or ClientInfo()
    session = Session(
        id=session_id or new_id(),
        user_id=user_id,
        token=token,
        expires_at=expires_at,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        created_at=_now_iso(),
    )
    conn.execute(
        _sessions.insert().values(
            id=session.id,
            user_id=session.user_id,
            token=session.token,
            expires_at=session.expires_at,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=session.created_at,
        )
    )
    return session


def _cache_tokens(conn, user_id: str, tokens: IssuedTokens) -> None:
    conn.execute(
        _accounts.update()
        .where((_accounts.c.user_id == user_id) & (_accounts.c.provider_id == CREDENTIALS_PROVIDER))
        .values(
            access_token=tokens.access_token,
            access_token_expires_at=tokens.access_expires_at,
            refresh_token=tokens.refresh_token,
            refresh_token_expires_at=tokens.refresh_expires_at,
            updated_at=_now_iso(),
        )
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        image=row.image,
        role=row.role,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        provider_id=row.provider_id,
        account_id=row.account_id,
        password=row.password,
        access_token=row.access_token,
        access_token_expires_at=row.access_token_expires_at,
        refresh_token=row.refresh_token,
        refresh_token_expires_at=row.refresh_token_expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )
