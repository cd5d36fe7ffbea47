"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores return these;
the orchestrator and routes do the work.

Timestamps are UTC ISO-8601 strings with second precision
(e.g. "2026-01-31T12:00:00+00:00"). The fixed width means plain string
comparison orders them correctly, which the session store relies on for
expiry filtering.

Layer rule: no imports from api/, replica/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUBCOMMITTEE = "SUBCOMMITTEE"


# Provider id of the password-based credential record.
CREDENTIALS_PROVIDER = "credentials"


@dataclass
class User:
    """An identity record. email is always stored lowercase."""

    id: str
    email: str
    name: str
    role: str = Role.USER.value
    image: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Account:
    """Binding between a user and an authentication method.

    For the credentials provider, password holds the bcrypt hash. The cached
    token pair mirrors the most recently issued tokens and is nulled on
    logout. It is a secondary record only -- the sessions table decides
    whether a refresh token is live.
    """

    id: str
    user_id: str
    provider_id: str
    account_id: str
    password: str | None = None
    access_token: str | None = None
    access_token_expires_at: str | None = None
    refresh_token: str | None = None
    refresh_token_expires_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Session:
    """Server-side liveness record for exactly one refresh token."""

    id: str
    user_id: str
    token: str
    expires_at: str
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class ClientInfo:
    """Client metadata recorded on a session row."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims carried by an access or refresh token."""

    subject: str
    role: str
    session_id: str | None = None


@dataclass(frozen=True)
class IssuedTokens:
    """A freshly minted access/refresh pair and the session it belongs to."""

    access_token: str
    refresh_token: str
    access_expires_at: str
    refresh_expires_at: str
    session_id: str


@dataclass(frozen=True)
class AuthContext:
    """Request-scoped identity produced by the auth gate.

    Passed explicitly through FastAPI dependencies into route handlers and
    the orchestrator -- never attached to the request object.
    """

    user_id: str
    role: str
    session_id: str | None = None
