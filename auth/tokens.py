"""
auth/tokens.py -- Password hashing and the access/refresh token codec.

Security design decisions:
  JWT: python-jose with HS256. Two independent signing contexts -- access
       tokens and refresh tokens use different secrets, so a leaked access
       secret cannot forge refresh tokens and vice versa. Verification is
       stateless and returns None on any failure; it never consults the
       session store. Revocation is the session validator's job.

  Every token carries a random jti. Two tokens minted for the same subject
       in the same second would otherwise be byte-identical, and the sessions
       table requires refresh token values to be unique.

  Passwords: bcrypt used directly (no passlib wrapper). verify_password()
       returns False for a wrong password or a malformed hash -- it never
       raises.

Layer rule: no imports from api/ or replica/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenClaims

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("eventdesk.auth")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps passwords
    at 128 characters; longer byte strings are truncated here so bcrypt 4.x
    does not reject them.
    """
    pw_bytes = plain.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    pw_bytes = plain.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


class TokenCodec:
    """Signs and verifies the two token classes.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        token, expires_at = codec.sign_access(TokenClaims(subject=uid, role="USER", session_id=sid))
        claims = codec.verify_access(token)   # TokenClaims or None
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 30 * 24 * 60 * 60,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            access_secret=settings.access_secret,
            refresh_secret=settings.refresh_secret,
            access_ttl_seconds=settings.access_token_expire_seconds,
            refresh_ttl_seconds=settings.refresh_token_expire_seconds,
        )

    def sign_access(self, claims: TokenClaims) -> tuple[str, str]:
        """Return (token, expires_at_iso) for a short-lived access token."""
        return self._sign(claims, _ACCESS, self._access_secret, self.access_ttl_seconds)

    def sign_refresh(self, claims: TokenClaims) -> tuple[str, str]:
        """Return (token, expires_at_iso) for a long-lived refresh token."""
        return self._sign(claims, _REFRESH, self._refresh_secret, self.refresh_ttl_seconds)

    def verify_access(self, token: str) -> TokenClaims | None:
        return self._verify(token, _ACCESS, self._access_secret)

    def verify_refresh(self, token: str) -> TokenClaims | None:
        return self._verify(token, _REFRESH, self._refresh_secret)

    def _sign(self, claims: TokenClaims, kind: str, secret: str, ttl_seconds: int) -> tuple[str, str]:
        now = datetime.now(timezone.utc)
        expire = now + timedelta(seconds=ttl_seconds)
        payload = {
            "sub": claims.subject,
            "role": claims.role,
            "typ": kind,
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": expire,
        }
        if claims.session_id is not None:
            payload["sid"] = claims.session_id
        return jwt.encode(payload, secret, algorithm=_ALGORITHM), _iso(expire)

    @staticmethod
    def _verify(token: str, kind: str, secret: str) -> TokenClaims | None:
        """Decode and check signature, expiry, and token class.

        Returning None (rather than raising) keeps callers simple: any bad
        token is treated as INVALID_OR_EXPIRED by the caller.
        """
        try:
            payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("typ") != kind or not payload.get("sub") or not payload.get("role"):
            return None
        sid = payload.get("sid")
        return TokenClaims(
            subject=str(payload["sub"]),
            role=str(payload["role"]),
            session_id=str(sid) if sid else None,
        )
