"""
auth/cookies.py -- Cookie transport for the access/refresh token pair.

Both cookies are written with:
  httponly=True: JS cannot read them (XSS mitigation).
  samesite: "strict" by default, "lax" when COOKIE_SAMESITE=lax.
  secure: HTTPS-only in production unless COOKIE_SECURE overrides it.
  domain: COOKIE_DOMAIN when set, host-only otherwise.
  path="/", max_age matching each token's lifetime so cookie and token
  expire together.

The access token may also arrive as "Authorization: Bearer <token>" for
non-browser clients. The refresh token is only ever read from its cookie.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import Response

if TYPE_CHECKING:
    from core.config import Settings

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


@dataclass(frozen=True)
class CookiePolicy:
    secure: bool = False
    samesite: str = "strict"
    domain: str | None = None
    access_max_age: int = 15 * 60
    refresh_max_age: int = 30 * 24 * 60 * 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "CookiePolicy":
        return cls(
            secure=settings.secure_cookies,
            samesite=settings.cookie_samesite,
            domain=settings.cookie_domain,
            access_max_age=settings.access_token_expire_seconds,
            refresh_max_age=settings.refresh_token_expire_seconds,
        )


def set_auth_cookies(response: Response, policy: CookiePolicy, access_token: str, refresh_token: str) -> None:
    """Write both token cookies on the response."""
    for name, value, max_age in (
        (ACCESS_COOKIE, access_token, policy.access_max_age),
        (REFRESH_COOKIE, refresh_token, policy.refresh_max_age),
    ):
        response.set_cookie(
            name,
            value=value,
            max_age=max_age,
            path="/",
            domain=policy.domain,
            secure=policy.secure,
            httponly=True,
            samesite=policy.samesite,
        )


def clear_auth_cookies(response: Response, policy: CookiePolicy) -> None:
    """Expire both token cookies. Attributes must match the ones used to set them."""
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            path="/",
            domain=policy.domain,
            secure=policy.secure,
            httponly=True,
            samesite=policy.samesite,
        )


def read_access_token(request: Request) -> str | None:
    """Cookie first, then Authorization: Bearer header."""
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def read_refresh_token(request: Request) -> str | None:
    return request.cookies.get(REFRESH_COOKIE) or None
