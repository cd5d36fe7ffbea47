"""
auth/dependencies.py -- FastAPI Depends() helpers: the auth gate and its variants.

The gate requires BOTH token cookies. A valid access token alone does not
authenticate: without the refresh cookie nothing proves the session has not
been revoked. The access token may come from its cookie or from an
Authorization: Bearer header; the refresh token only from its cookie.

  try_get_auth_context()  -- soft variant; returns None on any failure.
  get_auth_context()      -- hard variant; raises 401. No store access.
  require_session()       -- get_auth_context() + session validator (store lookup).
  require_staff()         -- require_session() + role ADMIN or SUBCOMMITTEE (403).
  require_admin()         -- require_session() + role ADMIN (403).

All of them return an AuthContext value. Handlers receive it as a parameter
and pass it on explicitly -- nothing is stashed on the request.

Shared components (AuthService, CookiePolicy) live on app.state and are
created by the application lifespan.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.cookies import CookiePolicy, read_access_token, read_refresh_token
from auth.errors import AuthError, ErrorCode
from auth.models import AuthContext, ClientInfo, Role
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_cookie_policy(request: Request) -> CookiePolicy:
    return request.app.state.cookie_policy


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def try_get_auth_context(request: Request) -> AuthContext | None:
    """Run the gate; return None instead of raising on any failure."""
    access_token = read_access_token(request)
    refresh_token = read_refresh_token(request)
    if not access_token or not refresh_token:
        return None
    claims = get_auth_service(request).codec.verify_access(access_token)
    if claims is None:
        return None
    return AuthContext(user_id=claims.subject, role=claims.role, session_id=claims.session_id)


def get_auth_context(request: Request) -> AuthContext:
    """Require a verified identity. Raises 401 if either token is missing or invalid."""
    ctx = try_get_auth_context(request)
    if ctx is None:
        raise AuthError.unauthorized("Unauthorized user.")
    return ctx


def require_session(request: Request, ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Require a verified identity whose session row is still live."""
    get_auth_service(request).validate_session(ctx, read_access_token(request), read_refresh_token(request))
    return ctx


def require_staff(ctx: AuthContext = Depends(require_session)) -> AuthContext:
    if ctx.role not in (Role.ADMIN.value, Role.SUBCOMMITTEE.value):
        raise AuthError(ErrorCode.FORBIDDEN, "Subcommittee privileges required.")
    return ctx


def require_admin(ctx: AuthContext = Depends(require_session)) -> AuthContext:
    if ctx.role != Role.ADMIN.value:
        raise AuthError(ErrorCode.FORBIDDEN, "Admin privileges required.")
    return ctx
