"""
api/routes/v1/auth.py -- Authentication and profile REST endpoints.

Routes:
  POST   /api/v1/auth/register  -- create account; sets both token cookies
  POST   /api/v1/auth/login     -- password login; sets both token cookies
  POST   /api/v1/auth/refresh   -- rotate the token pair (both cookies required)
  GET    /api/v1/auth/me        -- current profile (gate + session validator)
  PATCH  /api/v1/auth/update    -- update name/image (gate + session validator)
  DELETE /api/v1/auth/delete    -- delete account and every session
  POST   /api/v1/auth/logout    -- idempotent; GET accepted too
  GET    /api/v1/auth/users     -- list users (admin only)

Security:
  Cache-Control: no-store on every response that sets token cookies.
  Login failures share one message whether or not the account exists.
  Refresh failures are raised with clear_cookies=True; the AuthError handler
  in api/main.py expires both cookies on the error response.
  Logout always clears cookies, whatever state the caller was in.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import LoginRequest, MessageResponse, ProfileUpdate, RegisterRequest, UserEnvelope, UserOut
from auth.cookies import CookiePolicy, clear_auth_cookies, read_access_token, read_refresh_token, set_auth_cookies
from auth.dependencies import (
    get_auth_service,
    get_client_info,
    get_cookie_policy,
    require_admin,
    require_session,
    try_get_auth_context,
)
from auth.models import AuthContext, ClientInfo, IssuedTokens, User
from auth.service import AuthService

# Auth policy:
# - POST   /auth/register, /auth/login:  public
# - POST   /auth/refresh:                both cookies, checked by AuthService.refresh()
# - GET    /auth/me, PATCH /auth/update,
#   DELETE /auth/delete:                 require_session (gate + session validator)
# - POST|GET /auth/logout:               optional auth (try_get_auth_context)
# - GET    /auth/users:                  require_admin
router = APIRouter()


def _token_response(
    status_code: int,
    user: User,
    message: str,
    tokens: IssuedTokens,
    policy: CookiePolicy,
) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=UserEnvelope(user=UserOut.from_user(user), message=message).model_dump(),
    )
    set_auth_cookies(resp, policy, tokens.access_token, tokens.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserEnvelope, status_code=201)
def register(
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
    policy: CookiePolicy = Depends(get_cookie_policy),
    client: ClientInfo = Depends(get_client_info),
) -> JSONResponse:
    """Create a user with password credentials and open its first session."""
    user, tokens = service.register(body.name, body.email, body.password, image=body.image, client=client)
    return _token_response(201, user, "User registered successfully.", tokens, policy)


@router.post("/auth/login", response_model=UserEnvelope)
def login(
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
    policy: CookiePolicy = Depends(get_cookie_policy),
    client: ClientInfo = Depends(get_client_info),
) -> JSONResponse:
    """Authenticate with email and password; every login opens an additional session."""
    user, tokens = service.login(body.email, body.password, client=client)
    return _token_response(200, user, "User logged in successfully.", tokens, policy)


@router.post("/auth/refresh", response_model=UserEnvelope)
def refresh(
    request: Request,
    service: AuthService = Depends(get_auth_service),
    policy: CookiePolicy = Depends(get_cookie_policy),
    client: ClientInfo = Depends(get_client_info),
) -> JSONResponse:
    """Rotate the refresh token. The old refresh token is never valid again."""
    user, tokens = service.refresh(read_access_token(request), read_refresh_token(request), client=client)
    return _token_response(200, user, "Token refreshed.", tokens, policy)


@router.api_route("/auth/logout", methods=["POST", "GET"], response_model=MessageResponse)
def logout(
    request: Request,
    service: AuthService = Depends(get_auth_service),
    policy: CookiePolicy = Depends(get_cookie_policy),
    ctx: AuthContext | None = Depends(try_get_auth_context),
) -> JSONResponse:
    """Revoke the current session; a caller whose cookies match a live session revokes all of theirs."""
    service.logout(read_refresh_token(request), ctx)
    resp = JSONResponse(content=MessageResponse(message="User logged out successfully.").model_dump())
    clear_auth_cookies(resp, policy)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserEnvelope)
def me(
    ctx: AuthContext = Depends(require_session),
    service: AuthService = Depends(get_auth_service),
) -> UserEnvelope:
    user = service.get_profile(ctx)
    return UserEnvelope(user=UserOut.from_user(user), message="User profile fetched successfully.")


@router.patch("/auth/update", response_model=UserEnvelope)
def update_profile(
    body: ProfileUpdate,
    ctx: AuthContext = Depends(require_session),
    service: AuthService = Depends(get_auth_service),
) -> UserEnvelope:
    """Update name and/or image. Only fields present in the body are written."""
    fields = body.model_dump(include=body.model_fields_set)
    user = service.update_profile(ctx, **fields)
    return UserEnvelope(user=UserOut.from_user(user), message="User profile updated successfully.")


@router.delete("/auth/delete", response_model=MessageResponse)
def delete_profile(
    ctx: AuthContext = Depends(require_session),
    service: AuthService = Depends(get_auth_service),
    policy: CookiePolicy = Depends(get_cookie_policy),
) -> JSONResponse:
    """Delete the caller's account, credentials and every session."""
    service.delete_profile(ctx)
    resp = JSONResponse(content=MessageResponse(message="User profile deleted successfully.").model_dump())
    clear_auth_cookies(resp, policy)
    return resp


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserOut])
def list_users(
    _admin: AuthContext = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> list[UserOut]:
    """List all user accounts. Admin only."""
    return [UserOut.from_user(u) for u in service.list_users()]
