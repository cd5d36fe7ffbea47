"""
auth/service.py -- Auth orchestrator: register, login, refresh, logout, profile.

AuthService ties the hasher, token codec, session store and profile sync
together. It never touches HTTP: routes read cookies, pass raw token strings
and an AuthContext in, and write cookies from the IssuedTokens that come back.
Failures are raised as AuthError and translated by api/main.py.

Session ids in tokens:
  Every token pair embeds the id of the session row it belongs to. The id is
  generated before signing and the row is inserted with that id, so the
  session validator can compare the access token's sid with the live row for
  the presented refresh cookie. This holds for the pair issued at login too,
  which means logout revokes the login-time access token as well.

Profile sync:
  push/remove calls to the secondary store are dispatched after the primary
  write has committed and their Future is discarded. They are never part of a
  transaction and can never fail the operation.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import INVALID_CREDENTIALS, AuthError, ErrorCode
from auth.models import AuthContext, ClientInfo, IssuedTokens, Session, TokenClaims, User
from auth.store import AuthStore, new_id
from auth.tokens import TokenCodec, hash_password, verify_password
from replica.sync import ProfileSync

logger = logging.getLogger("eventdesk.auth")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _owns_session(ctx: AuthContext, session: Session) -> bool:
    """True if session is the one ctx's access token was issued for.

    Tokens without a session id fall back to an owner check.
    """
    if ctx.session_id is not None:
        return session.id == ctx.session_id and session.user_id == ctx.user_id
    return session.user_id == ctx.user_id


class AuthService:
    def __init__(
        self,
        store: AuthStore,
        codec: TokenCodec,
        profile_sync: ProfileSync,
        bcrypt_rounds: int = 12,
    ) -> None:
        self.store = store
        self.codec = codec
        self.profile_sync = profile_sync
        self._bcrypt_rounds = bcrypt_rounds
        # Timing equalization: login always runs one bcrypt check, against
        # this hash when the account does not exist.
        self._dummy_hash = hash_password("eventdesk_timing_dummy", rounds=bcrypt_rounds)

    # ------------------------------------------------------------------
    # Credential flows
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        email: str,
        password: str,
        image: str | None = None,
        client: ClientInfo | None = None,
    ) -> tuple[User, IssuedTokens]:
        email = normalize_email(email)
        if self.store.get_user_by_email(email) is not None:
            raise AuthError(ErrorCode.CONFLICT, "Email already registered.")

        password_hash = hash_password(password, rounds=self._bcrypt_rounds)
        try:
            user = self.store.create_user_with_credentials(email, name, password_hash, image=image)
        except IntegrityError as exc:
            # A concurrent registration with the same email committed first.
            raise AuthError(ErrorCode.CONFLICT, "Email already registered.") from exc

        tokens = self._open_session(user, client)
        self.profile_sync.push_profile(user)
        logger.info("Registered user %s", user.id)
        return user, tokens

    def login(self, email: str, password: str, client: ClientInfo | None = None) -> tuple[User, IssuedTokens]:
        """Authenticate with email and password.

        Unknown email and wrong password produce the same AuthError, and both
        paths run exactly one bcrypt check.
        """
        found = self.store.get_credentials_by_email(normalize_email(email))
        if found is None or not found[0].password:
            verify_password(password, self._dummy_hash)
            logger.info("Login rejected: bad credentials")
            raise AuthError.unauthorized(INVALID_CREDENTIALS)
        account, user = found
        if not verify_password(password, account.password):
            logger.info("Login rejected: bad credentials")
            raise AuthError.unauthorized(INVALID_CREDENTIALS)

        tokens = self._open_session(user, client)
        logger.info("User %s logged in (session %s)", user.id, tokens.session_id)
        return user, tokens

    def refresh(
        self,
        access_token: str | None,
        refresh_token: str | None,
        client: ClientInfo | None = None,
    ) -> tuple[User, IssuedTokens]:
        """Rotate the presented refresh token into a fresh pair.

        Both cookies must be present; a bare refresh token is rejected. The
        access token is not verified -- it is normally expired by now -- its
        presence is the requirement. Every failure clears cookies.
        """
        if not access_token or not refresh_token:
            raise AuthError.unauthorized("Missing authentication tokens.", clear_cookies=True)

        claims = self.codec.verify_refresh(refresh_token)
        if claims is None:
            raise AuthError.unauthorized("Invalid refresh token.", clear_cookies=True)

        session = self.store.find_valid_session(refresh_token)
        if (
            session is None
            or session.user_id != claims.subject
            or (claims.session_id is not None and claims.session_id != session.id)
        ):
            raise AuthError.unauthorized("Session invalid or expired.", clear_cookies=True)

        user = self.store.get_user_by_id(claims.subject)
        if user is None:
            self.store.invalidate_session(refresh_token)
            raise AuthError.unauthorized("Session invalid or expired.", clear_cookies=True)

        tokens = self._issue(user, new_id())
        rotated = self.store.rotate_session(session, tokens, client)
        if rotated is None:
            # Lost a race with another refresh of the same token.
            logger.info("Refresh rejected: session %s already rotated", session.id)
            raise AuthError.unauthorized("Session invalid or expired.", clear_cookies=True)
        logger.info("Rotated session %s -> %s for user %s", session.id, rotated.id, user.id)
        return user, tokens

    def logout(self, refresh_token: str | None, ctx: AuthContext | None = None) -> None:
        """Revoke the presented session, and every session of an authenticated caller.

        The revoke-everything branch only runs when the refresh cookie resolves
        to a live session belonging to ctx; a stale access token paired with a
        dead or foreign refresh cookie revokes nothing beyond that cookie.

        Idempotent: a missing or unknown refresh token is not an error.
        """
        session = self.store.find_valid_session(refresh_token) if refresh_token else None
        if refresh_token:
            self.store.invalidate_session(refresh_token)
        if ctx is not None and session is not None and _owns_session(ctx, session):
            revoked = self.store.delete_sessions_for_user(ctx.user_id)
            self.store.clear_cached_tokens(ctx.user_id)
            logger.info("User %s logged out (%d sessions revoked)", ctx.user_id, revoked)

    # ------------------------------------------------------------------
    # Session validation
    # ------------------------------------------------------------------

    def validate_session(self, ctx: AuthContext, access_token: str | None, refresh_token: str | None) -> Session:
        """Confirm the caller's session is still live.

        This is the revocation check: an access token whose signature is still
        valid fails here once its session row has been deleted.
        """
        if not access_token or not refresh_token:
            raise AuthError.unauthorized()
        session = self.store.find_valid_session(refresh_token)
        if session is None or not _owns_session(ctx, session):
            raise AuthError.unauthorized("Session expired.")
        return session

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, ctx: AuthContext) -> User:
        user = self.store.get_user_by_id(ctx.user_id)
        if user is None:
            raise AuthError(ErrorCode.NOT_FOUND, "User not found.")
        return user

    def update_profile(self, ctx: AuthContext, **fields) -> User:
        """Update name and/or image (image=None clears it)."""
        if not fields:
            raise AuthError(ErrorCode.VALIDATION, "No fields to update.")
        updated = self.store.update_user_profile(ctx.user_id, **fields)
        if updated is None:
            raise AuthError(ErrorCode.NOT_FOUND, "User not found.")
        self.profile_sync.push_profile(updated)
        return updated

    def delete_profile(self, ctx: AuthContext) -> None:
        if not self.store.delete_user_cascade(ctx.user_id):
            raise AuthError(ErrorCode.NOT_FOUND, "User not found.")
        self.profile_sync.remove_profile(ctx.user_id)
        logger.info("Deleted user %s", ctx.user_id)

    def list_users(self) -> list[User]:
        return self.store.list_users()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, user: User, session_id: str) -> IssuedTokens:
        claims = TokenClaims(subject=user.id, role=user.role, session_id=session_id)
        access, access_exp = self.codec.sign_access(claims)
        refresh, refresh_exp = self.codec.sign_refresh(claims)
        return IssuedTokens(
            access_token=access,
            refresh_token=refresh,
            access_expires_at=access_exp,
            refresh_expires_at=refresh_exp,
            session_id=session_id,
        )

    def _open_session(self, user: User, client: ClientInfo | None) -> IssuedTokens:
        tokens = self._issue(user, new_id())
        self.store.open_session(user.id, tokens, client)
        return tokens
