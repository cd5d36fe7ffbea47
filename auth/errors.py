"""
auth/errors.py -- Error taxonomy raised by the auth layer.

The orchestrator and FastAPI dependencies raise AuthError; api/main.py owns
the single handler that turns it into an HTTP response. Keeping the status
mapping here means auth/ never builds responses itself.

clear_cookies marks failures where the presented refresh token is known to be
compromised or orphaned (bad signature, session gone, user gone). The handler
expires both auth cookies so the client ends up logged out instead of
retrying with a doomed token.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION = "validation_error"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INTERNAL = "internal_error"


STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.CONFLICT: 409,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INTERNAL: 500,
}

# Single message for every login failure so "no such account" and "wrong
# password" are indistinguishable.
INVALID_CREDENTIALS = "Invalid credentials."


class AuthError(Exception):
    def __init__(self, code: ErrorCode, message: str, *, clear_cookies: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.clear_cookies = clear_cookies

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE[self.code]

    @classmethod
    def unauthorized(cls, message: str = "Authentication required.", *, clear_cookies: bool = False) -> "AuthError":
        return cls(ErrorCode.UNAUTHORIZED, message, clear_cookies=clear_cookies)

    def __repr__(self) -> str:
        return f"AuthError({self.code.value!r}, {self.message!r})"
