"""
auth/errors.py -- HTTP error taxonomy shared by guards and route handlers.

Every class is an HTTPException whose detail is the structured
{"code": ..., "message": ...} dict that api/main.py renders as
{"error": {...}}. Handlers raise these instead of building JSONResponse
objects by hand, so every failure has the same envelope.

    ValidationFailed    400  malformed or missing input
    Conflict            400  uniqueness violation / state conflict
    Unauthenticated     401  no session, or an expired one
    InvalidCredentials  401  login failure -- deliberately undifferentiated
    AccountBlocked      401  correct password, blocked account
    Forbidden           403  authenticated but not allowed
    NotFound            404  referenced entity absent

Authentication and authorization failures carry fixed generic messages.

Layer rule: no imports from api/ or audit/. fastapi is allowed because the
guards in auth/dependencies.py raise these.
"""

from __future__ import annotations

from fastapi import HTTPException


class ApiError(HTTPException):
    """Base class. Subclasses pin the status code and default error code."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        headers: dict[str, str] | None = None,
        **extra,
    ) -> None:
        detail = {"code": code or self.code, "message": message or self.message, **extra}
        super().__init__(status_code=type(self).status_code, detail=detail, headers=headers)


class ValidationFailed(ApiError):
    status_code = 400
    code = "validation_error"
    message = "Request validation failed."


class Conflict(ApiError):
    status_code = 400
    code = "conflict"
    message = "The request conflicts with existing data."


class Unauthenticated(ApiError):
    status_code = 401
    code = "unauthenticated"
    message = "Authentication required."


class InvalidCredentials(ApiError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid username or password."


class AccountBlocked(ApiError):
    status_code = 401
    code = "account_blocked"
    message = "This account is blocked."


class Forbidden(ApiError):
    status_code = 403
    code = "forbidden"
    message = "Permission denied."


class NotFound(ApiError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."
