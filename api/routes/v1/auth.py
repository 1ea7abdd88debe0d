"""
api/routes/v1/auth.py -- Registration, login, session, and password recovery endpoints.

Routes:
  POST /api/v1/register           -- self-service signup; opens a session; 201
  POST /api/v1/login              -- password login; sets session cookie
  POST /api/v1/logout             -- destroys the session if any; always 200
  GET  /api/v1/session            -- identity of the current session (requires auth)
  POST /api/v1/recover-password   -- issue a one-time reset token for an email
  POST /api/v1/reset-password     -- redeem a reset token and set a new password

Security:
  register, login, recover-password and reset-password are rate-limited per IP.
  authenticate_user() provides timing equalization -- use it, never inline.
  A blocked account is reported only after its password has verified.
  Cache-Control: no-store on every response that carries identity or a cookie.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    LoginRequest,
    MessageResponse,
    RecoverPasswordRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from audit.models import ActivityAction
from auth.dependencies import get_current_user, try_get_current_user
from auth.errors import (
    AccountBlocked,
    Conflict,
    Forbidden,
    InvalidCredentials,
    NotFound,
    ValidationFailed,
)
from auth.models import User
from auth.passwords import authenticate_user, hash_password
from auth.sessions import COOKIE_NAME, clear_session_cookie, set_session_cookie
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("accessdesk.api")

_settings = get_settings()

_NO_STORE = {"Cache-Control": "no-store"}
_RECOVERY_ACK = "If the account exists, password reset instructions have been sent."

# Auth policy:
# - POST /api/v1/register:          public -- may be switched off by SELF_REGISTRATION_ENABLED
# - POST /api/v1/login:             public
# - POST /api/v1/logout:            soft -- works with or without a valid session
# - GET  /api/v1/session:           requires auth (get_current_user)
# - POST /api/v1/recover-password:  public
# - POST /api/v1/reset-password:    public -- the reset token is the credential
router = APIRouter()


# ---------------------------------------------------------------------------
# Account creation (shared with POST /users)
# ---------------------------------------------------------------------------


def create_account(user_store: UserStore, body: RegisterRequest, group_id: int, is_active: bool = True) -> User:
    """Create a user from a validated signup body and return the stored record.

    The lookups give precise messages; the UNIQUE constraints decide the race
    when two requests for the same name arrive together.
    """
    if user_store.get_by_username(body.username) is not None:
        raise Conflict("Username already exists.", code="username_taken")
    if user_store.get_by_email(body.email) is not None:
        raise Conflict("Email already exists.", code="email_taken")
    if user_store.get_group(group_id) is None:
        raise ValidationFailed(
            "Unknown group.",
            fields=[{"field": "group_id", "message": f"Group {group_id} does not exist."}],
        )
    try:
        user_id = user_store.create_user(
            User(
                username=body.username,
                email=body.email,
                hashed_password=hash_password(body.password),
                first_name=body.first_name,
                last_name=body.last_name,
                group_id=group_id,
                avatar_url=body.avatar_url,
                is_active=is_active,
            )
        )
    except IntegrityError:
        raise Conflict("Username or email already exists.") from None
    return user_store.get_by_id(user_id)


def _identity(user_store: UserStore, user: User) -> UserResponse:
    return UserResponse.from_user(user, user_store.is_admin(user))


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/register", response_model=UserResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> UserResponse:
    """Create an account in a non-admin group and sign it in.

    group_id defaults to DEFAULT_GROUP_ID. Requesting an admin group is
    refused outright rather than silently downgraded.
    """
    if not _settings.self_registration_enabled:
        raise Forbidden("Self-registration is disabled.", code="registration_disabled")

    user_store: UserStore = request.app.state.user_store
    group_id = body.group_id or _settings.default_group_id
    group = user_store.get_group(group_id)
    if group is not None and group.is_admin:
        raise Forbidden("Admin groups cannot be joined through registration.")

    user = create_account(user_store, body, group_id)
    request.app.state.activity_log.record(user.id, ActivityAction.register, f"User {user.username} registered")

    token = request.app.state.session_store.create(user.id)
    set_session_cookie(response, token)
    response.headers.update(_NO_STORE)
    return _identity(user_store, user)


@limiter.limit(_settings.login_rate_limit)
@router.post("/login", response_model=UserResponse)
def login(request: Request, response: Response, body: LoginRequest) -> UserResponse:
    """Authenticate with username and password; set the session cookie.

    Unknown username and wrong password produce the same 401. No session is
    created on any failure path.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        raise InvalidCredentials(headers=_NO_STORE)
    if user.is_blocked:
        logger.info("Login refused for blocked user_id=%s", user.id)
        raise AccountBlocked(headers=_NO_STORE)

    user_store.update_last_login(user.id)
    request.app.state.activity_log.record(user.id, ActivityAction.login, f"User {user.username} logged in")

    token = request.app.state.session_store.create(user.id)
    set_session_cookie(response, token)
    response.headers.update(_NO_STORE)
    return _identity(user_store, user_store.get_by_id(user.id))


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request, response: Response) -> MessageResponse:
    """End the current session. Succeeds even without one."""
    user = try_get_current_user(request)
    if user is not None:
        request.app.state.activity_log.record(user.id, ActivityAction.logout, f"User {user.username} logged out")
    token = request.cookies.get(COOKIE_NAME)
    if token:
        request.app.state.session_store.destroy(token)
    clear_session_cookie(response)
    return MessageResponse(message="Logged out.")


@router.get("/session", response_model=UserResponse)
def session(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    response.headers.update(_NO_STORE)
    return _identity(request.app.state.user_store, current_user)


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


def _deliver_reset_token(user: User, raw_token: str) -> None:
    """Hand a reset token to the delivery channel.

    There is no mail integration; the token is only written to the log, and
    only in DEBUG mode.
    """
    logger.info("Issued password reset token for user_id=%s", user.id)
    if _settings.debug:
        logger.warning("DEBUG password reset token for %s: %s", user.email, raw_token)


@limiter.limit(_settings.login_rate_limit)
@router.post("/recover-password", response_model=MessageResponse)
def recover_password(request: Request, body: RecoverPasswordRequest) -> MessageResponse:
    """Start password recovery for an email address.

    Unknown emails get 404 unless UNIFORM_RECOVERY_RESPONSE is set, in which
    case every request receives the same acknowledgement.
    """
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_email(body.email)
    if user is None:
        if _settings.uniform_recovery_response:
            logger.info("Password recovery requested for an unknown email")
            return MessageResponse(message=_RECOVERY_ACK)
        raise NotFound("No account is registered with that email.")

    raw_token = request.app.state.reset_store.issue(user.id)
    _deliver_reset_token(user, raw_token)
    request.app.state.activity_log.record(
        user.id, ActivityAction.password_recovery, f"Password recovery requested for {user.username}"
    )
    return MessageResponse(message=_RECOVERY_ACK)


@limiter.limit(_settings.login_rate_limit)
@router.post("/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Redeem a reset token, set the new password, and sign out every session."""
    user_id = request.app.state.reset_store.redeem(body.token)
    if user_id is None:
        raise ValidationFailed("Invalid or expired reset token.", code="invalid_token")

    user_store: UserStore = request.app.state.user_store
    user_store.update_user(user_id, hashed_password=hash_password(body.password))
    revoked = request.app.state.session_store.destroy_for_user(user_id)
    logger.info("Password reset for user_id=%s; revoked %d session(s)", user_id, revoked)
    request.app.state.activity_log.record(user_id, ActivityAction.password_reset, "Password reset with recovery token")
    return MessageResponse(message="Password has been reset.")
