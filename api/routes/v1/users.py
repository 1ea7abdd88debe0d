"""
api/routes/v1/users.py -- User directory and account administration endpoints.

Routes:
  GET    /api/v1/users                        -- list users (requires auth)
  GET    /api/v1/users/{id}                   -- one user (requires auth)
  POST   /api/v1/users                        -- create user (admin only)
  PATCH  /api/v1/users/{id}                   -- edit profile (self, or admin for anyone)
  POST   /api/v1/users/{id}/change-password   -- change own password (self only)
  POST   /api/v1/users/{id}/block             -- block account (admin only)
  POST   /api/v1/users/{id}/unblock           -- unblock account (admin only)
  DELETE /api/v1/users/{id}                   -- delete account (admin only)

Security:
  Non-admins may PATCH only their own record and never is_active or group_id.
  Admins cannot block, unblock, or delete their own account.
  The last member of an admin group cannot be moved out of it.
  Blocking revokes every session of the target immediately.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import MessageResponse, PasswordChange, UserCreate, UserPatch, UserResponse
from api.routes.v1.auth import create_account
from audit.models import ActivityAction
from auth.dependencies import get_current_user, require_admin
from auth.errors import Conflict, Forbidden, NotFound, ValidationFailed
from auth.models import User
from auth.passwords import hash_password, verify_password
from auth.sessions import COOKIE_NAME
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("accessdesk.api")

_settings = get_settings()

# Auth policy:
# - GET    /users, /users/{id}:             requires auth (get_current_user)
# - PATCH  /users/{id}:                     requires auth; self or admin, checked in handler
# - POST   /users/{id}/change-password:     requires auth; self only
# - POST   /users, block, unblock, DELETE:  requires admin (require_admin)
router = APIRouter()


def _get_or_404(user_store: UserStore, user_id: int) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


def _forbid_self(current_user: User, user_id: int, action: str) -> None:
    if current_user.id == user_id:
        raise Forbidden(f"You cannot {action} your own account.", code="self_operation")


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(get_current_user)) -> list[UserResponse]:
    """Return every user in creation order."""
    user_store: UserStore = request.app.state.user_store
    admin_groups = {g.id for g in user_store.list_groups() if g.is_admin}
    return [UserResponse.from_user(u, u.group_id in admin_groups) for u in user_store.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int = Path(gt=0),
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    user = _get_or_404(user_store, user_id)
    return UserResponse.from_user(user, user_store.is_admin(user))


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create an account in any existing group, admin groups included."""
    user_store: UserStore = request.app.state.user_store
    group_id = body.group_id or _settings.default_group_id
    user = create_account(user_store, body, group_id, is_active=body.is_active)
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.user_create, f"Created user {user.username} (id={user.id})"
    )
    return UserResponse.from_user(user, user_store.is_admin(user))


# ---------------------------------------------------------------------------
# Profile edits
# ---------------------------------------------------------------------------


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    body: UserPatch,
    user_id: int = Path(gt=0),
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Apply a partial update to a user.

    Only fields present in the body change. Non-admins are limited to the
    profile fields of their own record.
    """
    user_store: UserStore = request.app.state.user_store
    caller_is_admin = user_store.is_admin(current_user)
    changes = body.changes()

    if not caller_is_admin:
        if user_id != current_user.id:
            raise Forbidden("You may only edit your own profile.")
        if changes.keys() & UserPatch.ADMIN_ONLY_FIELDS:
            raise Forbidden("Only administrators may change is_active or group_id.")

    target = _get_or_404(user_store, user_id)

    if "email" in changes:
        holder = user_store.get_by_email(changes["email"])
        if holder is not None and holder.id != target.id:
            raise Conflict("Email already exists.", code="email_taken")

    if "group_id" in changes and changes["group_id"] != target.group_id:
        new_group = user_store.get_group(changes["group_id"])
        if new_group is None:
            raise ValidationFailed(
                "Unknown group.",
                fields=[{"field": "group_id", "message": f"Group {changes['group_id']} does not exist."}],
            )
        if not new_group.is_admin and user_store.is_admin(target) and user_store.count_admins() <= 1:
            raise Conflict("Cannot remove the last administrator from the admin group.", code="last_admin")

    try:
        user_store.update_user(user_id, **changes)
    except IntegrityError:
        raise Conflict("Email already exists.", code="email_taken") from None

    if changes:
        request.app.state.activity_log.record(
            current_user.id,
            ActivityAction.user_update,
            f"Updated user {target.username} (id={target.id}): {', '.join(sorted(changes))}",
        )
    updated = user_store.get_by_id(user_id)
    return UserResponse.from_user(updated, user_store.is_admin(updated))


@router.post("/users/{user_id}/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    user_id: int = Path(gt=0),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Change the caller's own password. Other sessions of the caller are signed out."""
    if user_id != current_user.id:
        raise Forbidden("You may only change your own password.")
    if not verify_password(body.current_password, current_user.hashed_password):
        raise ValidationFailed("Current password is incorrect.", code="invalid_password")

    user_store: UserStore = request.app.state.user_store
    user_store.update_user(current_user.id, hashed_password=hash_password(body.password))
    revoked = request.app.state.session_store.destroy_for_user(
        current_user.id, keep_token=request.cookies.get(COOKIE_NAME)
    )
    logger.info("Password changed for user_id=%s; revoked %d other session(s)", current_user.id, revoked)
    request.app.state.activity_log.record(current_user.id, ActivityAction.password_change, "Password changed")
    return MessageResponse(message="Password changed.")


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.post("/users/{user_id}/block", response_model=UserResponse)
def block_user(
    request: Request,
    user_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Block an account and sign it out everywhere. Blocking twice is not an error."""
    _forbid_self(current_user, user_id, "block")
    user_store: UserStore = request.app.state.user_store
    target = _get_or_404(user_store, user_id)
    user_store.block_user(user_id)
    revoked = request.app.state.session_store.destroy_for_user(user_id)
    logger.info("Blocked user_id=%s; revoked %d session(s)", user_id, revoked)
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.user_block, f"Blocked user {target.username} (id={target.id})"
    )
    updated = user_store.get_by_id(user_id)
    return UserResponse.from_user(updated, user_store.is_admin(updated))


@router.post("/users/{user_id}/unblock", response_model=UserResponse)
def unblock_user(
    request: Request,
    user_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Unblock an account. Unblocking an active account is not an error."""
    _forbid_self(current_user, user_id, "unblock")
    user_store: UserStore = request.app.state.user_store
    target = _get_or_404(user_store, user_id)
    user_store.unblock_user(user_id)
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.user_unblock, f"Unblocked user {target.username} (id={target.id})"
    )
    updated = user_store.get_by_id(user_id)
    return UserResponse.from_user(updated, user_store.is_admin(updated))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete an account. Its sessions go with it; its activity history stays."""
    _forbid_self(current_user, user_id, "delete")
    user_store: UserStore = request.app.state.user_store
    target = _get_or_404(user_store, user_id)
    user_store.delete_user(user_id)
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.user_delete, f"Deleted user {target.username} (id={target.id})"
    )
    return Response(status_code=204)
