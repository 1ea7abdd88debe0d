"""
api/routes/v1/groups.py -- Group management and group permission grants.

Routes:
  GET    /api/v1/groups                                  -- list groups (requires auth)
  GET    /api/v1/groups/{id}                             -- one group (requires auth)
  POST   /api/v1/groups                                  -- create group (admin only)
  PATCH  /api/v1/groups/{id}                             -- edit group (admin only)
  DELETE /api/v1/groups/{id}                             -- delete empty group (admin only)
  GET    /api/v1/groups/{id}/permissions                 -- list grants (requires auth)
  POST   /api/v1/groups/{id}/permissions                 -- grant permission (admin only)
  DELETE /api/v1/groups/{id}/permissions/{permission_id} -- revoke grant (admin only)

Admin groups (the seeded Administrators group among them) can never be
deleted, and a group that still has members cannot be deleted either.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import (
    GroupCreate,
    GroupPatch,
    GroupPermissionCreate,
    GroupPermissionResponse,
    GroupResponse,
)
from audit.models import ActivityAction
from auth.dependencies import get_current_user, require_admin
from auth.errors import Conflict, NotFound
from auth.models import Group, User
from auth.store import GroupInUseError, ReservedGroupError, UserStore

# Auth policy:
# - GET  endpoints: requires auth (get_current_user)
# - everything else: requires admin (require_admin)
router = APIRouter()


def _get_or_404(user_store: UserStore, group_id: int) -> Group:
    group = user_store.get_group(group_id)
    if group is None:
        raise NotFound("Group not found.")
    return group


def _ensure_name_free(user_store: UserStore, name: str, group_id: int | None = None) -> None:
    holder = user_store.get_group_by_name(name)
    if holder is not None and holder.id != group_id:
        raise Conflict("A group with this name already exists.", code="group_name_taken")


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


@router.get("/groups", response_model=list[GroupResponse])
def list_groups(request: Request, current_user: User = Depends(get_current_user)) -> list[GroupResponse]:
    return [GroupResponse.from_group(g) for g in request.app.state.user_store.list_groups()]


@router.get("/groups/{group_id}", response_model=GroupResponse)
def get_group(
    request: Request,
    group_id: int = Path(gt=0),
    current_user: User = Depends(get_current_user),
) -> GroupResponse:
    return GroupResponse.from_group(_get_or_404(request.app.state.user_store, group_id))


@router.post("/groups", response_model=GroupResponse, status_code=201)
def create_group(
    request: Request,
    body: GroupCreate,
    current_user: User = Depends(require_admin),
) -> GroupResponse:
    """Create a regular (non-admin) group."""
    user_store: UserStore = request.app.state.user_store
    _ensure_name_free(user_store, body.name)
    try:
        group_id = user_store.create_group(Group(name=body.name, description=body.description, color=body.color))
    except IntegrityError:
        raise Conflict("A group with this name already exists.", code="group_name_taken") from None
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.group_create, f"Created group {body.name} (id={group_id})"
    )
    return GroupResponse.from_group(user_store.get_group(group_id))


@router.patch("/groups/{group_id}", response_model=GroupResponse)
def update_group(
    request: Request,
    body: GroupPatch,
    group_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> GroupResponse:
    user_store: UserStore = request.app.state.user_store
    group = _get_or_404(user_store, group_id)
    changes = body.changes()
    if "name" in changes:
        _ensure_name_free(user_store, changes["name"], group_id)
    try:
        user_store.update_group(group_id, **changes)
    except IntegrityError:
        raise Conflict("A group with this name already exists.", code="group_name_taken") from None
    request.app.state.activity_log.record(
        current_user.id,
        ActivityAction.group_update,
        f"Updated group {group.name} (id={group_id}): {', '.join(sorted(changes)) or 'no changes'}",
    )
    return GroupResponse.from_group(user_store.get_group(group_id))


@router.delete("/groups/{group_id}", status_code=204)
def delete_group(
    request: Request,
    group_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete an empty, non-admin group.

    A group with members yields 400 with the member count in "count".
    """
    user_store: UserStore = request.app.state.user_store
    group = _get_or_404(user_store, group_id)
    try:
        deleted = user_store.delete_group(group_id)
    except ReservedGroupError:
        raise Conflict("Admin groups cannot be deleted.", code="reserved_group") from None
    except GroupInUseError as exc:
        raise Conflict(
            f"Group still has {exc.member_count} member(s).",
            code="group_not_empty",
            count=exc.member_count,
        ) from None
    if not deleted:
        raise NotFound("Group not found.")
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.group_delete, f"Deleted group {group.name} (id={group_id})"
    )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


@router.get("/groups/{group_id}/permissions", response_model=list[GroupPermissionResponse])
def list_group_permissions(
    request: Request,
    group_id: int = Path(gt=0),
    current_user: User = Depends(get_current_user),
) -> list[GroupPermissionResponse]:
    user_store: UserStore = request.app.state.user_store
    _get_or_404(user_store, group_id)
    return [GroupPermissionResponse.from_grant(g) for g in user_store.list_group_permissions(group_id)]


@router.post("/groups/{group_id}/permissions", response_model=GroupPermissionResponse, status_code=201)
def assign_permission(
    request: Request,
    body: GroupPermissionCreate,
    group_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> GroupPermissionResponse:
    """Grant a permission to a group. Granting the same permission twice is a conflict."""
    user_store: UserStore = request.app.state.user_store
    group = _get_or_404(user_store, group_id)
    permission = user_store.get_permission(body.permission_id)
    if permission is None:
        raise NotFound("Permission not found.")
    try:
        grant_id = user_store.grant_permission(group_id, permission.id)
    except IntegrityError:
        raise Conflict("The group already has this permission.", code="duplicate_grant") from None
    request.app.state.activity_log.record(
        current_user.id,
        ActivityAction.permission_assign,
        f"Granted {permission.name} to group {group.name}",
    )
    return GroupPermissionResponse(id=grant_id, group_id=group_id, permission_id=permission.id)


@router.delete("/groups/{group_id}/permissions/{permission_id}", status_code=204)
def remove_permission(
    request: Request,
    group_id: int = Path(gt=0),
    permission_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> Response:
    user_store: UserStore = request.app.state.user_store
    group = _get_or_404(user_store, group_id)
    if not user_store.revoke_permission(group_id, permission_id):
        raise NotFound("The group does not have this permission.")
    permission = user_store.get_permission(permission_id)
    label = permission.name if permission is not None else f"permission {permission_id}"
    request.app.state.activity_log.record(
        current_user.id,
        ActivityAction.permission_remove,
        f"Revoked {label} from group {group.name}",
    )
    return Response(status_code=204)
