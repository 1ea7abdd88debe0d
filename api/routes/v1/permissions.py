"""
api/routes/v1/permissions.py -- Permission catalogue endpoints.

Routes:
  GET    /api/v1/permissions        -- list permissions (requires auth)
  GET    /api/v1/permissions/{id}   -- one permission (requires auth)
  POST   /api/v1/permissions        -- create (admin only)
  PATCH  /api/v1/permissions/{id}   -- edit (admin only)
  DELETE /api/v1/permissions/{id}   -- delete, with every grant of it (admin only)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import PermissionCreate, PermissionPatch, PermissionResponse
from audit.models import ActivityAction
from auth.dependencies import get_current_user, require_admin
from auth.errors import Conflict, NotFound
from auth.models import Permission, User
from auth.store import UserStore

router = APIRouter()


def _get_or_404(user_store: UserStore, permission_id: int) -> Permission:
    permission = user_store.get_permission(permission_id)
    if permission is None:
        raise NotFound("Permission not found.")
    return permission


def _name_taken() -> Conflict:
    return Conflict("A permission with this name already exists.", code="permission_name_taken")


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(request: Request, current_user: User = Depends(get_current_user)) -> list[PermissionResponse]:
    return [PermissionResponse.from_permission(p) for p in request.app.state.user_store.list_permissions()]


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
def get_permission(
    request: Request,
    permission_id: int = Path(gt=0),
    current_user: User = Depends(get_current_user),
) -> PermissionResponse:
    return PermissionResponse.from_permission(_get_or_404(request.app.state.user_store, permission_id))


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(
    request: Request,
    body: PermissionCreate,
    current_user: User = Depends(require_admin),
) -> PermissionResponse:
    user_store: UserStore = request.app.state.user_store
    if user_store.get_permission_by_name(body.name) is not None:
        raise _name_taken()
    try:
        permission_id = user_store.create_permission(Permission(name=body.name, description=body.description))
    except IntegrityError:
        raise _name_taken() from None
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.permission_create, f"Created permission {body.name}"
    )
    return PermissionResponse.from_permission(user_store.get_permission(permission_id))


@router.patch("/permissions/{permission_id}", response_model=PermissionResponse)
def update_permission(
    request: Request,
    body: PermissionPatch,
    permission_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> PermissionResponse:
    user_store: UserStore = request.app.state.user_store
    permission = _get_or_404(user_store, permission_id)
    changes = body.changes()
    if "name" in changes:
        holder = user_store.get_permission_by_name(changes["name"])
        if holder is not None and holder.id != permission_id:
            raise _name_taken()
    try:
        user_store.update_permission(permission_id, **changes)
    except IntegrityError:
        raise _name_taken() from None
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.permission_update, f"Updated permission {permission.name}"
    )
    return PermissionResponse.from_permission(user_store.get_permission(permission_id))


@router.delete("/permissions/{permission_id}", status_code=204)
def delete_permission(
    request: Request,
    permission_id: int = Path(gt=0),
    current_user: User = Depends(require_admin),
) -> Response:
    user_store: UserStore = request.app.state.user_store
    permission = _get_or_404(user_store, permission_id)
    user_store.delete_permission(permission_id)
    request.app.state.activity_log.record(
        current_user.id, ActivityAction.permission_delete, f"Deleted permission {permission.name}"
    )
    return Response(status_code=204)
