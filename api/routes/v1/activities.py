"""
api/routes/v1/activities.py -- Activity trail endpoints.

Routes:
  GET  /api/v1/activities?userId=N   -- entries, newest first (requires auth)
  POST /api/v1/activities            -- append an entry (requires auth)

Visibility: admins read everyone's entries and may filter by userId.
Everyone else reads only their own; asking for another user's id is 403.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import ActivityCreate, ActivityResponse
from auth.dependencies import get_current_user
from auth.errors import ApiError, Forbidden, NotFound
from auth.models import User
from auth.store import UserStore

router = APIRouter()


@router.get("/activities", response_model=list[ActivityResponse])
def list_activities(
    request: Request,
    user_id: Optional[int] = Query(default=None, alias="userId", gt=0),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
) -> list[ActivityResponse]:
    user_store: UserStore = request.app.state.user_store
    if not user_store.is_admin(current_user):
        if user_id is not None and user_id != current_user.id:
            raise Forbidden("You may only view your own activity.")
        user_id = current_user.id
    entries = request.app.state.activity_log.list(user_id=user_id, limit=limit)
    return [ActivityResponse.from_activity(a) for a in entries]


@router.post("/activities", response_model=ActivityResponse, status_code=201)
def create_activity(
    request: Request,
    body: ActivityCreate,
    current_user: User = Depends(get_current_user),
) -> ActivityResponse:
    """Record an entry for the caller, or for any existing user when the caller is an admin."""
    user_store: UserStore = request.app.state.user_store
    actor_id = body.user_id or current_user.id
    if actor_id != current_user.id:
        if not user_store.is_admin(current_user):
            raise Forbidden("You may only record activity for yourself.")
        if user_store.get_by_id(actor_id) is None:
            raise NotFound("User not found.")
    activity = request.app.state.activity_log.record(actor_id, body.action, body.description)
    if activity is None:
        raise ApiError("Failed to record activity.")
    return ActivityResponse.from_activity(activity)
