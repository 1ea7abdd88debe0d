"""
api/routes/v1/dashboard.py -- Aggregated metrics endpoint for the admin console.

Returns a single payload suitable for driving dashboard widgets:
  - Total users, groups, and blocked accounts
  - Registrations in the last 30 days
  - Activity histogram by weekday
  - The 20 most recent activity entries

This is a read-only aggregate route -- no mutations here.
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import ActivityResponse, DashboardStatsResponse
from auth.dependencies import get_current_user
from auth.store import UserStore

_NEW_REGISTRATION_WINDOW = timedelta(days=30)
_RECENT_ACTIVITY_LIMIT = 20

# Auth policy:
# - GET /api/v1/dashboard/stats: requires auth -- aggregate counts are internal data
# Router-level dependency enforces auth; the single handler does not repeat it.
router = APIRouter(dependencies=[Depends(get_current_user)])


@limiter.limit("60/minute")
@router.get("/dashboard/stats", response_model=DashboardStatsResponse)
def get_dashboard_stats(request: Request) -> DashboardStatsResponse:
    """Return aggregate counts across users, groups, and the activity trail.

    Response:
      total_users        -- number of user accounts
      active_groups      -- number of groups
      new_registrations  -- accounts created in the last 30 days
      blocked_accounts   -- accounts currently blocked
      activity_by_day    -- seven counters, Sunday first
      recent_activities  -- up to 20 entries, newest first
    """
    user_store: UserStore = request.app.state.user_store
    activity_log = request.app.state.activity_log

    since = (datetime.now(timezone.utc) - _NEW_REGISTRATION_WINDOW).isoformat(timespec="microseconds")
    recent = activity_log.list(limit=_RECENT_ACTIVITY_LIMIT)

    return DashboardStatsResponse(
        total_users=len(user_store.list_users()),
        active_groups=len(user_store.list_groups()),
        new_registrations=user_store.count_created_since(since),
        blocked_accounts=user_store.count_blocked(),
        activity_by_day=activity_log.count_by_weekday(),
        recent_activities=[ActivityResponse.from_activity(a) for a in recent],
    )
