"""
audit/models.py -- Domain types for the activity trail.

Activity records are never updated or deleted -- only inserted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ActivityAction(str, Enum):
    login = "login"
    logout = "logout"
    register = "register"
    user_create = "user_create"
    user_update = "user_update"
    user_delete = "user_delete"
    user_block = "user_block"
    user_unblock = "user_unblock"
    password_change = "password_change"
    password_recovery = "password_recovery"
    password_reset = "password_reset"
    group_create = "group_create"
    group_update = "group_update"
    group_delete = "group_delete"
    permission_create = "permission_create"
    permission_update = "permission_update"
    permission_delete = "permission_delete"
    permission_assign = "permission_assign"
    permission_remove = "permission_remove"


@dataclass(frozen=True)
class Activity:
    """One audit entry.

    user_id is the actor, not necessarily the subject: when an admin blocks
    user 7, the entry carries the admin's id and names user 7 in description.

    timestamp is ISO 8601 UTC, assigned by the store on insert.
    """

    id: int
    user_id: int
    action: str
    description: str
    timestamp: str
