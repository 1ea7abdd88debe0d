"""
auth/models.py -- Domain dataclasses for identity and access entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and routes do the work. API transport models live separately in
api/models.py.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass

# Seeded "Administrators" group. Reserved: the store refuses to delete it.
ADMIN_GROUP_ID = 1


@dataclass
class User:
    """An account that can sign in to the console.

    hashed_password is the bcrypt output from auth.passwords.hash_password().
    It never leaves the server -- api/models.UserResponse has no field for it.

    group_id decides authorization: the user is an admin when their group has
    is_admin set (see UserStore.is_admin).

    id is None before the record is written to the database.
    """

    username: str
    email: str
    hashed_password: str
    first_name: str
    last_name: str
    group_id: int
    id: int | None = None
    avatar_url: str | None = None
    is_active: bool = True
    is_blocked: bool = False
    last_login: str | None = None  # ISO 8601, stamped on each successful login
    created_at: str | None = None  # ISO 8601, set by the store on insert


@dataclass
class Group:
    """A named bucket of users sharing a set of permission grants."""

    name: str
    color: str  # "#RRGGBB"
    id: int | None = None
    description: str | None = None
    is_admin: bool = False


@dataclass
class Permission:
    """A named capability that can be granted to groups."""

    name: str
    description: str
    id: int | None = None


@dataclass
class GroupPermission:
    """A grant of one permission to one group. Unique per (group_id, permission_id)."""

    group_id: int
    permission_id: int
    id: int | None = None
