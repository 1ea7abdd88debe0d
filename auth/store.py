"""
auth/store.py -- SQLAlchemy Core persistence layer for identity and access entities.

Pattern: Repository + Data Mapper. UserStore is the repository for users,
groups, permissions, and group grants; the _row_to_* functions are the
mappers. Route and dependency code never touches SQL directly.

Integrity rules live in the schema, not in handlers:
  - UNIQUE(username), UNIQUE(email), UNIQUE(groups.name),
    UNIQUE(permissions.name), UNIQUE(group_id, permission_id).
    A duplicate insert raises sqlalchemy.exc.IntegrityError, so two
    concurrent registrations for the same username cannot both succeed.
  - users.group_id references groups.id. Grants cascade with their group
    or permission.
  - delete_group() checks membership and the reserved flag inside the same
    transaction as the DELETE.

Security: all queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import ADMIN_GROUP_ID, Group, GroupPermission, Permission, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'accessdesk.db'}"

# ---------------------------------------------------------------------------
# Schema
#
# metadata is shared with auth/sessions.py and auth/recovery.py so their
# foreign keys to users.id resolve against the same table objects.
# ---------------------------------------------------------------------------

metadata = MetaData()

_groups = Table(
    "groups",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("color", String(7), nullable=False),
    Column("is_admin", Integer, nullable=False, server_default="0"),
)

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("avatar_url", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_blocked", Integer, nullable=False, server_default="0"),
    Column("group_id", Integer, ForeignKey("groups.id"), nullable=False),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text, nullable=False),
)

_group_permissions = Table(
    "group_permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False),
    UniqueConstraint("group_id", "permission_id", name="uq_group_permission"),
)

# Seed data for a fresh database. The admin group is inserted first so it
# receives ADMIN_GROUP_ID.
_DEFAULT_GROUPS: list[Group] = [
    Group(name="Administrators", description="System administrators", color="#EF4444", is_admin=True),
    Group(name="Marketing", description="Marketing team", color="#3B82F6"),
    Group(name="Development", description="Development team", color="#8B5CF6"),
    Group(name="Finance", description="Finance team", color="#10B981"),
]

_DEFAULT_PERMISSIONS: list[Permission] = [
    Permission(name="user_create", description="Create users"),
    Permission(name="user_edit", description="Edit users"),
    Permission(name="user_delete", description="Delete users"),
    Permission(name="user_block", description="Block users"),
    Permission(name="group_manage", description="Manage groups"),
    Permission(name="permission_manage", description="Manage permissions"),
]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ReservedGroupError(Exception):
    """Raised by delete_group() for an admin group. These are never deletable."""

    def __init__(self, group_id: int) -> None:
        super().__init__(f"Group {group_id} is reserved and cannot be deleted.")
        self.group_id = group_id


class GroupInUseError(Exception):
    """Raised by delete_group() when users still reference the group."""

    def __init__(self, group_id: int, member_count: int) -> None:
        super().__init__(f"Group {group_id} still has {member_count} member(s).")
        self.group_id = group_id
        self.member_count = member_count


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. Without foreign_keys=ON, SQLite parses
    REFERENCES clauses but never enforces them.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _now_iso() -> str:
    # Fixed-width timestamps keep lexical ordering equal to time ordering.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Group, Permission, and GroupPermission entities.

    Usage:
        store = UserStore()                                # SQLite file default
        store = UserStore("postgresql://user:pw@host/db")  # PostgreSQL
        store.seed_defaults()
        user_id = store.create_user(User(...))
        store.close()

    The engine is public so SessionStore, PasswordResetStore, and ActivityLog
    can share the same database.
    """

    # Whitelists for the partial-update methods. Column names come from these
    # sets, never from raw request input.
    _USER_FIELDS: set = {
        "email",
        "first_name",
        "last_name",
        "avatar_url",
        "is_active",
        "is_blocked",
        "group_id",
        "hashed_password",
    }
    _GROUP_FIELDS: set = {"name", "description", "color"}
    _PERMISSION_FIELDS: set = {"name", "description"}

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    def seed_defaults(self) -> bool:
        """Insert the default groups, permissions, and admin grants into an empty store.

        Returns True if seeding ran, False if groups already existed. Safe to
        call on every startup.
        """
        with self.engine.begin() as conn:
            existing = conn.execute(select(func.count()).select_from(_groups)).scalar() or 0
            if existing:
                return False
            group_ids = [
                conn.execute(
                    _groups.insert().values(
                        name=g.name,
                        description=g.description,
                        color=g.color,
                        is_admin=1 if g.is_admin else 0,
                    )
                ).inserted_primary_key[0]
                for g in _DEFAULT_GROUPS
            ]
            admin_group_id = group_ids[0]
            for perm in _DEFAULT_PERMISSIONS:
                perm_id = conn.execute(
                    _permissions.insert().values(name=perm.name, description=perm.description)
                ).inserted_primary_key[0]
                conn.execute(_group_permissions.insert().values(group_id=admin_group_id, permission_id=perm_id))
        return True

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists. Used for first-run bootstrap."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists, or if group_id references no group. Callers translate that
        into a Conflict response; the pre-insert lookups in the routes only
        exist to pick a precise error message.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    avatar_url=user.avatar_url,
                    is_active=1 if user.is_active else 0,
                    is_blocked=1 if user.is_blocked else 0,
                    group_id=user.group_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Emails are stored lower-cased by the API layer."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id (creation order)."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: see _USER_FIELDS. Unknown keys raise ValueError rather
        than being silently dropped. Booleans are converted to 0/1.

        Returns True if the user exists, False if user_id was not found.
        Raises sqlalchemy.exc.IntegrityError on a duplicate email or an
        unknown group_id.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        for flag in ("is_active", "is_blocked"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def block_user(self, user_id: int) -> bool:
        """Set is_blocked. Idempotent: blocking a blocked user succeeds again."""
        return self.update_user(user_id, is_blocked=True)

    def unblock_user(self, user_id: int) -> bool:
        """Clear is_blocked. Idempotent."""
        return self.update_user(user_id, is_blocked=False)

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Self-delete protection is the caller's responsibility (admin route).
        Sessions and reset tokens cascade; activity records are kept.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def is_admin(self, user: User) -> bool:
        """Return True if the user's group carries the admin flag."""
        with self.engine.connect() as conn:
            flag = conn.execute(select(_groups.c.is_admin).where(_groups.c.id == user.group_id)).scalar()
        return bool(flag)

    def count_admins(self) -> int:
        """Return the number of users in admin groups.

        Used by PATCH /users/{id} to stop the last admin moving out of the
        admin group.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users.join(_groups, _users.c.group_id == _groups.c.id))
                .where(_groups.c.is_admin == 1)
            ).scalar()
        return result or 0

    def count_group_members(self, group_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.group_id == group_id)
            ).scalar()
        return result or 0

    def count_created_since(self, since_iso: str) -> int:
        """Return the number of users whose created_at is at or after since_iso."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.created_at >= since_iso)
            ).scalar()
        return result or 0

    def count_blocked(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users).where(_users.c.is_blocked == 1)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Group queries
    # ------------------------------------------------------------------

    def create_group(self, group: Group) -> int:
        """Insert a group and return its ID. Raises IntegrityError on a duplicate name."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _groups.insert().values(
                    name=group.name,
                    description=group.description,
                    color=group.color,
                    is_admin=1 if group.is_admin else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_group(self, group_id: int) -> Group | None:
        with self.engine.connect() as conn:
            row = conn.execute(_groups.select().where(_groups.c.id == group_id)).fetchone()
        return _row_to_group(row) if row is not None else None

    def get_group_by_name(self, name: str) -> Group | None:
        with self.engine.connect() as conn:
            row = conn.execute(_groups.select().where(_groups.c.name == name)).fetchone()
        return _row_to_group(row) if row is not None else None

    def list_groups(self) -> list[Group]:
        with self.engine.connect() as conn:
            rows = conn.execute(_groups.select().order_by(_groups.c.id)).fetchall()
        return [_row_to_group(r) for r in rows]

    def update_group(self, group_id: int, **fields) -> bool:
        """Update name, description, or color. The admin flag is not editable.

        Returns True if the group exists. Raises IntegrityError on a duplicate
        name and ValueError on unknown fields.
        """
        unknown = set(fields) - self._GROUP_FIELDS
        if unknown:
            raise ValueError(f"Unknown group fields: {unknown!r}")
        if not fields:
            return self.get_group(group_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_groups.update().where(_groups.c.id == group_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_group(self, group_id: int) -> bool:
        """Delete an empty, non-reserved group. Returns False if it does not exist.

        Raises:
            ReservedGroupError: the group is an admin group (including ADMIN_GROUP_ID).
            GroupInUseError:    at least one user still references the group.

        The membership count and the DELETE share one transaction, so a user
        cannot be moved into the group between the check and the delete.
        """
        with self.engine.begin() as conn:
            row = conn.execute(_groups.select().where(_groups.c.id == group_id)).fetchone()
            if row is None:
                return False
            if row.is_admin or row.id == ADMIN_GROUP_ID:
                raise ReservedGroupError(group_id)
            members = (
                conn.execute(select(func.count()).select_from(_users).where(_users.c.group_id == group_id)).scalar()
                or 0
            )
            if members:
                raise GroupInUseError(group_id, members)
            # Explicit grant cleanup so non-enforcing backends do not leave orphans.
            conn.execute(_group_permissions.delete().where(_group_permissions.c.group_id == group_id))
            conn.execute(_groups.delete().where(_groups.c.id == group_id))
        return True

    # ------------------------------------------------------------------
    # Permission queries
    # ------------------------------------------------------------------

    def create_permission(self, permission: Permission) -> int:
        """Insert a permission and return its ID. Raises IntegrityError on a duplicate name."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _permissions.insert().values(name=permission.name, description=permission.description)
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_permission(self, permission_id: int) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_name(self, name: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.name == name)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().order_by(_permissions.c.id)).fetchall()
        return [_row_to_permission(r) for r in rows]

    def update_permission(self, permission_id: int, **fields) -> bool:
        unknown = set(fields) - self._PERMISSION_FIELDS
        if unknown:
            raise ValueError(f"Unknown permission fields: {unknown!r}")
        if not fields:
            return self.get_permission(permission_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(
                _permissions.update().where(_permissions.c.id == permission_id).values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_permission(self, permission_id: int) -> bool:
        """Delete a permission and every grant of it. Returns False if not found."""
        with self.engine.begin() as conn:
            conn.execute(_group_permissions.delete().where(_group_permissions.c.permission_id == permission_id))
            result = conn.execute(_permissions.delete().where(_permissions.c.id == permission_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Group grants
    # ------------------------------------------------------------------

    def list_group_permissions(self, group_id: int) -> list[GroupPermission]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _group_permissions.select()
                .where(_group_permissions.c.group_id == group_id)
                .order_by(_group_permissions.c.id)
            ).fetchall()
        return [_row_to_grant(r) for r in rows]

    def grant_permission(self, group_id: int, permission_id: int) -> int:
        """Grant a permission to a group and return the grant ID.

        Raises sqlalchemy.exc.IntegrityError if the grant already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_group_permissions.insert().values(group_id=group_id, permission_id=permission_id))
            conn.commit()
            return result.inserted_primary_key[0]

    def revoke_permission(self, group_id: int, permission_id: int) -> bool:
        """Remove a grant. Returns True if one was removed, False if none existed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _group_permissions.delete().where(
                    (_group_permissions.c.group_id == group_id) & (_group_permissions.c.permission_id == permission_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        avatar_url=row.avatar_url,
        is_active=bool(row.is_active),
        is_blocked=bool(row.is_blocked),
        group_id=row.group_id,
        last_login=row.last_login,
        created_at=row.created_at,
    )


def _row_to_group(row) -> Group:
    return Group(
        id=row.id,
        name=row.name,
        description=row.description,
        color=row.color,
        is_admin=bool(row.is_admin),
    )


def _row_to_permission(row) -> Permission:
    return Permission(id=row.id, name=row.name, description=row.description)


def _row_to_grant(row) -> GroupPermission:
    return GroupPermission(id=row.id, group_id=row.group_id, permission_id=row.permission_id)
