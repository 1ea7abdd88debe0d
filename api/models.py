"""
API request and response models for AccessDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
audit/models.py, which own the internal domain representation. Route handlers
map between the two.

Request models forbid unknown fields: a body that does not match the shape of
its endpoint is rejected with 400 before any handler logic runs.
"""

from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from audit.models import Activity, ActivityAction
from auth.models import Group, GroupPermission, Permission, User
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]{3,50}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
PERMISSION_NAME_PATTERN = r"^[a-z][a-z0-9_]{1,99}$"
MIN_PASSWORD_LENGTH = 8

# Whitespace is not stripped globally: it is significant in passwords.
_REQUEST_CONFIG = ConfigDict(extra="forbid")


def _check_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return value


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/login."""

    model_config = _REQUEST_CONFIG

    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=255)


class _NewPasswordMixin(BaseModel):
    """Shared new-password + confirmation pair."""

    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password(value)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match.")
        return self


class RegisterRequest(_NewPasswordMixin):
    """Request body for POST /api/v1/register.

    group_id is optional; the configured default group is used when omitted.
    Admin groups are refused by the route, never assignable by self-service.
    """

    model_config = _REQUEST_CONFIG

    username: str = Field(pattern=USERNAME_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)
    group_id: Optional[int] = Field(default=None, gt=0)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class UserCreate(RegisterRequest):
    """Request body for POST /api/v1/users (admin). Any existing group may be used."""

    is_active: bool = True


class RecoverPasswordRequest(BaseModel):
    """Request body for POST /api/v1/recover-password."""

    model_config = _REQUEST_CONFIG

    email: str = Field(min_length=1, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class ResetPasswordRequest(_NewPasswordMixin):
    """Request body for POST /api/v1/reset-password."""

    model_config = _REQUEST_CONFIG

    token: str = Field(min_length=1, max_length=255)


class PasswordChange(_NewPasswordMixin):
    """Request body for POST /api/v1/users/{id}/change-password."""

    model_config = _REQUEST_CONFIG

    current_password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# User models
# ---------------------------------------------------------------------------


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}.

    Only fields present in the body are applied (model_fields_set). avatar_url
    may be sent as null to clear it; every other field must be non-null when
    present. is_active and group_id are admin-only -- the route enforces that.
    """

    model_config = _REQUEST_CONFIG

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)
    is_active: Optional[bool] = None
    group_id: Optional[int] = Field(default=None, gt=0)

    NULLABLE_FIELDS: ClassVar[set[str]] = {"avatar_url"}
    ADMIN_ONLY_FIELDS: ClassVar[set[str]] = {"is_active", "group_id"}

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def reject_nulls(self):
        for name in self.model_fields_set - self.NULLABLE_FIELDS:
            if getattr(self, name) is None:
                raise ValueError(f"{name} must not be null.")
        return self

    def changes(self) -> dict:
        """Return only the fields the client actually sent."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class UserResponse(BaseModel):
    """Public identity of a user. There is no password field, by construction."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    avatar_url: Optional[str]
    is_active: bool
    is_blocked: bool
    group_id: int
    is_admin: bool
    last_login: Optional[str]
    created_at: str

    @classmethod
    def from_user(cls, user: User, is_admin: bool) -> "UserResponse":
        """Factory Method: the domain -> transport mapping lives with the model."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar_url=user.avatar_url,
            is_active=user.is_active,
            is_blocked=user.is_blocked,
            group_id=user.group_id,
            is_admin=is_admin,
            last_login=user.last_login,
            created_at=user.created_at or "",
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Group models
# ---------------------------------------------------------------------------


class GroupCreate(BaseModel):
    """Request body for POST /api/v1/groups. New groups are never admin groups."""

    model_config = _REQUEST_CONFIG

    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    color: str = Field(default="#6B7280", pattern=COLOR_PATTERN)


class GroupPatch(BaseModel):
    """Request body for PATCH /api/v1/groups/{id}. description may be set to null."""

    model_config = _REQUEST_CONFIG

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)

    @model_validator(mode="after")
    def reject_nulls(self):
        for name in self.model_fields_set - {"description"}:
            if getattr(self, name) is None:
                raise ValueError(f"{name} must not be null.")
        return self

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


class GroupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]
    color: str
    is_admin: bool

    @classmethod
    def from_group(cls, group: Group) -> "GroupResponse":
        return cls(
            id=group.id,
            name=group.name,
            description=group.description,
            color=group.color,
            is_admin=group.is_admin,
        )


# ---------------------------------------------------------------------------
# Permission models
# ---------------------------------------------------------------------------


class PermissionCreate(BaseModel):
    """Request body for POST /api/v1/permissions."""

    model_config = _REQUEST_CONFIG

    name: str = Field(pattern=PERMISSION_NAME_PATTERN)
    description: str = Field(min_length=1, max_length=1000)


class PermissionPatch(BaseModel):
    model_config = _REQUEST_CONFIG

    name: Optional[str] = Field(default=None, pattern=PERMISSION_NAME_PATTERN)
    description: Optional[str] = Field(default=None, min_length=1, max_length=1000)

    @model_validator(mode="after")
    def reject_nulls(self):
        for name in self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} must not be null.")
        return self

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(id=permission.id, name=permission.name, description=permission.description)


class GroupPermissionCreate(BaseModel):
    """Request body for POST /api/v1/groups/{id}/permissions."""

    model_config = _REQUEST_CONFIG

    permission_id: int = Field(gt=0)


class GroupPermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    group_id: int
    permission_id: int

    @classmethod
    def from_grant(cls, grant: GroupPermission) -> "GroupPermissionResponse":
        return cls(id=grant.id, group_id=grant.group_id, permission_id=grant.permission_id)


# ---------------------------------------------------------------------------
# Activity and dashboard models
# ---------------------------------------------------------------------------


class ActivityCreate(BaseModel):
    """Request body for POST /api/v1/activities.

    user_id defaults to the caller. Only admins may record entries for others.
    """

    model_config = _REQUEST_CONFIG

    user_id: Optional[int] = Field(default=None, gt=0)
    action: ActivityAction
    description: str = Field(min_length=1, max_length=1000)


class ActivityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    action: str
    description: str
    timestamp: str

    @classmethod
    def from_activity(cls, activity: Activity) -> "ActivityResponse":
        return cls(
            id=activity.id,
            user_id=activity.user_id,
            action=activity.action,
            description=activity.description,
            timestamp=activity.timestamp,
        )


class DashboardStatsResponse(BaseModel):
    """Response for GET /api/v1/dashboard/stats."""

    model_config = ConfigDict(frozen=True)

    total_users: int
    active_groups: int
    new_registrations: int
    blocked_accounts: int
    activity_by_day: list[int]  # index 0 = Sunday
    recent_activities: list[ActivityResponse]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[FieldError]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
