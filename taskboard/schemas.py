from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


TaskStatus = Literal["TODO", "IN_PROGRESS", "DONE"]


class ApiModel(BaseModel):
    """Wire models speak camelCase; Python code uses snake_case names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Auth / tenants
# ---------------------------------------------------------------------------

class LoginRequest(ApiModel):
    email: str
    password: str


class RegisterRequest(ApiModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=50)
    surname: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=8)
    # Exactly one of the two: join a tenant directly, or accept an invite
    tenant_id: Optional[str] = None
    invite_id: Optional[str] = None


class RefreshRequest(ApiModel):
    refresh_token: str


class AuthUser(ApiModel):
    id: str
    email: str
    name: str
    surname: str
    tenant_id: str
    role_name: str
    group_id: Optional[str] = None
    tenant_name: Optional[str] = None


class AuthResponse(ApiModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: AuthUser


class TenantCreate(ApiModel):
    tenant_name: str = Field(..., min_length=2, max_length=100)
    admin_email: str = Field(..., min_length=3, max_length=255)
    admin_name: str = Field(..., min_length=1, max_length=50)
    admin_surname: str = Field(..., min_length=1, max_length=50)
    admin_password: str = Field(..., min_length=8)


class TenantUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)


class TenantRead(ApiModel):
    id: str
    name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Users / groups
# ---------------------------------------------------------------------------

class GroupCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class GroupUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class GroupRead(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    tenant_id: str
    member_count: int = 0


class UserRead(ApiModel):
    id: str
    email: str
    name: str
    surname: str
    tenant_id: str
    role_name: str
    group_id: Optional[str] = None
    is_active: bool


class RoleCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=50)


class RoleUpdate(ApiModel):
    name: str = Field(..., min_length=1, max_length=50)


class RoleRead(ApiModel):
    id: str
    name: str
    tenant_id: str
    user_count: int = 0


class UserUpdate(ApiModel):
    """Admin-only membership changes. ``group_id=None`` clears the group."""

    group_id: Optional[str] = None
    role_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Boards
# ---------------------------------------------------------------------------

class BoardCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    group_id: Optional[str] = None  # honoured for admins only


class BoardUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)


class BoardRead(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    owner_id: str
    tenant_id: str
    group_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    task_count: int = 0


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskCreate(ApiModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: TaskStatus = "TODO"
    assignee_id: Optional[str] = None
    parent_task_id: Optional[str] = None


class TaskUpdate(ApiModel):
    """Partial update: only supplied fields are changed.

    ``assignee_id`` and ``parent_task_id`` may be sent as ``null`` to clear
    them, so handlers check ``model_fields_set`` rather than ``None``.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[TaskStatus] = None
    assignee_id: Optional[str] = None
    parent_task_id: Optional[str] = None


class AssigneeRead(ApiModel):
    id: str
    name: str
    surname: str


class TaskRead(ApiModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus
    board_id: str
    owner_id: str
    assignee_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    assignee: Optional[AssigneeRead] = None
    sub_tasks: Optional[List["TaskRead"]] = None


class MessageResponse(ApiModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------

InviteType = Literal["member", "guest"]


class InviteCreate(ApiModel):
    email: str = Field(..., min_length=3, max_length=255)
    role: str = Field(default="member", min_length=1, max_length=50)
    type: InviteType = "member"


class InviterRead(ApiModel):
    name: str
    surname: str


class InviteRead(ApiModel):
    id: str
    email: str
    role: str
    type: InviteType
    status: str
    tenant_id: str
    tenant_name: str
    expires_at: datetime
    created_at: datetime
    inviter: InviterRead


class InvitePublic(ApiModel):
    """What the signup page may show before the invitee has an account."""

    id: str
    email: str
    tenant_id: str
    tenant_name: str
    role: str
    type: InviteType
    expires_at: datetime


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class BoardHit(ApiModel):
    id: str
    name: str
    description: Optional[str] = None


class TaskBoardRef(ApiModel):
    id: str
    name: str


class TaskHit(ApiModel):
    id: str
    title: str
    status: TaskStatus
    board: TaskBoardRef


class SearchResults(ApiModel):
    boards: List[BoardHit] = []
    tasks: List[TaskHit] = []


# ---------------------------------------------------------------------------
# Real-time stream
# ---------------------------------------------------------------------------

class StreamStatus(ApiModel):
    tenant_id: str
    active_subscribers: int
    heartbeat_interval_sec: float
    visibility_filter: bool
