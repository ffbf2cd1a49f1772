import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import EmailStr, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import DateTime
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_id(value) -> uuid.UUID | None:
    """Return the UUID for a syntactically valid id, else None."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


class Role(str, Enum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    USER = "User"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class TaskStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


# ---------------------------------------------------------------------------
# Table models
# ---------------------------------------------------------------------------


class User(SQLModel, table=True):
    """Identity store record"""

    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    username: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, unique=True, index=True)
    password_hash: str = Field(max_length=255)
    role: str = Field(default=Role.USER.value, max_length=20)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=1, max_length=200, index=True)
    description: str | None = Field(default=None)
    priority: str = Field(default=Priority.MEDIUM.value, max_length=20, index=True)


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    status: str = Field(default=TaskStatus.PENDING.value, max_length=20, index=True)
    assigned_to: uuid.UUID = Field(foreign_key="users.id", index=True)
    created_by: uuid.UUID = Field(foreign_key="users.id", index=True)
    due_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True, index=True)
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


# ---------------------------------------------------------------------------
# API schemas (camelCase on the wire)
# ---------------------------------------------------------------------------


class ApiModel(SQLModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


class TaskCreate(ApiModel):
    """Schema for creating a task. Any caller-supplied status is ignored."""

    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    due_date: datetime | None = None
    priority: Priority = Priority.MEDIUM
    assigned_to: str


class TaskUpdate(ApiModel):
    """Schema for updating a task - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    due_date: datetime | None = None
    priority: Priority | None = None
    status: TaskStatus | None = None
    assigned_to: str | None = None


class TaskAssign(ApiModel):
    user_id: str


class TaskResponse(ApiModel):
    """Schema for task responses"""

    id: uuid.UUID
    title: str
    description: str | None = None
    due_date: datetime | None = None
    priority: str
    status: str
    assigned_to: uuid.UUID
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime

    @field_validator("due_date", "created_at", "updated_at")
    @classmethod
    def normalize_datetimes(cls, value):
        return as_utc(value)


class UserSummary(ApiModel):
    id: uuid.UUID
    username: str
    email: str


class TaskDetail(TaskResponse):
    """Task with its assignee and creator resolved; None when the user is gone."""

    assignee: UserSummary | None = None
    creator: UserSummary | None = None


class UserRegister(ApiModel):
    username: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)


class UserLogin(ApiModel):
    email: EmailStr
    password: str


class UserResponse(ApiModel):
    """Public view of a user. The password hash is never part of it."""

    id: uuid.UUID
    username: str
    email: str
    role: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value):
        return as_utc(value)


class RoleUpdate(ApiModel):
    role: Role


class TokenResponse(ApiModel):
    token: str


class MessageResponse(ApiModel):
    msg: str


class RoleUpdateResponse(ApiModel):
    msg: str
    user: UserResponse


class LeaderboardEntry(ApiModel):
    total: int = 0
    completed: int = 0


class TaskAnalytics(ApiModel):
    total_tasks: int
    tasks_by_status: dict[str, int]
    tasks_by_priority: dict[str, int]
    overdue_tasks: int
    tasks_due_soon: int
    user_leaderboard: dict[str, LeaderboardEntry] | None = None
