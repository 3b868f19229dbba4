from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, String, TypeDecorator
from sqlalchemy import Enum as SAEnum
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, even on backends that drop tzinfo."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ProjectStatus(str, Enum):
    PLANNING = "Planning"
    ACTIVE = "Active"
    ON_HOLD = "OnHold"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"


class TaskStatus(str, Enum):
    TODO = "Todo"
    IN_PROGRESS = "InProgress"
    IN_REVIEW = "InReview"
    DONE = "Done"
    BLOCKED = "Blocked"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


def _enum_column(enum_cls: type[Enum]) -> Column:
    return Column(
        SAEnum(
            enum_cls,
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
    )


class Project(SQLModel, table=True):
    """Project document"""

    __tablename__ = "projects"
    __table_args__ = (
        Index("ix_projects_owner_status_deleted", "owner_id", "status", "is_deleted"),
        Index("ix_projects_updated_at", "updated_at"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    owner_id: str = Field(index=True, max_length=128)
    name: str = Field(max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    status: ProjectStatus = Field(
        default=ProjectStatus.PLANNING, sa_column=_enum_column(ProjectStatus)
    )
    start_date: datetime | None = Field(default=None, sa_column=Column(UTCDateTime()))
    end_date: datetime | None = Field(default=None, sa_column=Column(UTCDateTime()))
    member_ids: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=Column(UTCDateTime(), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now, sa_column=Column(UTCDateTime(), nullable=False)
    )
    is_deleted: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    deleted_at: datetime | None = Field(default=None, sa_column=Column(UTCDateTime()))


class Task(SQLModel, table=True):
    """Task document, always owned through its project"""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_project_status_deleted", "project_id", "status", "is_deleted"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    project_id: str = Field(index=True, max_length=32)
    title: str = Field(max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    status: TaskStatus = Field(default=TaskStatus.TODO, sa_column=_enum_column(TaskStatus))
    priority: TaskPriority = Field(
        default=TaskPriority.MEDIUM, sa_column=_enum_column(TaskPriority)
    )
    assigned_to_id: str | None = Field(
        default=None, sa_column=Column(String(128), index=True)
    )
    created_by_id: str = Field(index=True, max_length=128)
    due_date: datetime | None = Field(default=None, sa_column=Column(UTCDateTime()))
    completed_at: datetime | None = Field(default=None, sa_column=Column(UTCDateTime()))
    estimated_hours: int = Field(default=0, ge=0)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(
        default_factory=get_utc_now, sa_column=Column(UTCDateTime(), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now, sa_column=Column(UTCDateTime(), nullable=False)
    )
    is_deleted: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    deleted_at: datetime | None = Field(default=None, sa_column=Column(UTCDateTime()))
