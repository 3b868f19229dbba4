from datetime import datetime, timezone
from typing import Generic, List, Optional, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    model_validator,
)
from pydantic.alias_generators import to_camel
from typing_extensions import Annotated

from taskboard.models import Project, ProjectStatus, Task, TaskPriority, TaskStatus

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
Description = Annotated[str, StringConstraints(max_length=2000)]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Incoming dates are stored as UTC; naive values are taken to be UTC already
UTCDatetime = Annotated[datetime, AfterValidator(_as_utc)]

T = TypeVar("T")


class CamelModel(BaseModel):
    """Wire models use camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def check_date_range(start: Optional[datetime], end: Optional[datetime]) -> List[str]:
    if start is not None and end is not None and end < start:
        return ["End date must be on or after start date"]
    return []


# --- Projects ---


class ProjectCreate(CamelModel):
    name: Name
    description: Optional[Description] = None
    status: ProjectStatus = ProjectStatus.PLANNING
    start_date: Optional[UTCDatetime] = None
    end_date: Optional[UTCDatetime] = None
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _dates_in_order(self):
        errors = check_date_range(self.start_date, self.end_date)
        if errors:
            raise ValueError(errors[0])
        return self


class ProjectUpdate(CamelModel):
    """Partial update - omitted fields keep their current value"""

    name: Optional[Name] = None
    description: Optional[Description] = None
    status: Optional[ProjectStatus] = None
    start_date: Optional[UTCDatetime] = None
    end_date: Optional[UTCDatetime] = None
    tags: Optional[List[str]] = None


class ProjectResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    owner_id: str
    status: ProjectStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    member_ids: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    task_count: int = 0

    @classmethod
    def from_project(cls, project: Project, task_count: int = 0) -> "ProjectResponse":
        return cls.model_validate({**project.model_dump(), "task_count": task_count})


# --- Tasks ---


class TaskCreate(CamelModel):
    title: Name
    description: Optional[Description] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to_id: Optional[str] = None
    due_date: Optional[UTCDatetime] = None
    estimated_hours: int = Field(default=0, ge=0)
    tags: List[str] = Field(default_factory=list)


class TaskUpdate(CamelModel):
    """Partial update - omitted fields keep their current value"""

    title: Optional[Name] = None
    description: Optional[Description] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to_id: Optional[str] = None
    due_date: Optional[UTCDatetime] = None
    estimated_hours: Optional[int] = Field(default=None, ge=0)
    tags: Optional[List[str]] = None


class TaskStatusUpdate(CamelModel):
    status: TaskStatus


class TaskAssign(CamelModel):
    user_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class TaskResponse(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    project_id: str
    status: TaskStatus
    priority: TaskPriority
    assigned_to_id: Optional[str] = None
    created_by_id: str
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_hours: int = 0
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls.model_validate(task.model_dump())


class ProjectDetailResponse(ProjectResponse):
    tasks: List[TaskResponse] = Field(default_factory=list)

    @classmethod
    def from_project_and_tasks(
        cls, project: Project, tasks: List[Task]
    ) -> "ProjectDetailResponse":
        return cls.model_validate(
            {
                **project.model_dump(),
                "task_count": len(tasks),
                "tasks": [TaskResponse.from_task(task) for task in tasks],
            }
        )


# --- Shared ---


class PagedResponse(CamelModel, Generic[T]):
    items: List[T]
    total_count: int
    page_number: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items: List[T], total_count: int, page_number: int, page_size: int):
        total_pages = (total_count + page_size - 1) // page_size if page_size else 0
        return cls(
            items=items,
            total_count=total_count,
            page_number=page_number,
            page_size=page_size,
            total_pages=total_pages,
        )


class ProjectAnalyticsResponse(CamelModel):
    project_id: str
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    todo_tasks: int
    blocked_tasks: int
    completion_percentage: float
    tasks_by_status: dict[str, int] = Field(default_factory=dict)
    tasks_by_priority: dict[str, int] = Field(default_factory=dict)
