import asyncio
import logging
from typing import Callable, Optional

from taskboard.models import Task, TaskStatus, get_utc_now
from taskboard.repositories.paging import clamp_page
from taskboard.repositories.projects import ProjectRepository
from taskboard.repositories.tasks import TaskRepository
from taskboard.schemas import PagedResponse, TaskCreate, TaskResponse, TaskUpdate
from taskboard.services.etag import generate_token, validate_token
from taskboard.services.results import ServiceResult

logger = logging.getLogger(__name__)

PROJECT_NOT_FOUND = "Project not found"
TASK_NOT_FOUND = "Task not found"


def apply_status(task: Task, status: TaskStatus) -> None:
    """Set status; completed_at follows transitions into and out of Done."""
    if status == TaskStatus.DONE:
        if task.status != TaskStatus.DONE or task.completed_at is None:
            task.completed_at = get_utc_now()
    else:
        task.completed_at = None
    task.status = status


class TaskService:
    def __init__(self, projects: ProjectRepository, tasks: TaskRepository):
        self.projects = projects
        self.tasks = tasks

    async def _owned_task(
        self,
        task_id: str,
        owner_id: str,
        project_id: Optional[str] = None,
        fresh: bool = False,
    ) -> Optional[Task]:
        """Load a task only if its project belongs to owner_id."""
        if project_id is not None:
            task, owned = await asyncio.gather(
                self.tasks.get_by_id(task_id, project_id, fresh=fresh),
                self.projects.exists(project_id, owner_id),
            )
            return task if owned else None

        task = await self.tasks.get_by_id(task_id, fresh=fresh)
        if task is None or not await self.projects.exists(task.project_id, owner_id):
            return None
        return task

    async def list_tasks(
        self,
        project_id: str,
        owner_id: str,
        page_number: int,
        page_size: int,
        status: Optional[TaskStatus] = None,
        sort_by: Optional[str] = None,
        sort_descending: bool = False,
    ) -> ServiceResult[PagedResponse[TaskResponse]]:
        if not await self.projects.exists(project_id, owner_id):
            return ServiceResult.not_found(PROJECT_NOT_FOUND)

        page_number, page_size = clamp_page(page_number, page_size)
        tasks, total = await self.tasks.list_by_project(
            project_id,
            page_number,
            page_size,
            status=status,
            sort_by=sort_by,
            sort_descending=sort_descending,
        )
        page = PagedResponse[TaskResponse].build(
            [TaskResponse.from_task(t) for t in tasks], total, page_number, page_size
        )
        return ServiceResult.success(page)

    async def get_task(
        self, task_id: str, project_id: str, owner_id: str
    ) -> ServiceResult[TaskResponse]:
        task = await self._owned_task(task_id, owner_id, project_id)
        if task is None:
            return ServiceResult.not_found(TASK_NOT_FOUND)

        response = TaskResponse.from_task(task)
        return ServiceResult.success(response, etag=generate_token(response))

    async def create_task(
        self, project_id: str, owner_id: str, data: TaskCreate
    ) -> ServiceResult[TaskResponse]:
        if not await self.projects.exists(project_id, owner_id):
            return ServiceResult.not_found(PROJECT_NOT_FOUND)

        task = Task(
            project_id=project_id,
            title=data.title,
            description=data.description,
            priority=data.priority,
            assigned_to_id=data.assigned_to_id,
            created_by_id=owner_id,
            due_date=data.due_date,
            estimated_hours=data.estimated_hours,
            tags=list(data.tags),
        )
        apply_status(task, data.status)

        created = await self.tasks.create(task)
        logger.info(f"Task {created.id} created in project {project_id}")
        response = TaskResponse.from_task(created)
        return ServiceResult.success(response, etag=generate_token(response))

    async def _mutate(
        self,
        task_id: str,
        owner_id: str,
        apply: Callable[[Task], None],
        if_match: Optional[str],
        project_id: Optional[str] = None,
    ) -> ServiceResult[TaskResponse]:
        # Preconditions are always checked against the store, never the cache
        task = await self._owned_task(task_id, owner_id, project_id, fresh=True)
        if task is None:
            return ServiceResult.not_found(TASK_NOT_FOUND)

        if if_match is not None and not validate_token(TaskResponse.from_task(task), if_match):
            logger.info(f"Stale If-Match on task {task_id}")
            return ServiceResult.precondition_failed()

        apply(task)
        if not await self.tasks.update(task):
            return ServiceResult.not_found(TASK_NOT_FOUND)

        response = TaskResponse.from_task(task)
        return ServiceResult.success(response, etag=generate_token(response))

    async def update_task(
        self,
        task_id: str,
        project_id: str,
        owner_id: str,
        data: TaskUpdate,
        if_match: str,
    ) -> ServiceResult[TaskResponse]:
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        status = changes.pop("status", None)

        def apply(task: Task) -> None:
            for field, value in changes.items():
                setattr(task, field, value)
            if status is not None:
                apply_status(task, status)

        return await self._mutate(task_id, owner_id, apply, if_match, project_id)

    async def update_status(
        self,
        task_id: str,
        owner_id: str,
        status: TaskStatus,
        if_match: str,
        project_id: Optional[str] = None,
    ) -> ServiceResult[TaskResponse]:
        return await self._mutate(
            task_id, owner_id, lambda task: apply_status(task, status), if_match, project_id
        )

    async def assign_task(
        self, task_id: str, owner_id: str, user_id: str
    ) -> ServiceResult[TaskResponse]:
        def apply(task: Task) -> None:
            task.assigned_to_id = user_id

        return await self._mutate(task_id, owner_id, apply, if_match=None)

    async def delete_task(
        self, task_id: str, project_id: str, owner_id: str, if_match: str
    ) -> ServiceResult[None]:
        task = await self._owned_task(task_id, owner_id, project_id, fresh=True)
        if task is None:
            return ServiceResult.not_found(TASK_NOT_FOUND)

        if not validate_token(TaskResponse.from_task(task), if_match):
            return ServiceResult.precondition_failed()

        if not await self.tasks.delete(task_id, project_id):
            return ServiceResult.not_found(TASK_NOT_FOUND)

        logger.info(f"Task {task_id} deleted from project {project_id}")
        return ServiceResult.success()
