import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from taskboard.models import Project, TaskStatus
from taskboard.repositories.paging import clamp_page
from taskboard.repositories.projects import ProjectRepository
from taskboard.repositories.tasks import TaskRepository
from taskboard.schemas import (
    PagedResponse,
    ProjectAnalyticsResponse,
    ProjectCreate,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectUpdate,
    check_date_range,
)
from taskboard.services.etag import generate_token, validate_token
from taskboard.services.results import ServiceResult

logger = logging.getLogger(__name__)

PROJECT_NOT_FOUND = "Project not found"


class ProjectService:
    def __init__(self, projects: ProjectRepository, tasks: TaskRepository):
        self.projects = projects
        self.tasks = tasks

    async def list_projects(
        self,
        owner_id: str,
        page_number: int,
        page_size: int,
        search: Optional[str] = None,
        status: Optional[str] = None,
    ) -> PagedResponse[ProjectResponse]:
        page_number, page_size = clamp_page(page_number, page_size)
        projects, total = await self.projects.list(
            owner_id, page_number, page_size, search=search, status=status
        )
        counts = await self.tasks.count_by_projects(p.id for p in projects)
        items = [ProjectResponse.from_project(p, counts.get(p.id, 0)) for p in projects]
        return PagedResponse[ProjectResponse].build(items, total, page_number, page_size)

    async def create_project(
        self, owner_id: str, data: ProjectCreate
    ) -> ServiceResult[ProjectResponse]:
        project = Project(
            owner_id=owner_id,
            name=data.name,
            description=data.description,
            status=data.status,
            start_date=data.start_date,
            end_date=data.end_date,
            tags=list(data.tags),
            member_ids=[owner_id],
        )
        created = await self.projects.create(project)
        logger.info(f"Project {created.id} created by {owner_id}")
        return ServiceResult.success(ProjectResponse.from_project(created, 0))

    async def _load(self, project_id: str, owner_id: str, fresh: bool):
        # Project and task list are independent reads
        project, tasks = await asyncio.gather(
            self.projects.get_by_id(project_id, owner_id, fresh=fresh),
            self.tasks.get_all_by_project(project_id),
        )
        if project is None:
            return None, None
        return project, tasks

    async def get_project(
        self, project_id: str, owner_id: str
    ) -> ServiceResult[ProjectDetailResponse]:
        project, tasks = await self._load(project_id, owner_id, fresh=False)
        if project is None:
            return ServiceResult.not_found(PROJECT_NOT_FOUND)

        detail = ProjectDetailResponse.from_project_and_tasks(project, tasks)
        return ServiceResult.success(detail, etag=generate_token(detail))

    async def update_project(
        self, project_id: str, owner_id: str, data: ProjectUpdate, if_match: str
    ) -> ServiceResult[ProjectDetailResponse]:
        # Preconditions are always checked against the store, never the cache
        project, tasks = await self._load(project_id, owner_id, fresh=True)
        if project is None:
            return ServiceResult.not_found(PROJECT_NOT_FOUND)

        current = ProjectDetailResponse.from_project_and_tasks(project, tasks)
        if not validate_token(current, if_match):
            logger.info(f"Stale If-Match on project {project_id}")
            return ServiceResult.precondition_failed()

        for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(project, field, value)

        errors = check_date_range(project.start_date, project.end_date)
        if errors:
            return ServiceResult.validation_failed(errors)

        if not await self.projects.update(project):
            return ServiceResult.not_found(PROJECT_NOT_FOUND)

        detail = ProjectDetailResponse.from_project_and_tasks(project, tasks)
        return ServiceResult.success(detail, etag=generate_token(detail))

    async def delete_project(
        self, project_id: str, owner_id: str, if_match: str
    ) -> ServiceResult[None]:
        project, tasks = await self._load(project_id, owner_id, fresh=True)
        if project is None:
            return ServiceResult.not_found(PROJECT_NOT_FOUND)

        current = ProjectDetailResponse.from_project_and_tasks(project, tasks)
        if not validate_token(current, if_match):
            return ServiceResult.precondition_failed()

        if not await self.projects.delete(project_id, owner_id):
            return ServiceResult.not_found(PROJECT_NOT_FOUND)

        logger.info(f"Project {project_id} deleted by {owner_id}")
        return ServiceResult.success()

    async def get_analytics(
        self, project_id: str, owner_id: str
    ) -> ServiceResult[ProjectAnalyticsResponse]:
        project = await self.projects.get_by_id(project_id, owner_id)
        if project is None:
            logger.warning(f"Analytics requested for unknown project {project_id} by {owner_id}")
            return ServiceResult.not_found(PROJECT_NOT_FOUND)

        counts = [
            asyncio.ensure_future(self.tasks.count_by_status(project_id)),
            asyncio.ensure_future(self.tasks.count_by_priority(project_id)),
        ]
        try:
            by_status, by_priority = await asyncio.gather(*counts)
        except SQLAlchemyError:
            logger.exception(f"Failed to aggregate analytics for project {project_id}")
            # Do not leave the other query running
            for count in counts:
                count.cancel()
            await asyncio.gather(*counts, return_exceptions=True)
            return ServiceResult.failure("Failed to retrieve project analytics")

        analytics = build_analytics(project_id, by_status, by_priority)
        logger.info(f"Analytics for project {project_id}: {analytics.total_tasks} tasks")
        return ServiceResult.success(analytics)


def build_analytics(
    project_id: str, by_status: dict[str, int], by_priority: dict[str, int]
) -> ProjectAnalyticsResponse:
    total = sum(by_status.values())
    completed = by_status.get(TaskStatus.DONE.value, 0)
    return ProjectAnalyticsResponse(
        project_id=project_id,
        total_tasks=total,
        completed_tasks=completed,
        in_progress_tasks=by_status.get(TaskStatus.IN_PROGRESS.value, 0),
        todo_tasks=by_status.get(TaskStatus.TODO.value, 0),
        blocked_tasks=by_status.get(TaskStatus.BLOCKED.value, 0),
        completion_percentage=(completed / total * 100) if total > 0 else 0.0,
        tasks_by_status=by_status,
        tasks_by_priority=by_priority,
    )
