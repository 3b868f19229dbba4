"""
Task repository - cache-aside access to the tasks collection.

Tasks are scoped by project; callers verify project ownership first.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, func, update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskboard.cache.decorators import cache_aside
from taskboard.cache.layer import CacheLayer
from taskboard.core.config import Settings
from taskboard.models import Task, TaskPriority, TaskStatus, get_utc_now, new_id
from taskboard.repositories.paging import clamp_page
from taskboard.repositories.projects import project_key

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "assigned_to_id",
    "due_date",
    "completed_at",
    "estimated_hours",
    "tags",
    "updated_at",
)


def task_key(task_id: str) -> str:
    return f"task:{task_id}"


def project_tasks_prefix(project_id: str) -> str:
    return f"tasks:{project_id}"


def _rank(column, enum_cls):
    """Order enum columns by declaration order instead of alphabetically."""
    return case({member: rank for rank, member in enumerate(enum_cls)}, value=column)


SORT_COLUMNS = {
    "priority": lambda: _rank(Task.priority, TaskPriority),
    "duedate": lambda: Task.due_date,
    "status": lambda: _rank(Task.status, TaskStatus),
}


def _in_project(project_id: str):
    return (Task.project_id == project_id, Task.is_deleted == False)  # noqa: E712


class TaskRepository:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        cache: CacheLayer,
        settings: Settings,
    ):
        self.sessions = sessions
        self.cache = cache
        self.settings = settings

    @cache_aside(
        lambda task_id, project_id=None: task_key(task_id),
        Task,
        ttl=lambda repo: repo.settings.task_cache_ttl_seconds,
        scope=lambda task, task_id, project_id=None: not task.is_deleted
        and (project_id is None or task.project_id == project_id),
    )
    async def get_by_id(self, task_id: str, project_id: Optional[str] = None) -> Optional[Task]:
        """Fetch a live task, optionally constrained to a project."""
        query = select(Task).where(Task.id == task_id, Task.is_deleted == False)  # noqa: E712
        if project_id is not None:
            query = query.where(Task.project_id == project_id)
        async with self.sessions() as session:
            return (await session.exec(query)).first()

    async def list_by_project(
        self,
        project_id: str,
        page: int,
        page_size: int,
        status: Optional[TaskStatus] = None,
        sort_by: Optional[str] = None,
        sort_descending: bool = False,
    ) -> Tuple[List[Task], int]:
        page, page_size = clamp_page(page, page_size)

        conditions = list(_in_project(project_id))
        if status is not None:
            conditions.append(Task.status == status)

        sort_column = SORT_COLUMNS.get((sort_by or "").lower(), lambda: Task.created_at)()
        order = sort_column.desc() if sort_descending else sort_column.asc()

        async with self.sessions() as session:
            total = (
                await session.exec(select(func.count()).select_from(Task).where(*conditions))
            ).one()
            result = await session.exec(
                select(Task)
                .where(*conditions)
                .order_by(order, Task.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return list(result.all()), total

    async def get_all_by_project(self, project_id: str) -> List[Task]:
        async with self.sessions() as session:
            result = await session.exec(
                select(Task)
                .where(*_in_project(project_id))
                .order_by(Task.created_at.desc(), Task.id)
            )
            return list(result.all())

    async def count_by_status(self, project_id: str) -> Dict[str, int]:
        async with self.sessions() as session:
            statuses = (
                await session.exec(select(Task.status).where(*_in_project(project_id)))
            ).all()
        return dict(Counter(TaskStatus(s).value for s in statuses))

    async def count_by_priority(self, project_id: str) -> Dict[str, int]:
        async with self.sessions() as session:
            priorities = (
                await session.exec(select(Task.priority).where(*_in_project(project_id)))
            ).all()
        return dict(Counter(TaskPriority(p).value for p in priorities))

    async def count_by_projects(self, project_ids: Iterable[str]) -> Dict[str, int]:
        project_ids = list(project_ids)
        if not project_ids:
            return {}
        async with self.sessions() as session:
            rows = (
                await session.exec(
                    select(Task.project_id, func.count())
                    .where(Task.project_id.in_(project_ids), Task.is_deleted == False)  # noqa: E712
                    .group_by(Task.project_id)
                )
            ).all()
        return {project_id: count for project_id, count in rows}

    async def create(self, task: Task) -> Task:
        now = get_utc_now()
        task.id = new_id()
        task.created_at = now
        task.updated_at = now
        task.is_deleted = False
        task.deleted_at = None

        async with self.sessions() as session:
            session.add(task)
            await session.commit()

        await self.cache.set(
            task_key(task.id),
            task.model_dump(mode="json"),
            ttl=self.settings.task_cache_ttl_seconds,
        )
        await self._invalidate_project(task.project_id)
        return task

    async def update(self, task: Task) -> bool:
        task.updated_at = get_utc_now()
        values = {field: getattr(task, field) for field in MUTABLE_FIELDS}

        async with self.sessions() as session:
            result = await session.exec(
                update(Task)
                .where(Task.id == task.id, *_in_project(task.project_id))
                .values(**values)
            )
            await session.commit()

        if result.rowcount == 0:
            logger.info(f"Task update matched nothing: {task.id}")
            return False

        await self._invalidate(task.id, task.project_id)
        return True

    async def delete(self, task_id: str, project_id: str) -> bool:
        now = get_utc_now()
        async with self.sessions() as session:
            result = await session.exec(
                update(Task)
                .where(Task.id == task_id, *_in_project(project_id))
                .values(is_deleted=True, deleted_at=now, updated_at=now)
            )
            await session.commit()

        if result.rowcount == 0:
            return False

        await self._invalidate(task_id, project_id)
        return True

    async def _invalidate(self, task_id: str, project_id: str) -> None:
        if not await self.cache.delete(task_key(task_id)):
            logger.warning(f"Cache invalidation failed for task {task_id}")
        await self._invalidate_project(project_id)

    async def _invalidate_project(self, project_id: str) -> None:
        ok = await self.cache.delete_prefix(project_tasks_prefix(project_id))
        ok = await self.cache.delete(project_key(project_id)) and ok
        if not ok:
            logger.warning(f"Cache invalidation failed for project {project_id} tasks")
