"""
Project repository - cache-aside access to the projects collection.

Every query is scoped by owner and excludes soft-deleted rows. Writes are a
single filtered statement; zero matched rows means the project is missing,
not owned or already deleted, and is reported as False.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from taskboard.cache.decorators import cache_aside
from taskboard.cache.layer import CacheLayer
from taskboard.core.config import Settings
from taskboard.models import Project, ProjectStatus, get_utc_now, new_id
from taskboard.repositories.paging import clamp_page

logger = logging.getLogger(__name__)

# Columns rewritten by a filtered replace; id, owner and creation data never change
MUTABLE_FIELDS = (
    "name",
    "description",
    "status",
    "start_date",
    "end_date",
    "member_ids",
    "tags",
    "updated_at",
)


def project_key(project_id: str) -> str:
    return f"project:{project_id}"


def owner_prefix(owner_id: str) -> str:
    return f"projects:{owner_id}"


def _live(project_id: str, owner_id: str):
    return (
        Project.id == project_id,
        Project.owner_id == owner_id,
        Project.is_deleted == False,  # noqa: E712
    )


class ProjectRepository:
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
        lambda project_id, owner_id: project_key(project_id),
        Project,
        ttl=lambda repo: repo.settings.project_cache_ttl_seconds,
        scope=lambda project, project_id, owner_id: project.owner_id == owner_id
        and not project.is_deleted,
    )
    async def get_by_id(self, project_id: str, owner_id: str) -> Optional[Project]:
        async with self.sessions() as session:
            result = await session.exec(select(Project).where(*_live(project_id, owner_id)))
            return result.first()

    async def list(
        self,
        owner_id: str,
        page: int,
        page_size: int,
        search: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Tuple[List[Project], int]:
        """List an owner's live projects, most recently updated first."""
        page, page_size = clamp_page(page, page_size)

        conditions = [Project.owner_id == owner_id, Project.is_deleted == False]  # noqa: E712
        if search and search.strip():
            term = f"%{search.strip()}%"
            conditions.append(
                or_(Project.name.ilike(term), Project.description.ilike(term))
            )
        if status:
            parsed = _parse_status(status)
            if parsed is not None:
                conditions.append(Project.status == parsed)

        async with self.sessions() as session:
            total = (
                await session.exec(
                    select(func.count()).select_from(Project).where(*conditions)
                )
            ).one()
            result = await session.exec(
                select(Project)
                .where(*conditions)
                .order_by(Project.updated_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return list(result.all()), total

    async def create(self, project: Project) -> Project:
        now = get_utc_now()
        project.id = new_id()
        project.created_at = now
        project.updated_at = now
        project.is_deleted = False
        project.deleted_at = None

        async with self.sessions() as session:
            session.add(project)
            await session.commit()

        await self.cache.set(
            project_key(project.id),
            project.model_dump(mode="json"),
            ttl=self.settings.project_cache_ttl_seconds,
        )
        await self._invalidate_list(project.owner_id)
        return project

    async def update(self, project: Project) -> bool:
        project.updated_at = get_utc_now()
        values = {field: getattr(project, field) for field in MUTABLE_FIELDS}

        async with self.sessions() as session:
            result = await session.exec(
                update(Project)
                .where(*_live(project.id, project.owner_id))
                .values(**values)
            )
            await session.commit()

        if result.rowcount == 0:
            logger.info(f"Project update matched nothing: {project.id}")
            return False

        await self._invalidate(project.id, project.owner_id)
        return True

    async def delete(self, project_id: str, owner_id: str) -> bool:
        now = get_utc_now()
        async with self.sessions() as session:
            result = await session.exec(
                update(Project)
                .where(*_live(project_id, owner_id))
                .values(is_deleted=True, deleted_at=now, updated_at=now)
            )
            await session.commit()

        if result.rowcount == 0:
            return False

        await self._invalidate(project_id, owner_id)
        return True

    async def exists(self, project_id: str, owner_id: str) -> bool:
        async with self.sessions() as session:
            count = (
                await session.exec(
                    select(func.count())
                    .select_from(Project)
                    .where(*_live(project_id, owner_id))
                )
            ).one()
        return count > 0

    async def _invalidate(self, project_id: str, owner_id: str) -> None:
        if not await self.cache.delete(project_key(project_id)):
            logger.warning(f"Cache invalidation failed for project {project_id}")
        await self._invalidate_list(owner_id)

    async def _invalidate_list(self, owner_id: str) -> None:
        if not await self.cache.delete_prefix(owner_prefix(owner_id)):
            logger.warning(f"Cache list invalidation failed for owner {owner_id}")


def _parse_status(value: str) -> Optional[ProjectStatus]:
    for status in ProjectStatus:
        if status.value.lower() == value.lower() or status.name.lower() == value.lower():
            return status
    return None
