from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from taskboard.cache.layer import CacheLayer, get_cache
from taskboard.core.config import Settings, get_settings
from taskboard.core.security import get_current_user_id
from taskboard.database import get_session_factory
from taskboard.repositories.projects import ProjectRepository
from taskboard.repositories.tasks import TaskRepository
from taskboard.services.project_service import ProjectService
from taskboard.services.task_service import TaskService

CurrentUserId = Annotated[str, Depends(get_current_user_id)]


def get_project_repository(
    sessions: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    cache: CacheLayer = Depends(get_cache),
    settings: Settings = Depends(get_settings),
) -> ProjectRepository:
    return ProjectRepository(sessions, cache, settings)


def get_task_repository(
    sessions: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    cache: CacheLayer = Depends(get_cache),
    settings: Settings = Depends(get_settings),
) -> TaskRepository:
    return TaskRepository(sessions, cache, settings)


def get_project_service(
    projects: ProjectRepository = Depends(get_project_repository),
    tasks: TaskRepository = Depends(get_task_repository),
) -> ProjectService:
    return ProjectService(projects, tasks)


def get_task_service(
    projects: ProjectRepository = Depends(get_project_repository),
    tasks: TaskRepository = Depends(get_task_repository),
) -> TaskService:
    return TaskService(projects, tasks)
