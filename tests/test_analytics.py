import asyncio

from conftest import OTHER_USER_ID, OWNER_ID
from sqlalchemy.exc import OperationalError

from taskboard.models import TaskPriority, TaskStatus
from taskboard.schemas import ProjectCreate, TaskCreate
from taskboard.services.project_service import build_analytics
from taskboard.services.results import ResultStatus


def test_build_analytics_percentages():
    analytics = build_analytics(
        "p1", {"Todo": 2, "InProgress": 1, "Done": 1}, {"Medium": 3, "High": 1}
    )
    assert analytics.total_tasks == 4
    assert analytics.completed_tasks == 1
    assert analytics.in_progress_tasks == 1
    assert analytics.todo_tasks == 2
    assert analytics.blocked_tasks == 0
    assert analytics.completion_percentage == 25.0


def test_build_analytics_empty_project():
    analytics = build_analytics("p1", {}, {})
    assert analytics.total_tasks == 0
    assert analytics.completion_percentage == 0.0


async def test_project_analytics(project_service, task_service):
    created = await project_service.create_project(OWNER_ID, ProjectCreate(name="Launch"))
    project_id = created.data.id
    for status, priority in [
        (TaskStatus.TODO, TaskPriority.LOW),
        (TaskStatus.TODO, TaskPriority.HIGH),
        (TaskStatus.IN_PROGRESS, TaskPriority.HIGH),
        (TaskStatus.DONE, TaskPriority.CRITICAL),
    ]:
        await task_service.create_task(
            project_id, OWNER_ID, TaskCreate(title="Work", status=status, priority=priority)
        )

    result = await project_service.get_analytics(project_id, OWNER_ID)

    assert result.ok
    assert result.data.total_tasks == 4
    assert result.data.completion_percentage == 25.0
    assert result.data.tasks_by_status == {"Todo": 2, "InProgress": 1, "Done": 1}
    assert result.data.tasks_by_priority == {"Low": 1, "High": 2, "Critical": 1}


async def test_analytics_for_foreign_project_is_not_found(project_service):
    created = await project_service.create_project(OWNER_ID, ProjectCreate(name="Launch"))

    result = await project_service.get_analytics(created.data.id, OTHER_USER_ID)

    assert result.status is ResultStatus.NOT_FOUND


async def test_analytics_store_failure(project_service, monkeypatch):
    created = await project_service.create_project(OWNER_ID, ProjectCreate(name="Launch"))

    async def broken(project_id):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(project_service.tasks, "count_by_status", broken)

    result = await project_service.get_analytics(created.data.id, OWNER_ID)

    assert result.status is ResultStatus.FAILED
    assert result.error == "Failed to retrieve project analytics"


async def test_analytics_failure_cancels_sibling_query(project_service, monkeypatch):
    created = await project_service.create_project(OWNER_ID, ProjectCreate(name="Launch"))
    cancelled = []

    async def broken(project_id):
        await asyncio.sleep(0)
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    async def slow(project_id):
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.append(project_id)
            raise
        return {}

    monkeypatch.setattr(project_service.tasks, "count_by_status", broken)
    monkeypatch.setattr(project_service.tasks, "count_by_priority", slow)

    result = await asyncio.wait_for(
        project_service.get_analytics(created.data.id, OWNER_ID), timeout=5
    )

    assert result.status is ResultStatus.FAILED
    assert cancelled == [created.data.id]
