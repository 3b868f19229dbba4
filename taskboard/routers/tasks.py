from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from taskboard.dependencies import CurrentUserId, get_task_service
from taskboard.models import TaskStatus
from taskboard.routers.common import (
    conditional_response,
    ensure_ok,
    json_response,
    require_if_match,
)
from taskboard.schemas import (
    PagedResponse,
    TaskAssign,
    TaskCreate,
    TaskResponse,
    TaskStatusUpdate,
    TaskUpdate,
)
from taskboard.services.task_service import TaskService

router = APIRouter(prefix="/api/v1/projects/{project_id}/tasks", tags=["tasks"])

# Routes keyed by task id alone; ownership is resolved through the task's project
task_router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


@router.get("", response_model=PagedResponse[TaskResponse])
async def list_tasks(
    project_id: str,
    user_id: CurrentUserId,
    page_number: int = Query(default=1, alias="pageNumber"),
    page_size: int = Query(default=20, alias="pageSize"),
    task_status: Optional[TaskStatus] = Query(default=None, alias="status"),
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    sort_descending: bool = Query(default=False, alias="sortDescending"),
    service: TaskService = Depends(get_task_service),
):
    """List a project's tasks. sortBy: priority, dueDate, status (default: creation time)."""
    result = ensure_ok(
        await service.list_tasks(
            project_id,
            user_id,
            page_number,
            page_size,
            status=task_status,
            sort_by=sort_by,
            sort_descending=sort_descending,
        )
    )
    return json_response(result.data)


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    project_id: str,
    data: TaskCreate,
    user_id: CurrentUserId,
    service: TaskService = Depends(get_task_service),
):
    result = ensure_ok(await service.create_task(project_id, user_id, data))
    return json_response(result.data, status_code=status.HTTP_201_CREATED, etag=result.etag)


@router.get(
    "/{task_id}",
    response_model=TaskResponse,
    responses={304: {"description": "Not modified"}},
)
async def get_task(
    project_id: str,
    task_id: str,
    request: Request,
    user_id: CurrentUserId,
    service: TaskService = Depends(get_task_service),
):
    result = ensure_ok(await service.get_task(task_id, project_id, user_id))
    return conditional_response(request, result)


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    project_id: str,
    task_id: str,
    data: TaskUpdate,
    user_id: CurrentUserId,
    if_match: str = Depends(require_if_match),
    service: TaskService = Depends(get_task_service),
):
    result = ensure_ok(
        await service.update_task(task_id, project_id, user_id, data, if_match)
    )
    return json_response(result.data, etag=result.etag)


@router.patch("/{task_id}/complete", response_model=TaskResponse)
async def complete_task(
    project_id: str,
    task_id: str,
    user_id: CurrentUserId,
    if_match: str = Depends(require_if_match),
    service: TaskService = Depends(get_task_service),
):
    """Mark a task as done"""
    result = ensure_ok(
        await service.update_status(
            task_id, user_id, TaskStatus.DONE, if_match, project_id=project_id
        )
    )
    return json_response(result.data, etag=result.etag)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    project_id: str,
    task_id: str,
    user_id: CurrentUserId,
    if_match: str = Depends(require_if_match),
    service: TaskService = Depends(get_task_service),
):
    ensure_ok(await service.delete_task(task_id, project_id, user_id, if_match))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@task_router.patch("/{task_id}/status", response_model=TaskResponse)
async def update_task_status(
    task_id: str,
    data: TaskStatusUpdate,
    user_id: CurrentUserId,
    if_match: str = Depends(require_if_match),
    service: TaskService = Depends(get_task_service),
):
    result = ensure_ok(await service.update_status(task_id, user_id, data.status, if_match))
    return json_response(result.data, etag=result.etag)


@task_router.post("/{task_id}/assign", response_model=TaskResponse)
async def assign_task(
    task_id: str,
    data: TaskAssign,
    user_id: CurrentUserId,
    service: TaskService = Depends(get_task_service),
):
    result = ensure_ok(await service.assign_task(task_id, user_id, data.user_id))
    return json_response(result.data, etag=result.etag)
