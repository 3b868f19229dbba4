from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from taskboard.dependencies import CurrentUserId, get_project_service
from taskboard.routers.common import (
    conditional_response,
    ensure_ok,
    json_response,
    require_if_match,
)
from taskboard.schemas import (
    PagedResponse,
    ProjectAnalyticsResponse,
    ProjectCreate,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectUpdate,
)
from taskboard.services.project_service import ProjectService

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


@router.get("", response_model=PagedResponse[ProjectResponse])
async def list_projects(
    user_id: CurrentUserId,
    page_number: int = Query(default=1, alias="pageNumber"),
    page_size: int = Query(default=20, alias="pageSize"),
    search: Optional[str] = None,
    project_status: Optional[str] = Query(default=None, alias="status"),
    service: ProjectService = Depends(get_project_service),
):
    """List the caller's projects. Out-of-range paging is clamped, not rejected."""
    page = await service.list_projects(
        user_id, page_number, page_size, search=search, status=project_status
    )
    return json_response(page)


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    data: ProjectCreate,
    request: Request,
    user_id: CurrentUserId,
    service: ProjectService = Depends(get_project_service),
):
    result = ensure_ok(await service.create_project(user_id, data))
    location = request.url_for("get_project", project_id=result.data.id)
    return json_response(
        result.data,
        status_code=status.HTTP_201_CREATED,
        headers={"Location": str(location)},
    )


@router.get(
    "/{project_id}",
    response_model=ProjectDetailResponse,
    responses={304: {"description": "Not modified"}},
)
async def get_project(
    project_id: str,
    request: Request,
    user_id: CurrentUserId,
    service: ProjectService = Depends(get_project_service),
):
    """Get a project with its tasks. Carries an ETag; honours If-None-Match."""
    result = ensure_ok(await service.get_project(project_id, user_id))
    return conditional_response(request, result)


@router.put("/{project_id}", response_model=ProjectDetailResponse)
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    user_id: CurrentUserId,
    if_match: str = Depends(require_if_match),
    service: ProjectService = Depends(get_project_service),
):
    result = ensure_ok(await service.update_project(project_id, user_id, data, if_match))
    return json_response(result.data, etag=result.etag)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    user_id: CurrentUserId,
    if_match: str = Depends(require_if_match),
    service: ProjectService = Depends(get_project_service),
):
    ensure_ok(await service.delete_project(project_id, user_id, if_match))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{project_id}/analytics", response_model=ProjectAnalyticsResponse)
async def get_project_analytics(
    project_id: str,
    user_id: CurrentUserId,
    service: ProjectService = Depends(get_project_service),
):
    result = ensure_ok(await service.get_analytics(project_id, user_id))
    return json_response(result.data)
