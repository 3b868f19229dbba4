from typing import Optional

from fastapi import Header, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from taskboard.errors import AppError
from taskboard.services.etag import is_not_modified
from taskboard.services.results import ResultStatus, ServiceResult


def require_if_match(if_match: Optional[str] = Header(default=None)) -> str:
    """Mutations must carry the ETag of the state the client last saw."""
    if not if_match or not if_match.strip():
        raise AppError(
            status.HTTP_428_PRECONDITION_REQUIRED,
            "precondition_required",
            "If-Match header is required for this operation. "
            "Please provide the current ETag.",
        )
    return if_match.strip()


def ensure_ok(result: ServiceResult) -> ServiceResult:
    """Map an unsuccessful service result onto the API error payload."""
    if result.ok:
        return result
    if result.status is ResultStatus.NOT_FOUND:
        raise AppError(status.HTTP_404_NOT_FOUND, "not_found", result.error)
    if result.status is ResultStatus.PRECONDITION_FAILED:
        raise AppError(
            status.HTTP_412_PRECONDITION_FAILED, "precondition_failed", result.error
        )
    if result.status is ResultStatus.VALIDATION_FAILED:
        raise AppError(
            status.HTTP_400_BAD_REQUEST,
            "validation_failed",
            result.error,
            {"errors": result.errors},
        )
    raise AppError(status.HTTP_500_INTERNAL_SERVER_ERROR, "operation_failed", result.error)


def json_response(
    payload: BaseModel,
    status_code: int = status.HTTP_200_OK,
    etag: Optional[str] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    headers = dict(headers or {})
    if etag:
        headers["ETag"] = etag
    return JSONResponse(
        status_code=status_code,
        content=payload.model_dump(mode="json", by_alias=True),
        headers=headers,
    )


def conditional_response(request: Request, result: ServiceResult) -> Response:
    """200 with ETag, or 304 with no body when If-None-Match already has it."""
    if request.method in ("GET", "HEAD") and is_not_modified(
        request.headers.get("if-none-match"), result.etag
    ):
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": result.etag})
    return json_response(result.data, etag=result.etag)
