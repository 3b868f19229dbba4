from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class ResultStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    PRECONDITION_FAILED = "precondition_failed"
    VALIDATION_FAILED = "validation_failed"
    FAILED = "failed"


@dataclass
class ServiceResult(Generic[T]):
    """Outcome of a service operation; expected failures are values, not exceptions."""

    status: ResultStatus
    data: Optional[T] = None
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    etag: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.OK

    @classmethod
    def success(cls, data: T = None, etag: Optional[str] = None) -> "ServiceResult[T]":
        return cls(ResultStatus.OK, data=data, etag=etag)

    @classmethod
    def not_found(cls, error: str) -> "ServiceResult[T]":
        return cls(ResultStatus.NOT_FOUND, error=error)

    @classmethod
    def precondition_failed(cls) -> "ServiceResult[T]":
        return cls(
            ResultStatus.PRECONDITION_FAILED,
            error="The resource has changed since it was retrieved",
        )

    @classmethod
    def validation_failed(cls, errors: List[str]) -> "ServiceResult[T]":
        return cls(ResultStatus.VALIDATION_FAILED, error="Validation failed", errors=errors)

    @classmethod
    def failure(cls, error: str) -> "ServiceResult[T]":
        return cls(ResultStatus.FAILED, error=error)
