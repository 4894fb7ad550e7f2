"""Shared response shapes: pagination, envelopes, errors and import summaries."""

from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class Pagination(BaseModel):
    """Page metadata; total_pages is serialized as totalPages."""
    page: int
    limit: int
    total: int
    total_pages: int = Field(..., serialization_alias="totalPages")


class Paginated(BaseModel, Generic[T]):
    data: List[T]
    pagination: Pagination


class Envelope(BaseModel, Generic[T]):
    """Wrapped single-entity response."""
    success: bool = True
    data: T


class ErrorBody(BaseModel):
    kind: str
    message: str
    retryable: bool = False
    context: Dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody


class ImportRowError(BaseModel):
    row: int
    field: Optional[str] = None
    reason: str


class ImportResponse(BaseModel):
    """Outcome of a bulk import; errors are keyed by 1-based row number."""
    message: str
    created: int
    updated: int
    errors: List[ImportRowError]
    imported: List[Any]

    @classmethod
    def from_summary(cls, summary, serialize: Callable[[Any], BaseModel]) -> "ImportResponse":
        return cls(
            message=summary.message,
            created=summary.created,
            updated=summary.updated,
            errors=[error.to_dict() for error in summary.errors],
            imported=[serialize(entity).model_dump(mode="json", by_alias=True) for entity in summary.imported],
        )


class MessageResponse(BaseModel):
    success: bool = True
    message: str
