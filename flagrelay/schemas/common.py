"""Common API response schemas."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Consistent JSON envelope for API responses."""

    success: bool = True
    data: T | None = None
    error: str | None = None


def error_response(message: str) -> dict[str, object]:
    """Return the serialized envelope for a failed request."""

    return ApiResponse(success=False, error=message).model_dump(exclude_none=True)
