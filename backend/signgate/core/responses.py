"""Response envelope models.

Success responses use ``{"data": ...}``. Rejections use the flat
``{"error": ..., "message": ...}`` shape that signing-link clients already
parse, with ``message`` omitted when there is nothing safe to add.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

from signgate.core.errors import APIError

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.get("/sign/{token}")
        async def resolve(token: str) -> DataResponse[SigningLinkView]:
            return DataResponse(data=view)
    """

    data: T


class ErrorResponse(BaseModel):
    """Standard error response body.

    Attributes:
        error: Short title (e.g., "Rate limit exceeded").
        message: Optional human-readable detail, safe to show callers.
    """

    error: str
    message: str | None = None

    @classmethod
    def from_api_error(cls, exc: APIError) -> "ErrorResponse":
        """Build the rendered body for an APIError.

        Args:
            exc: The error to render.

        Returns:
            ErrorResponse with the error's title and message.
        """
        message = exc.message if exc.message != exc.error else None
        return cls(error=exc.error, message=message)

    def to_content(self) -> dict:
        """Serialize for JSONResponse, dropping an absent message."""
        return self.model_dump(exclude_none=True)
