from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ListResponse(BaseModel, Generic[T]):
    items: list[T]
    count: int
    limit: int
    offset: int
    total: int


class ErrorResponse(BaseModel):
    """Body of every non-2xx response, see ``app.errors``."""

    code: str
    message: str
    details: Any | None = None
    request_id: str
