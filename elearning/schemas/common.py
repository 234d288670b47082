"""Shared response schemas: envelope, pagination, user and course summaries."""

from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict


DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    """Uniform response envelope."""
    success: bool = True
    message: str
    data: Optional[DataT] = None
    errors: Optional[List[Any]] = None


class Pagination(BaseModel):
    current: int
    pages: int
    total: int
    has_next: bool
    has_prev: bool


class UserSummary(BaseModel):
    """Public view of a user as shown next to chat content."""
    id: int
    name: str
    email: Optional[str] = None
    role: str
    avatar_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CourseSummary(BaseModel):
    id: int
    name: str
    instructor: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
