"""Response models for the HTTP layer."""

from typing import Optional

from pydantic import BaseModel

from src.models.suggestion import RefreshCheck, Suggestion


class ErrorResponse(BaseModel):
    """Error response body.

    Three-part format: what happened + why + what to do
    """

    error: str  # What happened
    detail: str  # Why and what to do
    correlation_id: str


class SuggestionListResponse(BaseModel):
    items: list[Suggestion]
    total: int


class RefreshResponse(BaseModel):
    """Result of a refresh request; check is None when generation was forced."""

    check: Optional[RefreshCheck] = None
    items: list[Suggestion]
    total: int
