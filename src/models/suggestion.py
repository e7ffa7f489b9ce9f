"""Suggestion models: transient candidates and persisted suggestions."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from src.models.task import TaskPriority

LEARNING_ADJUSTED = "learning_adjusted"
HYBRID = "hybrid"


class SuggestionStatus(str, Enum):
    """Lifecycle state. Everything except PENDING is terminal."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DISMISSED = "dismissed"


class SuggestionSource(BaseModel):
    """One contributor to a suggestion.

    ``kind`` is a pattern kind for mined contributors, or one of the markers
    ``hybrid`` / ``learning_adjusted``.
    """

    kind: str
    pattern_id: Optional[UUID] = None


class RankingScores(BaseModel):
    """Per-term ranking breakdown for a candidate."""

    relevance: float = 0.0
    timing: float = 0.0
    user_preference: float = 0.0
    context: float = 0.0
    pattern_strength: float = 0.0
    diversity: float = 0.0
    total: float = 0.0


class SuggestionCandidate(BaseModel):
    """A suggestion before ranking, diversity filtering and persistence."""

    title: str
    category: str
    priority: TaskPriority = TaskPriority.MEDIUM
    confidence: float = Field(ge=0, le=1)
    reasoning: list[str] = Field(default_factory=list)
    based_on: list[SuggestionSource] = Field(default_factory=list)
    estimated_minutes: Optional[int] = None
    optimal_time: Optional[datetime] = None
    expires_at: datetime
    context_relevance: float = 0.5
    pattern_strength: float = 0.0
    scores: RankingScores = Field(default_factory=RankingScores)

    @property
    def pattern_kinds(self) -> set[str]:
        return {s.kind for s in self.based_on if s.kind != LEARNING_ADJUSTED}

    @property
    def pattern_ids(self) -> list[UUID]:
        return [s.pattern_id for s in self.based_on if s.pattern_id is not None]


def _decode_json_list(v: Any) -> Any:
    if isinstance(v, (str, bytes)):
        return json.loads(v)
    return v


class Suggestion(BaseModel):
    """A persisted suggestion row."""

    id: UUID
    user_id: UUID
    title: str
    category: str
    priority: TaskPriority = TaskPriority.MEDIUM
    confidence: float = Field(ge=0, le=1)
    reasoning: list[str] = Field(default_factory=list)
    based_on: list[SuggestionSource] = Field(default_factory=list)
    estimated_minutes: Optional[int] = None
    optimal_time: Optional[datetime] = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    created_at: datetime
    expires_at: datetime

    @field_validator("reasoning", "based_on", mode="before")
    @classmethod
    def decode_json_columns(cls, v: Any) -> Any:
        """asyncpg hands JSONB columns back as text."""
        return _decode_json_list(v)

    @model_validator(mode="after")
    def expiry_after_creation(self) -> "Suggestion":
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        return self

    @property
    def pattern_kinds(self) -> set[str]:
        return {s.kind for s in self.based_on if s.kind != LEARNING_ADJUSTED}

    @property
    def pattern_ids(self) -> list[UUID]:
        return [s.pattern_id for s in self.based_on if s.pattern_id is not None]

    @property
    def is_learning_adjusted(self) -> bool:
        return any(s.kind == LEARNING_ADJUSTED for s in self.based_on)


class RefreshCheck(BaseModel):
    """Outcome of the context-change test."""

    needs_refresh: bool
    reason: str
    score: float = Field(ge=0, le=1)


class MinerSuggestion(BaseModel):
    """A next-task proposal produced directly by one miner."""

    title: str
    category: str
    confidence: float = Field(ge=0, le=1)
    reasoning: str
    pattern_id: UUID
    pattern_kind: str
    estimated_minutes: Optional[int] = None
    context_match: Optional[float] = None
    priority: TaskPriority = TaskPriority.MEDIUM
