"""Request bodies for the suggestion and feedback endpoints."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from src.models.context import UserContext
from src.models.feedback import FeedbackContext, FeedbackType
from src.models.task import Location, WeatherSnapshot


class ContextRequest(BaseModel):
    """The caller's current situation; the user comes from the path.

    Attributes:
        current_time: Defaults to now (UTC)
        location: Optional place or coordinates
        recent_task_titles: Most recent completions, oldest first
        completed_task_count: Running completion count used by refresh checks
    """

    current_time: Optional[datetime] = None
    location: Optional[Location] = None
    recent_task_titles: list[str] = Field(default_factory=list, max_length=50)
    last_completed_at: Optional[datetime] = None
    completed_task_count: int = Field(default=0, ge=0)
    weather: Optional[WeatherSnapshot] = None
    calendar_event_types: list[str] = Field(default_factory=list)
    device: Optional[str] = Field(default=None, max_length=100)

    @field_validator("recent_task_titles")
    @classmethod
    def strip_titles(cls, v: list[str]) -> list[str]:
        """Drop blank titles."""
        return [t.strip() for t in v if t and t.strip()]

    def to_context(self, user_id: str) -> UserContext:
        return UserContext(
            user_id=user_id,
            current_time=self.current_time or datetime.now(timezone.utc),
            location=self.location,
            recent_task_titles=self.recent_task_titles,
            last_completed_at=self.last_completed_at,
            completed_task_count=self.completed_task_count,
            weather=self.weather,
            calendar_event_types=self.calendar_event_types,
            device=self.device,
        )


class FeedbackRequest(BaseModel):
    """User reaction to one suggestion."""

    feedback_type: FeedbackType
    reason: Optional[str] = Field(default=None, max_length=1000)
    context: Optional[FeedbackContext] = None
