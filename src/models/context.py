"""Situation snapshot supplied by the application when asking for suggestions."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from src.models.task import Location, WeatherSnapshot


class UserContext(BaseModel):
    """The user's current situation at generation or refresh time."""

    user_id: str
    current_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    location: Optional[Location] = None
    recent_task_titles: list[str] = Field(default_factory=list)
    last_completed_at: Optional[datetime] = None
    completed_task_count: int = Field(default=0, ge=0)
    weather: Optional[WeatherSnapshot] = None
    calendar_event_types: list[str] = Field(default_factory=list)
    device: Optional[str] = None
