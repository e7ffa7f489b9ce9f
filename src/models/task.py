"""Completed task events read from the task-management collaborator."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

DEFAULT_CATEGORY = "Uncategorized"


class TaskPriority(str, Enum):
    """Priority assigned to a task or suggestion."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Location(BaseModel):
    """Where something happened. Any subset of fields may be known."""

    place_name: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class WeatherSnapshot(BaseModel):
    """Weather observed at completion or suggestion time."""

    condition: str
    temperature: Optional[float] = None  # Celsius


class TaskContext(BaseModel):
    """Situational context captured when a task was completed."""

    location: Optional[Location] = None
    weather: Optional[WeatherSnapshot] = None
    calendar_event_type: Optional[str] = None


class CompletedTaskEvent(BaseModel):
    """A task the user finished. Read-only input to the miners."""

    id: UUID
    title: str
    category: str = DEFAULT_CATEGORY
    completed_at: datetime
    priority: TaskPriority = TaskPriority.MEDIUM
    context: Optional[TaskContext] = None
