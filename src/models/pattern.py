"""Pattern models: the generic pattern record and its kind-specific payloads.

Payloads are a closed union discriminated by ``kind``. Every payload carries a
``schema_version``; rows written by older versions are upgraded through the
migrations registered in ``PAYLOAD_MIGRATIONS`` before validation.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

CURRENT_SCHEMA_VERSION = 1


class MalformedPayloadError(Exception):
    """Raised when a stored pattern payload cannot be parsed."""

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"malformed {kind} payload: {reason}")


class PatternKind(str, Enum):
    """Families of mined patterns."""

    TEMPORAL = "temporal"
    SEQUENTIAL = "sequential"
    CONTEXTUAL = "contextual"
    FREQUENCY = "frequency"


class PeriodType(str, Enum):
    """Recurrence period of a temporal pattern."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ContextKind(str, Enum):
    """Which situational signal a contextual pattern correlates with."""

    LOCATION = "location"
    TIME = "time"
    WEATHER = "weather"
    CALENDAR = "calendar"


class TimeSlot(str, Enum):
    """Coarse part of the day. Declaration order is the circular order."""

    NIGHT = "night"
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class TemperatureRange(str, Enum):
    FREEZING = "freezing"
    COLD = "cold"
    COOL = "cool"
    WARM = "warm"
    HOT = "hot"


class LocationAnchor(BaseModel):
    """Location a contextual pattern is anchored to."""

    key: str
    place_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None


class TemporalPayload(BaseModel):
    kind: Literal["temporal"] = "temporal"
    schema_version: int = CURRENT_SCHEMA_VERSION
    task_title: str
    category: str
    period_type: PeriodType
    time_of_day: int = Field(ge=0, le=23)
    day_of_week: int = Field(ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    completion_times: list[datetime] = Field(default_factory=list)


class SequentialPayload(BaseModel):
    kind: Literal["sequential"] = "sequential"
    schema_version: int = CURRENT_SCHEMA_VERSION
    sequence: list[str] = Field(min_length=2)
    support: float = Field(ge=0, le=1)
    avg_gap_minutes: float = Field(ge=0)
    category: str
    occurrences: int = Field(default=0, ge=0)


class ContextualPayload(BaseModel):
    kind: Literal["contextual"] = "contextual"
    schema_version: int = CURRENT_SCHEMA_VERSION
    context_kind: ContextKind
    category: str
    task_titles: list[str] = Field(default_factory=list)
    location: Optional[LocationAnchor] = None
    time_slot: Optional[TimeSlot] = None
    weather_condition: Optional[str] = None
    temperature_range: Optional[TemperatureRange] = None
    calendar_event_type: Optional[str] = None
    hour_range: Optional[tuple[int, int]] = None
    completion_times: list[datetime] = Field(default_factory=list)


class FrequencyPayload(BaseModel):
    kind: Literal["frequency"] = "frequency"
    schema_version: int = CURRENT_SCHEMA_VERSION
    task_title: str
    category: str
    interval_days: float = Field(gt=0)
    regularity: float = Field(ge=0, le=1)
    completion_times: list[datetime] = Field(default_factory=list)


PatternPayload = Annotated[
    Union[TemporalPayload, SequentialPayload, ContextualPayload, FrequencyPayload],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(PatternPayload)

# (kind, from_version) -> function upgrading a raw dict to from_version + 1
PAYLOAD_MIGRATIONS: dict[tuple[str, int], Callable[[dict], dict]] = {}


def payload_migration(kind: PatternKind, from_version: int):
    """Register a raw-dict upgrade step for one payload kind."""

    def register(func: Callable[[dict], dict]) -> Callable[[dict], dict]:
        PAYLOAD_MIGRATIONS[(kind.value, from_version)] = func
        return func

    return register


def _rename(data: dict, renames: dict[str, str]) -> dict:
    upgraded = dict(data)
    for old, new in renames.items():
        if old in upgraded and new not in upgraded:
            upgraded[new] = upgraded.pop(old)
    return upgraded


@payload_migration(PatternKind.TEMPORAL, 0)
def _temporal_v0(data: dict) -> dict:
    return _rename(data, {"taskTitle": "task_title", "periodType": "period_type"})


@payload_migration(PatternKind.SEQUENTIAL, 0)
def _sequential_v0(data: dict) -> dict:
    upgraded = _rename(data, {"avgGapTime": "avg_gap_minutes", "avgTimeBetween": "avg_gap_minutes"})
    upgraded.setdefault("occurrences", 0)
    return upgraded


@payload_migration(PatternKind.CONTEXTUAL, 0)
def _contextual_v0(data: dict) -> dict:
    upgraded = _rename(
        data,
        {"contextType": "context_kind", "timeSlot": "time_slot", "taskTitles": "task_titles"},
    )
    return upgraded


@payload_migration(PatternKind.FREQUENCY, 0)
def _frequency_v0(data: dict) -> dict:
    return _rename(
        data,
        {"intervalDays": "interval_days", "regularityScore": "regularity", "taskTitle": "task_title"},
    )


def parse_payload(kind: PatternKind | str, raw: Any) -> PatternPayload:
    """Parse a stored payload (JSON text or dict) into its typed variant.

    Raises:
        MalformedPayloadError: If the data is not valid JSON, belongs to another
            kind, has an unknown future version, or fails validation
    """
    kind_value = kind.value if isinstance(kind, PatternKind) else str(kind)

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedPayloadError(kind_value, f"invalid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise MalformedPayloadError(kind_value, f"expected object, got {type(raw).__name__}")

    data = dict(raw)
    if data.setdefault("kind", kind_value) != kind_value:
        raise MalformedPayloadError(kind_value, f"payload tagged as {data['kind']}")

    version = data.get("schema_version", 0)
    if not isinstance(version, int) or version > CURRENT_SCHEMA_VERSION:
        raise MalformedPayloadError(kind_value, f"unsupported schema_version {version!r}")
    while version < CURRENT_SCHEMA_VERSION:
        migrate = PAYLOAD_MIGRATIONS.get((kind_value, version))
        if migrate is not None:
            data = migrate(data)
        version += 1
        data["schema_version"] = version

    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedPayloadError(kind_value, str(e)) from e


def serialize_payload(payload: PatternPayload) -> str:
    """Serialize a payload to the JSON text stored in pattern_data."""
    return payload.model_dump_json()


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


class Pattern(BaseModel):
    """A mined regularity in a user's completion history."""

    model_config = ConfigDict(validate_assignment=True)

    id: UUID
    user_id: UUID
    kind: PatternKind
    payload: PatternPayload
    confidence: float = 0.0
    frequency: int = Field(default=0, ge=0)
    last_occurrence: Optional[datetime] = None
    next_predicted: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        """Confidence always lands in [0, 1]."""
        return _clamp_unit(v)

    @property
    def category(self) -> str:
        return self.payload.category

    @property
    def title(self) -> Optional[str]:
        """Representative task title, when the payload has one."""
        payload = self.payload
        if isinstance(payload, (TemporalPayload, FrequencyPayload)):
            return payload.task_title
        if isinstance(payload, SequentialPayload):
            return payload.sequence[-1]
        return payload.task_titles[0] if payload.task_titles else None


class TemporalPattern(BaseModel):
    """A recurring time window for one task within a category."""

    model_config = ConfigDict(validate_assignment=True)

    id: UUID
    user_id: UUID
    task_title: str
    task_category: str
    time_of_day: int = Field(ge=0, le=23)
    day_of_week: int = Field(ge=0, le=6)  # Sunday = 0
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    frequency: int = Field(default=1, ge=0)
    period_type: PeriodType
    confidence: float = 0.0
    last_occurrence: datetime
    next_predicted: Optional[datetime] = None
    completion_times: list[datetime] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)

    def to_pattern(self) -> Pattern:
        """Mirror this temporal pattern as a generic kind=temporal pattern."""
        return Pattern(
            id=self.id,
            user_id=self.user_id,
            kind=PatternKind.TEMPORAL,
            payload=TemporalPayload(
                task_title=self.task_title,
                category=self.task_category,
                period_type=self.period_type,
                time_of_day=self.time_of_day,
                day_of_week=self.day_of_week,
                day_of_month=self.day_of_month,
                completion_times=self.completion_times,
            ),
            confidence=self.confidence,
            frequency=self.frequency,
            last_occurrence=self.last_occurrence,
            next_predicted=self.next_predicted,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
