"""Unit tests for ContextualPatternService and context matching."""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from src.models.context import UserContext
from src.models.pattern import (
    ContextKind,
    ContextualPayload,
    LocationAnchor,
    Pattern,
    PatternKind,
    TemperatureRange,
    TimeSlot,
)
from src.models.task import (
    CompletedTaskEvent,
    Location,
    TaskContext,
    TaskPriority,
    WeatherSnapshot,
)
from src.services.contextual_pattern_service import (
    ContextualPatternService,
    context_match,
    estimate_duration,
    interval_consistency,
    location_key,
    priority_for_confidence,
    temperature_range,
    time_slot,
    time_slot_similarity,
)

USER_ID = str(uuid4())
NOW = datetime(2026, 4, 10, 9, 0, tzinfo=timezone.utc)

HOME = Location(place_name="Home", latitude=40.0, longitude=-74.0)


def _task(title, completed_at, category="Health", **context):
    return CompletedTaskEvent(
        id=uuid4(),
        title=title,
        category=category,
        completed_at=completed_at,
        context=TaskContext(**context) if context else None,
    )


def _context(**fields):
    return UserContext(user_id=USER_ID, current_time=fields.pop("current_time", NOW), **fields)


def _contextual_pattern(payload, confidence=0.8):
    return Pattern(
        id=uuid4(),
        user_id=uuid4(),
        kind=PatternKind.CONTEXTUAL,
        payload=payload,
        confidence=confidence,
    )


@pytest.fixture
def store():
    store = MagicMock()
    store.upsert_many = AsyncMock(side_effect=lambda patterns: list(patterns))
    store.query_by_user_and_kind = AsyncMock(return_value=[])
    return store


@pytest.fixture
def service(store):
    return ContextualPatternService(store, random.Random(7))


class TestHelpers:
    @pytest.mark.parametrize(
        "hour,slot",
        [(5, TimeSlot.MORNING), (11, TimeSlot.MORNING), (12, TimeSlot.AFTERNOON),
         (17, TimeSlot.EVENING), (21, TimeSlot.NIGHT), (2, TimeSlot.NIGHT)],
    )
    def test_time_slot(self, hour, slot):
        assert time_slot(hour) == slot

    @pytest.mark.parametrize(
        "celsius,band",
        [(-1, TemperatureRange.FREEZING), (0, TemperatureRange.COLD), (15, TemperatureRange.COOL),
         (25, TemperatureRange.WARM), (30, TemperatureRange.HOT)],
    )
    def test_temperature_range(self, celsius, band):
        assert temperature_range(celsius) == band

    def test_location_key_precedence(self):
        assert location_key(HOME) == "Home"
        assert location_key(Location(latitude=40.12345, longitude=-74.98765)) == "40.123,-74.988"
        assert location_key(Location(address="1 Main St")) == "1 Main St"

    def test_time_slot_similarity_is_circular(self):
        assert time_slot_similarity(TimeSlot.MORNING, TimeSlot.MORNING) == 1.0
        assert time_slot_similarity(TimeSlot.NIGHT, TimeSlot.EVENING) == 0.5
        assert time_slot_similarity(TimeSlot.MORNING, TimeSlot.EVENING) == 0.0

    def test_interval_consistency(self):
        regular = [NOW + timedelta(days=i) for i in range(4)]
        assert interval_consistency(regular) == pytest.approx(1.0)
        assert interval_consistency(regular[:2]) == 1.0
        irregular = [NOW, NOW + timedelta(days=1), NOW + timedelta(days=10)]
        assert interval_consistency(irregular) < 0.5

    def test_duration_and_priority(self):
        assert estimate_duration("Shopping") == 45
        assert estimate_duration("Gardening") == 20
        assert priority_for_confidence(0.75) == TaskPriority.HIGH
        assert priority_for_confidence(0.5) == TaskPriority.MEDIUM
        assert priority_for_confidence(0.4) == TaskPriority.LOW


class TestContextMatch:
    def _location_payload(self):
        return ContextualPayload(
            context_kind=ContextKind.LOCATION,
            category="Health",
            location=LocationAnchor(key="Home", latitude=40.0, longitude=-74.0),
        )

    def test_same_place_name(self):
        assert context_match(self._location_payload(), _context(location=HOME)) == 1.0

    def test_within_radius(self):
        nearby = Location(latitude=40.0005, longitude=-74.0)
        assert context_match(self._location_payload(), _context(location=nearby)) == 1.0

    def test_linear_decay_with_distance(self):
        # ~500 m north of the anchor
        away = Location(latitude=40.0045, longitude=-74.0)
        score = context_match(self._location_payload(), _context(location=away))
        assert score == pytest.approx(0.5, abs=0.02)

    def test_far_away_is_zero(self):
        far = Location(latitude=41.0, longitude=-74.0)
        assert context_match(self._location_payload(), _context(location=far)) == 0.0

    def test_missing_location_is_not_applicable(self):
        assert context_match(self._location_payload(), _context()) is None

    def test_time_slot(self):
        payload = ContextualPayload(
            context_kind=ContextKind.TIME, category="Work", time_slot=TimeSlot.AFTERNOON
        )
        assert context_match(payload, _context()) == 0.5

    def test_weather(self):
        payload = ContextualPayload(
            context_kind=ContextKind.WEATHER,
            category="Exercise",
            weather_condition="sunny",
            temperature_range=TemperatureRange.WARM,
        )
        sunny_warm = _context(weather=WeatherSnapshot(condition="sunny", temperature=24))
        sunny_cold = _context(weather=WeatherSnapshot(condition="sunny", temperature=3))
        assert context_match(payload, sunny_warm) == pytest.approx(1.0)
        assert context_match(payload, sunny_cold) == pytest.approx(0.7)

    def test_calendar(self):
        payload = ContextualPayload(
            context_kind=ContextKind.CALENDAR, category="Work", calendar_event_type="meeting"
        )
        assert context_match(payload, _context(calendar_event_types=["meeting"])) == 1.0
        assert context_match(payload, _context(calendar_event_types=["lunch"])) == 0.0
        assert context_match(payload, _context()) is None

    def test_overall_is_mean_of_applicable(self, service):
        location = _contextual_pattern(self._location_payload())
        calendar = _contextual_pattern(
            ContextualPayload(
                context_kind=ContextKind.CALENDAR, category="Work", calendar_event_type="meeting"
            )
        )
        far = Location(latitude=41.0, longitude=-74.0)
        # Calendar signal absent: only the location pattern counts
        assert service.overall_context_match([location, calendar], _context(location=HOME)) == 1.0
        assert service.overall_context_match(
            [location, calendar], _context(location=far, calendar_event_types=["meeting"])
        ) == pytest.approx(0.5)


class TestAnalyze:
    def test_location_group(self, service):
        tasks = [
            _task("Yoga", NOW - timedelta(days=3 - i), location=HOME) for i in range(3)
        ]
        patterns = service.analyze(USER_ID, tasks, now=NOW)
        location = [p for p in patterns if p.payload.context_kind == ContextKind.LOCATION]

        assert len(location) == 1
        payload = location[0].payload
        assert payload.location.key == "Home"
        assert payload.task_titles == ["Yoga"]
        assert location[0].frequency == 3
        assert location[0].confidence >= 0.25

    def test_time_of_day_group_per_category(self, service):
        tasks = [_task("Stretch", NOW - timedelta(days=i)) for i in range(3)]
        tasks += [_task("Email", NOW - timedelta(days=i), category="Work") for i in range(2)]
        patterns = service.analyze(USER_ID, tasks, now=NOW)
        time_patterns = [p for p in patterns if p.payload.context_kind == ContextKind.TIME]

        assert len(time_patterns) == 1
        assert time_patterns[0].payload.time_slot == TimeSlot.MORNING
        assert time_patterns[0].payload.category == "Health"

    def test_weather_needs_temperature(self, service):
        tasks = [
            _task("Run", NOW - timedelta(days=i), weather=WeatherSnapshot(condition="sunny"))
            for i in range(4)
        ]
        patterns = service.analyze(USER_ID, tasks, now=NOW)
        assert not [p for p in patterns if p.payload.context_kind == ContextKind.WEATHER]

    def test_calendar_group(self, service):
        tasks = [
            _task("Prep notes", NOW - timedelta(days=i), category="Work", calendar_event_type="meeting")
            for i in range(3)
        ]
        patterns = service.analyze(USER_ID, tasks, now=NOW)
        calendar = [p for p in patterns if p.payload.context_kind == ContextKind.CALENDAR]
        assert calendar[0].payload.calendar_event_type == "meeting"

    def test_results_sorted_and_above_floor(self, service):
        tasks = [_task("Yoga", NOW - timedelta(days=i), location=HOME) for i in range(5)]
        patterns = service.analyze(USER_ID, tasks, now=NOW)
        confidences = [p.confidence for p in patterns]
        assert confidences == sorted(confidences, reverse=True)
        assert all(c >= 0.25 for c in confidences)

    def test_empty(self, service):
        assert service.analyze(USER_ID, [], now=NOW) == []


class TestContextualSuggestions:
    @pytest.mark.asyncio
    async def test_matching_pattern_suggested(self, service):
        pattern = _contextual_pattern(
            ContextualPayload(
                context_kind=ContextKind.LOCATION,
                category="Health",
                task_titles=["Yoga"],
                location=LocationAnchor(key="Home"),
            ),
            confidence=0.8,
        )
        suggestions = await service.get_contextual_suggestions(
            USER_ID, _context(location=HOME), patterns=[pattern]
        )

        assert len(suggestions) == 1
        suggestion = suggestions[0]
        assert suggestion.title == "Yoga"
        assert suggestion.confidence == pytest.approx(0.8)
        assert suggestion.priority == TaskPriority.HIGH
        assert suggestion.estimated_minutes == 10
        assert suggestion.context_match == 1.0

    @pytest.mark.asyncio
    async def test_weak_match_skipped(self, service):
        pattern = _contextual_pattern(
            ContextualPayload(
                context_kind=ContextKind.TIME, category="Work", time_slot=TimeSlot.AFTERNOON
            )
        )
        # Morning vs afternoon is 0.5, which is not above the threshold
        assert await service.get_contextual_suggestions(USER_ID, _context(), patterns=[pattern]) == []

    @pytest.mark.asyncio
    async def test_template_title_is_reproducible(self, store):
        pattern = _contextual_pattern(
            ContextualPayload(
                context_kind=ContextKind.TIME, category="Health", time_slot=TimeSlot.MORNING
            )
        )
        first = ContextualPatternService(store, random.Random(11))
        second = ContextualPatternService(store, random.Random(11))

        a = await first.get_contextual_suggestions(USER_ID, _context(), patterns=[pattern])
        b = await second.get_contextual_suggestions(USER_ID, _context(), patterns=[pattern])

        assert a[0].title == b[0].title
        assert a[0].title in ["Take vitamins", "Drink water", "Stretch"]

    @pytest.mark.asyncio
    async def test_mine_patterns_upserts(self, service, store):
        tasks = [_task("Yoga", NOW - timedelta(days=i), location=HOME) for i in range(3)]
        patterns = await service.mine_patterns(USER_ID, tasks)
        assert patterns
        store.upsert_many.assert_awaited_once()
