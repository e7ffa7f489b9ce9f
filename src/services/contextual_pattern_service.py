"""Contextual pattern mining: location, time-of-day, weather and calendar."""

import math
import random
from collections import Counter, defaultdict
from datetime import datetime, timezone
from statistics import mean, pstdev
from typing import Callable, Optional
from uuid import NAMESPACE_URL, UUID, uuid5

import structlog

from src.config import get_settings
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
from src.models.suggestion import MinerSuggestion
from src.models.task import CompletedTaskEvent, Location, TaskPriority
from src.services.pattern_store import PatternStore

logger = structlog.get_logger(__name__)

EARTH_RADIUS_M = 6371e3
RECENCY_DECAY_DAYS = 30.0

TITLE_TEMPLATES = {
    "Work": ["Review emails", "Prepare for meeting", "Update project status"],
    "Personal": ["Call family", "Plan weekend", "Organize photos"],
    "Health": ["Take vitamins", "Drink water", "Stretch"],
    "Shopping": ["Buy groceries", "Pick up prescription", "Get gas"],
}
FALLBACK_TITLE = "Complete task"

DURATION_MINUTES = {"Work": 30, "Personal": 15, "Health": 10, "Shopping": 45, "Exercise": 60}
DEFAULT_DURATION_MINUTES = 20

_SLOT_ORDER = list(TimeSlot)
_PATTERN_NAMESPACE = uuid5(NAMESPACE_URL, "suggestions/contextual-pattern")


def time_slot(hour: int) -> TimeSlot:
    if 5 <= hour < 12:
        return TimeSlot.MORNING
    if 12 <= hour < 17:
        return TimeSlot.AFTERNOON
    if 17 <= hour < 21:
        return TimeSlot.EVENING
    return TimeSlot.NIGHT


def temperature_range(celsius: float) -> TemperatureRange:
    if celsius < 0:
        return TemperatureRange.FREEZING
    if celsius < 10:
        return TemperatureRange.COLD
    if celsius < 20:
        return TemperatureRange.COOL
    if celsius < 30:
        return TemperatureRange.WARM
    return TemperatureRange.HOT


def location_key(location: Location) -> str:
    """Place name, else coordinates rounded to ~100 m, else street address."""
    if location.place_name:
        return location.place_name
    if location.has_coordinates:
        return f"{round(location.latitude, 3)},{round(location.longitude, 3)}"
    return location.address or "unknown"


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def time_slot_similarity(a: TimeSlot, b: TimeSlot) -> float:
    """1 for the same slot, 0.5 for adjacent slots, 0 for opposite ones."""
    i, j = _SLOT_ORDER.index(a), _SLOT_ORDER.index(b)
    distance = min(abs(i - j), len(_SLOT_ORDER) - abs(i - j))
    return max(0.0, 1 - distance / 2)


def interval_consistency(times: list[datetime]) -> float:
    """1 - std/mean of gaps between completions; 1 with fewer than two gaps."""
    ordered = sorted(times)
    intervals = [(b - a).total_seconds() for a, b in zip(ordered, ordered[1:])]
    if len(intervals) < 2:
        return 1.0
    avg = mean(intervals)
    if avg <= 0:
        return 1.0
    return max(0.0, 1 - pstdev(intervals) / avg)


def estimate_duration(category: str) -> int:
    return DURATION_MINUTES.get(category, DEFAULT_DURATION_MINUTES)


def priority_for_confidence(confidence: float) -> TaskPriority:
    if confidence > 0.7:
        return TaskPriority.HIGH
    if confidence > 0.4:
        return TaskPriority.MEDIUM
    return TaskPriority.LOW


def context_match(payload: ContextualPayload, context: UserContext) -> Optional[float]:
    """How well the current situation matches a pattern, or None if the
    context carries no signal of the pattern's kind."""
    settings = get_settings()
    kind = payload.context_kind

    if kind == ContextKind.LOCATION:
        if context.location is None or payload.location is None:
            return None
        anchor = payload.location
        if location_key(context.location) == anchor.key:
            return 1.0
        if not context.location.has_coordinates or anchor.latitude is None or anchor.longitude is None:
            return 0.0
        distance = haversine_m(
            context.location.latitude,
            context.location.longitude,
            anchor.latitude,
            anchor.longitude,
        )
        if distance <= settings.same_place_radius_m:
            return 1.0
        return max(0.0, 1 - distance / settings.location_decay_m)

    if kind == ContextKind.TIME:
        if payload.time_slot is None:
            return None
        return time_slot_similarity(time_slot(context.current_time.hour), payload.time_slot)

    if kind == ContextKind.WEATHER:
        if context.weather is None:
            return None
        score = 0.0
        if context.weather.condition == payload.weather_condition:
            score += 0.7
        if (
            context.weather.temperature is not None
            and temperature_range(context.weather.temperature) == payload.temperature_range
        ):
            score += 0.3
        return score

    if not context.calendar_event_types:
        return None
    return 1.0 if payload.calendar_event_type in context.calendar_event_types else 0.0


class ContextualPatternService:
    """Correlates completions with where, when and under what conditions they happen."""

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store or PatternStore()
        self.rng = rng or random.Random(get_settings().suggestion_random_seed)

    def _recency(self, times: list[datetime], now: datetime) -> float:
        days = max(0.0, (now - max(times)).total_seconds() / 86400)
        return math.exp(-days / RECENCY_DECAY_DAYS)

    def _pattern_id(self, user_id: str, kind: ContextKind, key: str) -> UUID:
        return uuid5(_PATTERN_NAMESPACE, f"{user_id}|{kind.value}|{key}")

    def _build(
        self,
        user_id: str,
        kind: ContextKind,
        key: str,
        members: list[CompletedTaskEvent],
        confidence: float,
        **fields,
    ) -> Pattern:
        times = sorted(t.completed_at for t in members)
        hours = [t.hour for t in times]
        categories = Counter(t.category for t in members)
        titles = [title for title, _ in Counter(t.title for t in members).most_common(3)]

        payload = ContextualPayload(
            context_kind=kind,
            category=fields.pop("category", None) or categories.most_common(1)[0][0],
            task_titles=titles,
            hour_range=(min(hours), max(hours)),
            completion_times=times,
            **fields,
        )
        return Pattern(
            id=self._pattern_id(user_id, kind, key),
            user_id=UUID(user_id),
            kind=PatternKind.CONTEXTUAL,
            payload=payload,
            confidence=confidence,
            frequency=len(members),
            last_occurrence=times[-1],
        )

    def _groups(
        self,
        tasks: list[CompletedTaskEvent],
        key_fn: Callable[[CompletedTaskEvent], Optional[str]],
    ) -> dict[str, list[CompletedTaskEvent]]:
        groups: dict[str, list[CompletedTaskEvent]] = defaultdict(list)
        for task in tasks:
            key = key_fn(task)
            if key is not None:
                groups[key].append(task)
        min_members = get_settings().contextual_min_occurrences
        return {k: v for k, v in groups.items() if len(v) >= min_members}

    def analyze_location(
        self, user_id: str, tasks: list[CompletedTaskEvent], now: datetime
    ) -> list[Pattern]:
        def key_fn(task: CompletedTaskEvent) -> Optional[str]:
            if task.context and task.context.location:
                return location_key(task.context.location)
            return None

        patterns = []
        for key, members in self._groups(tasks, key_fn).items():
            times = [t.completed_at for t in members]
            confidence = (
                len(members) / len(tasks) * 0.4
                + interval_consistency(times) * 0.4
                + self._recency(times, now) * 0.2
            )
            location = members[0].context.location
            anchor = LocationAnchor(key=key, **location.model_dump())
            patterns.append(
                self._build(user_id, ContextKind.LOCATION, key, members, confidence, location=anchor)
            )
        return patterns

    def analyze_time_of_day(
        self, user_id: str, tasks: list[CompletedTaskEvent], now: datetime
    ) -> list[Pattern]:
        category_totals = Counter(t.category for t in tasks)
        patterns = []
        groups = self._groups(
            tasks, lambda t: f"{time_slot(t.completed_at.hour).value}|{t.category}"
        )
        for key, members in groups.items():
            slot_value, category = key.split("|", 1)
            times = [t.completed_at for t in members]
            confidence = (
                len(members) / category_totals[category] * 0.4
                + interval_consistency(times) * 0.4
                + self._recency(times, now) * 0.2
            )
            patterns.append(
                self._build(
                    user_id,
                    ContextKind.TIME,
                    key,
                    members,
                    confidence,
                    category=category,
                    time_slot=TimeSlot(slot_value),
                )
            )
        return patterns

    def analyze_weather(
        self, user_id: str, tasks: list[CompletedTaskEvent], now: datetime
    ) -> list[Pattern]:
        def key_fn(task: CompletedTaskEvent) -> Optional[str]:
            weather = task.context.weather if task.context else None
            if weather is None or weather.temperature is None:
                return None
            return f"{weather.condition}|{temperature_range(weather.temperature).value}"

        patterns = []
        for key, members in self._groups(tasks, key_fn).items():
            condition, band = key.split("|", 1)
            times = [t.completed_at for t in members]
            confidence = len(members) / len(tasks) * 0.6 + interval_consistency(times) * 0.4
            patterns.append(
                self._build(
                    user_id,
                    ContextKind.WEATHER,
                    key,
                    members,
                    confidence,
                    weather_condition=condition,
                    temperature_range=TemperatureRange(band),
                )
            )
        return patterns

    def analyze_calendar(
        self, user_id: str, tasks: list[CompletedTaskEvent], now: datetime
    ) -> list[Pattern]:
        def key_fn(task: CompletedTaskEvent) -> Optional[str]:
            if task.context and task.context.calendar_event_type:
                return f"{task.context.calendar_event_type}|{task.category}"
            return None

        patterns = []
        for key, members in self._groups(tasks, key_fn).items():
            event_type, category = key.split("|", 1)
            times = [t.completed_at for t in members]
            confidence = len(members) / len(tasks) * 0.6 + interval_consistency(times) * 0.4
            patterns.append(
                self._build(
                    user_id,
                    ContextKind.CALENDAR,
                    key,
                    members,
                    confidence,
                    category=category,
                    calendar_event_type=event_type,
                )
            )
        return patterns

    def analyze(
        self,
        user_id: str,
        tasks: list[CompletedTaskEvent],
        now: Optional[datetime] = None,
    ) -> list[Pattern]:
        """All contextual patterns above the confidence floor, best first."""
        if not tasks:
            return []
        now = now or datetime.now(timezone.utc)
        min_confidence = get_settings().contextual_min_confidence

        patterns = (
            self.analyze_location(user_id, tasks, now)
            + self.analyze_time_of_day(user_id, tasks, now)
            + self.analyze_weather(user_id, tasks, now)
            + self.analyze_calendar(user_id, tasks, now)
        )
        patterns = [p for p in patterns if p.confidence >= min_confidence]
        patterns.sort(key=lambda p: p.confidence, reverse=True)
        return patterns

    async def mine_patterns(
        self, user_id: str, tasks: list[CompletedTaskEvent]
    ) -> list[Pattern]:
        patterns = self.analyze(user_id, tasks)
        try:
            patterns = await self.store.upsert_many(patterns)
        except Exception as e:
            logger.error("contextual_mining_failed", user_id=user_id, error=str(e))
            return []

        logger.info(
            "contextual_patterns_mined",
            user_id=user_id,
            task_count=len(tasks),
            pattern_count=len(patterns),
        )
        return patterns

    def context_match(self, payload: ContextualPayload, context: UserContext) -> Optional[float]:
        return context_match(payload, context)

    def overall_context_match(self, patterns: list[Pattern], context: UserContext) -> float:
        """Mean match over the patterns whose signal is present in the context."""
        scores = [
            score
            for p in patterns
            if isinstance(p.payload, ContextualPayload)
            and (score := self.context_match(p.payload, context)) is not None
        ]
        return sum(scores) / len(scores) if scores else 0.0

    def _title_for(self, payload: ContextualPayload) -> str:
        options = payload.task_titles or TITLE_TEMPLATES.get(payload.category, [FALLBACK_TITLE])
        return self.rng.choice(options)

    def _reasoning(self, payload: ContextualPayload, match: float) -> str:
        percent = round(match * 100)
        if payload.context_kind == ContextKind.LOCATION:
            return f"You often complete {payload.category} tasks at this location ({percent}% match)"
        if payload.context_kind == ContextKind.TIME:
            return f"Based on your {payload.time_slot.value} routine ({percent}% match)"
        if payload.context_kind == ContextKind.WEATHER:
            return f"You tend to do these tasks in {payload.weather_condition} weather ({percent}% match)"
        return f"Often done around {payload.calendar_event_type} events ({percent}% match)"

    async def get_contextual_suggestions(
        self,
        user_id: str,
        context: UserContext,
        limit: int = 5,
        patterns: Optional[list[Pattern]] = None,
    ) -> list[MinerSuggestion]:
        """Suggestions from patterns that match the current context well enough."""
        settings = get_settings()
        if patterns is None:
            try:
                patterns = await self.store.query_by_user_and_kind(user_id, PatternKind.CONTEXTUAL)
            except Exception as e:
                logger.error("contextual_pattern_lookup_failed", user_id=user_id, error=str(e))
                return []

        suggestions = []
        for pattern in patterns:
            payload = pattern.payload
            if not isinstance(payload, ContextualPayload):
                continue
            match = self.context_match(payload, context)
            if match is None or match <= settings.context_match_threshold:
                continue

            confidence = pattern.confidence * match
            suggestions.append(
                MinerSuggestion(
                    title=self._title_for(payload),
                    category=payload.category,
                    confidence=confidence,
                    reasoning=self._reasoning(payload, match),
                    pattern_id=pattern.id,
                    pattern_kind=PatternKind.CONTEXTUAL.value,
                    estimated_minutes=estimate_duration(payload.category),
                    context_match=match,
                    priority=priority_for_confidence(confidence),
                )
            )

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return suggestions[:limit]
