"""Temporal pattern mining: recurring daily, weekly and monthly time windows."""

import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from statistics import pvariance
from typing import Optional
from uuid import NAMESPACE_URL, UUID, uuid5

import structlog

from src.config import get_settings
from src.models.pattern import PeriodType, TemporalPattern
from src.models.task import CompletedTaskEvent
from src.services.pattern_store import PatternStore

logger = structlog.get_logger(__name__)

PERIOD_DAYS = {PeriodType.DAILY: 1, PeriodType.WEEKLY: 7, PeriodType.MONTHLY: 30}

# Largest variance of the per-period position value, used for normalization
MAX_POSITION_VARIANCE = {
    PeriodType.DAILY: 144.0,
    PeriodType.WEEKLY: 2304.0,
    PeriodType.MONTHLY: 9216.0,
}

RECENCY_DECAY_DAYS = 30.0
SAMPLE_SATURATION = 10

_PATTERN_NAMESPACE = uuid5(NAMESPACE_URL, "suggestions/temporal-pattern")


def day_of_week(ts: datetime) -> int:
    """Day of week with Sunday = 0 and Saturday = 6."""
    return (ts.weekday() + 1) % 7


def hour_window(hour: int, width: int) -> int:
    return hour // width * width


def day_of_month_group(day: int) -> int:
    """First day of the 3-day group containing ``day`` (1, 4, 7, ...)."""
    return (day - 1) // 3 * 3 + 1


def position_in_period(ts: datetime, period: PeriodType) -> float:
    """Position of a timestamp within its period, in hours."""
    hours = ts.hour + ts.minute / 60
    if period == PeriodType.WEEKLY:
        return day_of_week(ts) * 24 + hours
    if period == PeriodType.MONTHLY:
        return ts.day * 24 + hours
    return hours


class TemporalPatternService:
    """Clusters completion timestamps into recurring time windows."""

    def __init__(self, store: Optional[PatternStore] = None):
        self.store = store or PatternStore()

    def bucket_key(self, ts: datetime, period: PeriodType) -> tuple[int, ...]:
        window = hour_window(ts.hour, get_settings().temporal_window_hours)
        if period == PeriodType.WEEKLY:
            return (day_of_week(ts), window)
        if period == PeriodType.MONTHLY:
            return (day_of_month_group(ts.day), window)
        return (window,)

    def bucket_confidence(
        self, times: list[datetime], period: PeriodType, now: datetime
    ) -> float:
        """Blend of positional consistency, sample size and recency."""
        positions = [position_in_period(t, period) for t in times]
        variance = pvariance(positions) if len(positions) > 1 else 0.0
        normalized_variance = min(1.0, variance / MAX_POSITION_VARIANCE[period])

        days_since_last = max(0.0, (now - max(times)).total_seconds() / 86400)

        consistency = (1 - normalized_variance) * 0.5
        sample_size = min(len(times) / SAMPLE_SATURATION, 1.0) * 0.3
        recency = math.exp(-days_since_last / RECENCY_DECAY_DAYS) * 0.2
        return min(1.0, max(0.0, consistency + sample_size + recency))

    def pattern_id(
        self, user_id: str, category: str, period: PeriodType, key: tuple[int, ...]
    ) -> UUID:
        """Stable id per bucket so re-mining replaces the same row."""
        raw = f"{user_id}|{category}|{period.value}|{'-'.join(str(k) for k in key)}"
        return uuid5(_PATTERN_NAMESPACE, raw)

    def analyze(
        self,
        user_id: str,
        tasks: list[CompletedTaskEvent],
        now: Optional[datetime] = None,
    ) -> list[TemporalPattern]:
        """Mine temporal patterns without touching the store."""
        settings = get_settings()
        now = now or datetime.now(timezone.utc)

        by_category: dict[str, list[CompletedTaskEvent]] = defaultdict(list)
        for task in tasks:
            by_category[task.category].append(task)

        patterns: list[TemporalPattern] = []
        for category, category_tasks in by_category.items():
            for period in PeriodType:
                buckets: dict[tuple[int, ...], list[CompletedTaskEvent]] = defaultdict(list)
                for task in category_tasks:
                    buckets[self.bucket_key(task.completed_at, period)].append(task)

                for key, members in buckets.items():
                    if len(members) < settings.temporal_min_occurrences:
                        continue
                    times = sorted(t.completed_at for t in members)
                    confidence = self.bucket_confidence(times, period, now)
                    if confidence < settings.temporal_confidence_threshold:
                        continue
                    patterns.append(
                        self._build_pattern(user_id, category, period, key, members, times, confidence)
                    )

        patterns.sort(key=lambda p: p.confidence, reverse=True)
        return patterns

    def _build_pattern(
        self,
        user_id: str,
        category: str,
        period: PeriodType,
        key: tuple[int, ...],
        members: list[CompletedTaskEvent],
        times: list[datetime],
        confidence: float,
    ) -> TemporalPattern:
        last = times[-1]
        title = Counter(t.title for t in members).most_common(1)[0][0]

        if period == PeriodType.WEEKLY:
            dow, dom = key[0], None
        elif period == PeriodType.MONTHLY:
            dow, dom = day_of_week(last), key[0]
        else:
            dow, dom = 0, None

        return TemporalPattern(
            id=self.pattern_id(user_id, category, period, key),
            user_id=UUID(user_id),
            task_title=title,
            task_category=category,
            time_of_day=key[-1],
            day_of_week=dow,
            day_of_month=dom,
            frequency=len(members),
            period_type=period,
            confidence=confidence,
            last_occurrence=last,
            next_predicted=last + timedelta(days=PERIOD_DAYS[period]),
            completion_times=times,
        )

    async def mine_patterns(
        self, user_id: str, tasks: list[CompletedTaskEvent]
    ) -> list[TemporalPattern]:
        """Analyze and upsert. Store failures yield an empty result."""
        if not tasks:
            return []

        patterns = self.analyze(user_id, tasks)
        try:
            for pattern in patterns:
                await self.store.upsert_temporal_pattern(pattern)
        except Exception as e:
            logger.error("temporal_mining_failed", user_id=user_id, error=str(e))
            return []

        logger.info(
            "temporal_patterns_mined",
            user_id=user_id,
            task_count=len(tasks),
            pattern_count=len(patterns),
        )
        return patterns

    async def get_temporal_distribution(self, user_id: str) -> dict:
        """Hourly, weekday and per-category weight maps for visualization.

        Each cell accumulates frequency * confidence of the patterns in it.
        """
        hourly = [0.0] * 24
        daily = [0.0] * 7
        by_category: dict[str, list[float]] = {}

        try:
            patterns = await self.store.get_temporal_patterns(user_id)
        except Exception as e:
            logger.error("temporal_distribution_failed", user_id=user_id, error=str(e))
            patterns = []

        for pattern in patterns:
            weight = pattern.frequency * pattern.confidence
            hourly[pattern.time_of_day] += weight
            daily[pattern.day_of_week] += weight
            by_category.setdefault(pattern.task_category, [0.0] * 24)[pattern.time_of_day] += weight

        return {
            "hourly_distribution": hourly,
            "daily_distribution": daily,
            "category_time_distribution": by_category,
        }
