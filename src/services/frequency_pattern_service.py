"""Frequency pattern mining: tasks repeated at a regular interval."""

import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from statistics import mean
from typing import Optional
from uuid import NAMESPACE_URL, UUID, uuid5

import structlog

from src.config import get_settings
from src.models.pattern import FrequencyPayload, Pattern, PatternKind
from src.models.task import CompletedTaskEvent
from src.services.contextual_pattern_service import interval_consistency
from src.services.pattern_store import PatternStore

logger = structlog.get_logger(__name__)

RECENCY_DECAY_DAYS = 30.0
SAMPLE_SATURATION = 10

_PATTERN_NAMESPACE = uuid5(NAMESPACE_URL, "suggestions/frequency-pattern")


class FrequencyPatternService:
    """Finds tasks the user repeats every N days."""

    def __init__(self, store: Optional[PatternStore] = None):
        self.store = store or PatternStore()

    def analyze(
        self,
        user_id: str,
        tasks: list[CompletedTaskEvent],
        now: Optional[datetime] = None,
    ) -> list[Pattern]:
        settings = get_settings()
        now = now or datetime.now(timezone.utc)

        groups: dict[tuple[str, str], list[datetime]] = defaultdict(list)
        for task in tasks:
            groups[(task.title, task.category)].append(task.completed_at)

        patterns = []
        for (title, category), times in groups.items():
            if len(times) < settings.frequency_min_occurrences:
                continue
            times.sort()
            intervals = [(b - a).total_seconds() / 86400 for a, b in zip(times, times[1:])]
            interval_days = mean(intervals)
            if interval_days <= 0:
                continue

            regularity = interval_consistency(times)
            days_since = max(0.0, (now - times[-1]).total_seconds() / 86400)
            confidence = (
                regularity * 0.5
                + min(len(times) / SAMPLE_SATURATION, 1.0) * 0.3
                + math.exp(-days_since / RECENCY_DECAY_DAYS) * 0.2
            )
            if confidence < settings.frequency_min_confidence:
                continue

            patterns.append(
                Pattern(
                    id=uuid5(_PATTERN_NAMESPACE, f"{user_id}|{title}|{category}"),
                    user_id=UUID(user_id),
                    kind=PatternKind.FREQUENCY,
                    payload=FrequencyPayload(
                        task_title=title,
                        category=category,
                        interval_days=interval_days,
                        regularity=regularity,
                        completion_times=times,
                    ),
                    confidence=confidence,
                    frequency=len(times),
                    last_occurrence=times[-1],
                    next_predicted=times[-1] + timedelta(days=interval_days),
                )
            )

        patterns.sort(key=lambda p: p.confidence, reverse=True)
        return patterns

    async def mine_patterns(
        self, user_id: str, tasks: list[CompletedTaskEvent]
    ) -> list[Pattern]:
        patterns = self.analyze(user_id, tasks)
        try:
            patterns = await self.store.upsert_many(patterns)
        except Exception as e:
            logger.error("frequency_mining_failed", user_id=user_id, error=str(e))
            return []

        logger.info("frequency_patterns_mined", user_id=user_id, pattern_count=len(patterns))
        return patterns
