"""Unit tests for FrequencyPatternService."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from src.models.pattern import FrequencyPayload, PatternKind
from src.models.task import CompletedTaskEvent
from src.services.frequency_pattern_service import FrequencyPatternService

USER_ID = str(uuid4())
START = datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)


def _task(title, completed_at, category="Home"):
    return CompletedTaskEvent(id=uuid4(), title=title, category=category, completed_at=completed_at)


@pytest.fixture
def store():
    store = MagicMock()
    store.upsert_many = AsyncMock(side_effect=lambda patterns: list(patterns))
    return store


@pytest.fixture
def service(store):
    return FrequencyPatternService(store)


class TestAnalyze:
    def test_regular_interval(self, service):
        times = [START + timedelta(days=3 * i) for i in range(5)]
        tasks = [_task("Water plants", t) for t in times]
        now = times[-1] + timedelta(days=1)

        patterns = service.analyze(USER_ID, tasks, now=now)

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.kind == PatternKind.FREQUENCY
        assert isinstance(pattern.payload, FrequencyPayload)
        assert pattern.payload.interval_days == pytest.approx(3.0)
        assert pattern.payload.regularity == pytest.approx(1.0)
        assert pattern.frequency == 5
        assert pattern.next_predicted == times[-1] + timedelta(days=3)
        assert pattern.confidence > 0.8

    def test_irregular_interval_scores_lower(self, service):
        regular = [_task("Water plants", START + timedelta(days=3 * i)) for i in range(5)]
        offsets = [0, 1, 9, 10, 20]
        irregular = [_task("Water plants", START + timedelta(days=d)) for d in offsets]
        now = START + timedelta(days=21)

        regular_conf = service.analyze(USER_ID, regular, now=now)[0].confidence
        irregular_patterns = service.analyze(USER_ID, irregular, now=now)
        assert not irregular_patterns or irregular_patterns[0].confidence < regular_conf

    def test_same_title_in_other_category_is_separate(self, service):
        tasks = [_task("Review", START + timedelta(days=i)) for i in range(3)]
        tasks += [_task("Review", START + timedelta(days=i), category="Work") for i in range(3)]
        patterns = service.analyze(USER_ID, tasks, now=START + timedelta(days=3))
        assert {p.payload.category for p in patterns} == {"Home", "Work"}
        assert len({p.id for p in patterns}) == 2

    def test_too_few_occurrences(self, service):
        tasks = [_task("Water plants", START + timedelta(days=3 * i)) for i in range(2)]
        assert service.analyze(USER_ID, tasks, now=START) == []

    def test_same_instant_repeats_ignored(self, service):
        tasks = [_task("Water plants", START) for _ in range(3)]
        assert service.analyze(USER_ID, tasks, now=START) == []


class TestMinePatterns:
    @pytest.mark.asyncio
    async def test_upserts(self, service, store):
        tasks = [_task("Water plants", START + timedelta(days=3 * i)) for i in range(5)]
        patterns = await service.mine_patterns(USER_ID, tasks)
        assert len(patterns) == 1
        store.upsert_many.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_store_failure_returns_empty(self, service, store):
        store.upsert_many.side_effect = Exception("down")
        tasks = [_task("Water plants", START + timedelta(days=3 * i)) for i in range(5)]
        assert await service.mine_patterns(USER_ID, tasks) == []
