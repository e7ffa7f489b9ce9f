"""Unit tests for SequentialPatternService."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from src.models.pattern import Pattern, PatternKind, SequentialPayload
from src.models.task import CompletedTaskEvent
from src.services.sequential_pattern_service import (
    SequentialPatternService,
    TaskSequence,
)

USER_ID = str(uuid4())
START = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _task(title, completed_at, category="Work"):
    return CompletedTaskEvent(id=uuid4(), title=title, category=category, completed_at=completed_at)


def _cycles(titles, count, step=timedelta(minutes=15), gap=timedelta(days=2)):
    """``count`` runs of ``titles``, each run separated by more than the max gap."""
    tasks = []
    for cycle in range(count):
        base = START + gap * cycle
        tasks.extend(_task(title, base + step * i) for i, title in enumerate(titles))
    return tasks


def _sequential_pattern(sequence, confidence=0.8, avg_gap=20.0):
    return Pattern(
        id=uuid4(),
        user_id=uuid4(),
        kind=PatternKind.SEQUENTIAL,
        payload=SequentialPayload(
            sequence=sequence, support=0.4, avg_gap_minutes=avg_gap, category="Work"
        ),
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
    return SequentialPatternService(store)


class TestExtractSequences:
    def test_windows_of_allowed_lengths(self, service):
        tasks = _cycles(["A", "B", "C"], 1)
        sequences = service.extract_sequences(tasks)
        assert sorted(s.titles for s in sequences) == [("A", "B"), ("A", "B", "C"), ("B", "C")]

    def test_gap_over_limit_breaks_window(self, service):
        tasks = [
            _task("A", START),
            _task("B", START + timedelta(hours=25)),
        ]
        assert service.extract_sequences(tasks) == []

    def test_unsorted_input_is_ordered(self, service):
        tasks = list(reversed(_cycles(["A", "B"], 1)))
        sequences = service.extract_sequences(tasks)
        assert [s.titles for s in sequences] == [("A", "B")]


class TestFindFrequentSequences:
    def test_full_rule_confidence(self, service):
        tasks = _cycles(["A", "B", "C"], 4)
        sequences = [TaskSequence(tasks=tasks[i * 3:i * 3 + 3]) for i in range(4)]
        # Six other windows that never appear in the task history
        sequences += [
            TaskSequence(tasks=[_task("X", START), _task("Y", START + timedelta(minutes=5))])
            for _ in range(6)
        ]

        frequent = service.find_frequent_sequences(sequences, tasks)

        assert len(frequent) == 1
        found = frequent[0]
        assert found.sequence == ["A", "B", "C"]
        assert found.support == pytest.approx(0.4)
        assert found.confidence == pytest.approx(1.0)
        assert found.occurrences == 4
        assert found.category == "Work"

    def test_low_support_filtered(self, service):
        tasks = _cycles(["A", "B"], 1)
        sequences = [TaskSequence(tasks=tasks)]
        sequences += [
            TaskSequence(tasks=[_task(f"T{i}", START), _task(f"U{i}", START)])
            for i in range(20)
        ]
        frequent = service.find_frequent_sequences(sequences, tasks)
        assert all(f.sequence != ["A", "B"] for f in frequent)

    def test_rule_confidence_counts_antecedents_without_consequent(self, service):
        # A->B twice, A->C twice: rule A->B holds half the time
        tasks = _cycles(["A", "B"], 2) + [
            _task(t.title, t.completed_at + timedelta(days=10)) for t in _cycles(["A", "C"], 2)
        ]
        frequent = service.find_frequent_sequences(service.extract_sequences(tasks), tasks)
        ab = next(f for f in frequent if f.sequence == ["A", "B"])
        assert ab.confidence == pytest.approx(0.5)

    def test_empty(self, service):
        assert service.find_frequent_sequences([], []) == []


class TestMinePatterns:
    @pytest.mark.asyncio
    async def test_stores_sequential_patterns(self, service, store):
        tasks = _cycles(["A", "B", "C"], 4)
        patterns = await service.mine_patterns(USER_ID, tasks)

        assert patterns
        assert all(p.kind == PatternKind.SEQUENTIAL for p in patterns)
        abc = next(p for p in patterns if p.payload.sequence == ["A", "B", "C"])
        assert abc.confidence == pytest.approx(1.0)
        assert abc.frequency == round(abc.payload.support * 100)
        store.upsert_many.assert_awaited_once()

    def test_same_sequence_same_id(self, service):
        assert service.pattern_id(USER_ID, ["A", "B"]) == service.pattern_id(USER_ID, ["A", "B"])
        assert service.pattern_id(USER_ID, ["A", "B"]) != service.pattern_id(USER_ID, ["B", "A"])

    @pytest.mark.asyncio
    async def test_single_task_skipped(self, service, store):
        assert await service.mine_patterns(USER_ID, [_task("A", START)]) == []
        store.upsert_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_failure_returns_empty(self, service, store):
        store.upsert_many.side_effect = Exception("connection lost")
        assert await service.mine_patterns(USER_ID, _cycles(["A", "B", "C"], 4)) == []


class TestWorkflowSuggestions:
    def test_match_prefix_prefers_longest(self, service):
        assert service.match_prefix(["X", "A", "B"], ["A", "B", "C"]) == 1
        assert service.match_prefix(["B", "A"], ["A", "B", "C"]) == 0
        assert service.match_prefix(["C"], ["A", "B", "C"]) == -1

    @pytest.mark.asyncio
    async def test_suggests_next_step(self, service):
        pattern = _sequential_pattern(["A", "B", "C"], confidence=0.8)
        suggestions = await service.get_workflow_suggestions(
            USER_ID, ["A", "B"], patterns=[pattern]
        )

        assert len(suggestions) == 1
        assert suggestions[0].title == "C"
        assert suggestions[0].confidence == pytest.approx(0.8)
        assert suggestions[0].pattern_id == pattern.id
        assert "A -> B -> C" in suggestions[0].reasoning

    @pytest.mark.asyncio
    async def test_confidence_decays_with_time_since_last_completion(self, service):
        pattern = _sequential_pattern(["A", "B"], confidence=0.8)
        now = START + timedelta(hours=12)
        suggestions = await service.get_workflow_suggestions(
            USER_ID, ["A"], last_completed_at=START, now=now, patterns=[pattern]
        )
        assert suggestions[0].confidence == pytest.approx(0.8 * 0.36788, rel=1e-3)

    @pytest.mark.asyncio
    async def test_one_suggestion_per_next_task(self, service):
        weak = _sequential_pattern(["A", "C"], confidence=0.4)
        strong = _sequential_pattern(["B", "A", "C"], confidence=0.9)
        suggestions = await service.get_workflow_suggestions(
            USER_ID, ["B", "A"], patterns=[weak, strong]
        )
        assert len(suggestions) == 1
        assert suggestions[0].pattern_id == strong.id

    @pytest.mark.asyncio
    async def test_no_recent_titles(self, service):
        assert await service.get_workflow_suggestions(USER_ID, [], patterns=[]) == []

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_empty(self, service, store):
        store.query_by_user_and_kind.side_effect = Exception("down")
        assert await service.get_workflow_suggestions(USER_ID, ["A"]) == []


class TestDependencies:
    def test_detects_reliable_followers(self, service):
        tasks = _cycles(["Draft report", "Send report"], 3)
        dependencies = service.detect_task_dependencies(tasks)

        assert len(dependencies) == 1
        dependency = dependencies[0]
        assert dependency.prerequisite == "Draft report"
        assert dependency.dependent == "Send report"
        assert dependency.strength == pytest.approx(1.0)

    def test_needs_minimum_occurrences(self, service):
        tasks = _cycles(["Draft report", "Send report"], 2)
        assert service.detect_task_dependencies(tasks) == []

    def test_build_dependency_graph(self, service):
        graph = service.build_dependency_graph(
            [_sequential_pattern(["A", "B", "C"]), _sequential_pattern(["X", "C"])]
        )
        assert graph == {"B": ["A"], "C": ["B", "X"]}

    @pytest.mark.asyncio
    async def test_visualization(self, service, store):
        store.query_by_user_and_kind.return_value = [
            _sequential_pattern(["A", "B"], confidence=0.5),
            _sequential_pattern(["B", "C"], confidence=0.9),
        ]
        result = await service.get_sequence_visualization(USER_ID)

        assert [s["sequence"] for s in result["top_sequences"]] == [["B", "C"], ["A", "B"]]
        assert result["dependency_graph"] == {"B": ["A"], "C": ["B"]}
        assert len(result["category_workflows"]["Work"]) == 2
