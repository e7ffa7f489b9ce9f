"""Sequential pattern mining: frequent task workflows in completion order."""

import math
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import NAMESPACE_URL, UUID, uuid5

import structlog

from src.config import get_settings
from src.models.pattern import Pattern, PatternKind, SequentialPayload
from src.models.suggestion import MinerSuggestion
from src.models.task import DEFAULT_CATEGORY, CompletedTaskEvent
from src.services.pattern_store import PatternStore

logger = structlog.get_logger(__name__)

SEQUENCE_SEPARATOR = " -> "
RECENT_TITLES_CONSIDERED = 3

_PATTERN_NAMESPACE = uuid5(NAMESPACE_URL, "suggestions/sequential-pattern")


@dataclass
class TaskSequence:
    """One contiguous window of completions."""

    tasks: list[CompletedTaskEvent]

    @property
    def titles(self) -> tuple[str, ...]:
        return tuple(t.title for t in self.tasks)

    @property
    def avg_gap_minutes(self) -> float:
        gaps = [
            (b.completed_at - a.completed_at).total_seconds() / 60
            for a, b in zip(self.tasks, self.tasks[1:])
        ]
        return sum(gaps) / len(gaps) if gaps else 0.0


@dataclass
class FrequentSequence:
    """A title sequence that passed the support and confidence cuts."""

    sequence: list[str]
    support: float
    confidence: float
    avg_gap_minutes: float
    category: str
    occurrences: int


@dataclass
class TaskDependency:
    prerequisite: str
    dependent: str
    strength: float


def _count_rule(titles: list[str], sequence: list[str]) -> tuple[int, int]:
    """Count antecedent matches and how many are followed by the consequent."""
    antecedent, consequent = sequence[:-1], sequence[-1]
    size = len(antecedent)
    antecedent_count = 0
    full_count = 0
    for i in range(len(titles) - size + 1):
        if titles[i:i + size] == antecedent:
            antecedent_count += 1
            if i + size < len(titles) and titles[i + size] == consequent:
                full_count += 1
    return antecedent_count, full_count


class SequentialPatternService:
    """Mines frequent title subsequences and proposes the next workflow step."""

    def __init__(self, store: Optional[PatternStore] = None):
        self.store = store or PatternStore()

    def extract_sequences(self, tasks: list[CompletedTaskEvent]) -> list[TaskSequence]:
        """All contiguous windows of allowed length whose gaps stay under the limit."""
        settings = get_settings()
        max_gap_seconds = settings.sequence_max_gap_hours * 3600
        ordered = sorted(tasks, key=lambda t: t.completed_at)

        sequences = []
        for start in range(len(ordered)):
            for length in range(settings.sequence_min_length, settings.sequence_max_length + 1):
                end = start + length
                if end > len(ordered):
                    break
                gap = (ordered[end - 1].completed_at - ordered[end - 2].completed_at).total_seconds()
                if gap > max_gap_seconds:
                    # Any longer window from this start contains the same gap
                    break
                sequences.append(TaskSequence(tasks=ordered[start:end]))
        return sequences

    def find_frequent_sequences(
        self,
        sequences: list[TaskSequence],
        tasks: list[CompletedTaskEvent],
    ) -> list[FrequentSequence]:
        """Apply the support and association-rule confidence cuts."""
        settings = get_settings()
        if not sequences:
            return []

        groups: dict[tuple[str, ...], list[TaskSequence]] = defaultdict(list)
        for seq in sequences:
            groups[seq.titles].append(seq)

        all_titles = [t.title for t in sorted(tasks, key=lambda t: t.completed_at)]
        total = len(sequences)

        frequent = []
        for titles, members in groups.items():
            support = len(members) / total
            if support < settings.sequence_min_support:
                continue

            antecedent_count, full_count = _count_rule(all_titles, list(titles))
            confidence = full_count / antecedent_count if antecedent_count else 0.0
            if confidence < settings.sequence_min_confidence:
                continue

            categories = Counter(t.category for seq in members for t in seq.tasks)
            frequent.append(
                FrequentSequence(
                    sequence=list(titles),
                    support=support,
                    confidence=confidence,
                    avg_gap_minutes=sum(s.avg_gap_minutes for s in members) / len(members),
                    category=categories.most_common(1)[0][0] if categories else DEFAULT_CATEGORY,
                    occurrences=len(members),
                )
            )

        frequent.sort(key=lambda f: (f.confidence, f.support), reverse=True)
        return frequent

    def pattern_id(self, user_id: str, sequence: list[str]) -> UUID:
        return uuid5(_PATTERN_NAMESPACE, f"{user_id}|{SEQUENCE_SEPARATOR.join(sequence)}")

    def to_pattern(
        self, user_id: str, frequent: FrequentSequence, last_occurrence: datetime
    ) -> Pattern:
        return Pattern(
            id=self.pattern_id(user_id, frequent.sequence),
            user_id=UUID(user_id),
            kind=PatternKind.SEQUENTIAL,
            payload=SequentialPayload(
                sequence=frequent.sequence,
                support=frequent.support,
                avg_gap_minutes=frequent.avg_gap_minutes,
                category=frequent.category,
                occurrences=frequent.occurrences,
            ),
            confidence=frequent.confidence,
            frequency=round(frequent.support * 100),
            last_occurrence=last_occurrence,
        )

    async def mine_patterns(
        self, user_id: str, tasks: list[CompletedTaskEvent]
    ) -> list[Pattern]:
        """Extract, filter and store sequential patterns."""
        if len(tasks) < 2:
            return []

        frequent = self.find_frequent_sequences(self.extract_sequences(tasks), tasks)
        last_occurrence = max(t.completed_at for t in tasks)
        patterns = [self.to_pattern(user_id, f, last_occurrence) for f in frequent]

        try:
            patterns = await self.store.upsert_many(patterns)
        except Exception as e:
            logger.error("sequential_mining_failed", user_id=user_id, error=str(e))
            return []

        logger.info(
            "sequential_patterns_mined",
            user_id=user_id,
            task_count=len(tasks),
            pattern_count=len(patterns),
        )
        return patterns

    def match_prefix(self, recent_titles: list[str], sequence: list[str]) -> int:
        """Index of the last element of the longest sequence prefix that equals
        the tail of ``recent_titles``, or -1. The prefix never covers the final
        element, so a next step always exists."""
        for end in range(len(sequence) - 2, -1, -1):
            prefix = sequence[:end + 1]
            if len(recent_titles) >= len(prefix) and recent_titles[-len(prefix):] == prefix:
                return end
        return -1

    async def get_workflow_suggestions(
        self,
        user_id: str,
        recent_titles: list[str],
        last_completed_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        limit: int = 5,
        patterns: Optional[list[Pattern]] = None,
    ) -> list[MinerSuggestion]:
        """Suggest what usually comes next after the user's latest completions."""
        settings = get_settings()
        now = now or datetime.now(timezone.utc)
        recent = recent_titles[-RECENT_TITLES_CONSIDERED:]
        if not recent:
            return []

        if patterns is None:
            try:
                patterns = await self.store.query_by_user_and_kind(user_id, PatternKind.SEQUENTIAL)
            except Exception as e:
                logger.error("workflow_pattern_lookup_failed", user_id=user_id, error=str(e))
                return []

        recency = 1.0
        if last_completed_at is not None:
            hours_since = max(0.0, (now - last_completed_at).total_seconds() / 3600)
            recency = math.exp(-hours_since / settings.workflow_recency_hours)

        best: dict[str, MinerSuggestion] = {}
        for pattern in patterns:
            payload = pattern.payload
            if not isinstance(payload, SequentialPayload):
                continue
            match = self.match_prefix(recent, payload.sequence)
            if match < 0:
                continue

            next_task = payload.sequence[match + 1]
            suggestion = MinerSuggestion(
                title=next_task,
                category=payload.category,
                confidence=pattern.confidence * recency,
                reasoning="Based on your pattern: "
                + SEQUENCE_SEPARATOR.join(payload.sequence[:match + 2]),
                pattern_id=pattern.id,
                pattern_kind=PatternKind.SEQUENTIAL.value,
                estimated_minutes=round(payload.avg_gap_minutes),
            )
            current = best.get(next_task)
            if current is None or suggestion.confidence > current.confidence:
                best[next_task] = suggestion

        ranked = sorted(best.values(), key=lambda s: s.confidence, reverse=True)
        return ranked[:limit]

    def build_dependency_graph(self, patterns: list[Pattern]) -> dict[str, list[str]]:
        """Map each task title to the titles observed directly before it."""
        graph: dict[str, list[str]] = {}
        for pattern in patterns:
            payload = pattern.payload
            if not isinstance(payload, SequentialPayload):
                continue
            for prerequisite, dependent in zip(payload.sequence, payload.sequence[1:]):
                prerequisites = graph.setdefault(dependent, [])
                if prerequisite not in prerequisites:
                    prerequisites.append(prerequisite)
        return graph

    def detect_task_dependencies(
        self, tasks: list[CompletedTaskEvent]
    ) -> list[TaskDependency]:
        """Pairs where ``dependent`` followed ``prerequisite`` within the gap limit.

        A pair needs the prerequisite to have occurred at least
        ``dependency_min_occurrences`` times; strength is the follow ratio.
        """
        settings = get_settings()
        max_gap_seconds = settings.sequence_max_gap_hours * 3600
        ordered = sorted(tasks, key=lambda t: t.completed_at)

        occurrences = Counter(t.title for t in ordered)
        follows: Counter = Counter()
        for i, task in enumerate(ordered):
            seen = set()
            for later in ordered[i + 1:]:
                if (later.completed_at - task.completed_at).total_seconds() > max_gap_seconds:
                    break
                if later.title != task.title and later.title not in seen:
                    seen.add(later.title)
                    follows[(task.title, later.title)] += 1

        dependencies = [
            TaskDependency(
                prerequisite=prerequisite,
                dependent=dependent,
                strength=count / occurrences[prerequisite],
            )
            for (prerequisite, dependent), count in follows.items()
            if occurrences[prerequisite] >= settings.dependency_min_occurrences
            and count >= settings.dependency_min_occurrences
        ]
        dependencies.sort(key=lambda d: d.strength, reverse=True)
        return dependencies

    async def get_sequence_visualization(self, user_id: str) -> dict:
        """Top sequences, dependency graph and per-category workflows."""
        patterns = await self.store.query_by_user_and_kind(user_id, PatternKind.SEQUENTIAL)

        workflows: dict[str, list[dict]] = defaultdict(list)
        summaries = []
        for pattern in patterns:
            summary = {
                "sequence": pattern.payload.sequence,
                "support": pattern.payload.support,
                "confidence": pattern.confidence,
                "avg_gap_minutes": pattern.payload.avg_gap_minutes,
                "category": pattern.payload.category,
            }
            summaries.append(summary)
            workflows[pattern.payload.category].append(summary)

        summaries.sort(key=lambda s: s["confidence"], reverse=True)
        return {
            "top_sequences": summaries[:10],
            "dependency_graph": self.build_dependency_graph(patterns),
            "category_workflows": dict(workflows),
        }
