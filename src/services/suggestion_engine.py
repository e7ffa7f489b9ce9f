"""Suggestion engine: candidates from every miner, ranked, diversified and stored."""

import asyncio
import inspect
import json
import random
from datetime import datetime, timedelta, timezone
from itertools import product
from typing import Optional
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from src.config import get_settings
from src.database import get_pool
from src.models.context import UserContext
from src.models.pattern import (
    ContextualPayload,
    FrequencyPayload,
    Pattern,
    PatternKind,
    PeriodType,
    SequentialPayload,
    TemporalPayload,
)
from src.models.suggestion import (
    HYBRID,
    RankingScores,
    Suggestion,
    SuggestionCandidate,
    SuggestionSource,
    SuggestionStatus,
)
from src.models.task import TaskPriority
from src.services.confidence_scoring import ConfidenceScoringService
from src.services.contextual_pattern_service import (
    ContextualPatternService,
    estimate_duration,
    priority_for_confidence,
)
from src.services.frequency_pattern_service import FrequencyPatternService
from src.services.pattern_store import PatternStore
from src.services.sequential_pattern_service import SequentialPatternService
from src.services.task_history_service import TaskHistoryService
from src.services.temporal_pattern_service import (
    TemporalPatternService,
    day_of_month_group,
    day_of_week,
)

logger = structlog.get_logger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# Minimum time since the last occurrence before a temporal pattern is due again
MIN_GAP_DAYS = {PeriodType.DAILY: 0.5, PeriodType.WEEKLY: 5, PeriodType.MONTHLY: 25}

TEMPORAL_MIN_CONFIDENCE = 0.3
TEMPORAL_WEIGHT = 0.9
SEQUENTIAL_MIN_CONFIDENCE = 0.4
SEQUENTIAL_WEIGHT = 0.85
CONTEXTUAL_MIN_CONFIDENCE = 0.3
CONTEXTUAL_WEIGHT = 0.8
FREQUENCY_MIN_CONFIDENCE = 0.4
FREQUENCY_DUE_RATIO = 0.8

TEMPORAL_FREQUENCY_MIN_STRENGTH = 0.5
SEQUENTIAL_CONTEXTUAL_MIN_STRENGTH = 0.4

SUGGESTION_COLUMNS = """
    id, user_id, title, category, priority, confidence, reasoning, based_on,
    estimated_minutes, optimal_time, status, created_at, expires_at
"""

# Minimum gap between created_at and expires_at of a stored suggestion
MIN_SUGGESTION_LIFETIME = timedelta(minutes=1)


def priority_from_frequency(frequency: int) -> TaskPriority:
    if frequency >= 5:
        return TaskPriority.HIGH
    if frequency >= 2:
        return TaskPriority.MEDIUM
    return TaskPriority.LOW


def title_similarity(a: str, b: str) -> float:
    """Word overlap: |common words| / |union of words|, case-insensitive."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def optimal_time_for_hour(hour: int, now: datetime) -> datetime:
    """The pattern hour today, or tomorrow if that hour has already gone by."""
    optimal = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if optimal + timedelta(hours=1) < now:
        optimal += timedelta(days=1)
    return optimal


def hour_range(pattern: Pattern) -> Optional[tuple[int, int]]:
    payload = pattern.payload
    if isinstance(payload, TemporalPayload):
        return (payload.time_of_day, payload.time_of_day + get_settings().temporal_window_hours)
    if isinstance(payload, ContextualPayload):
        return payload.hour_range
    return None


def patterns_compatible(a: Pattern, b: Pattern) -> bool:
    """Same category, or overlapping active hours."""
    if a.category == b.category:
        return True
    range_a, range_b = hour_range(a), hour_range(b)
    if range_a is None or range_b is None:
        return False
    return range_a[0] <= range_b[1] and range_b[0] <= range_a[1]


def suggestions_from_rows(rows) -> list[Suggestion]:
    """Build suggestions from stored rows, skipping rows whose JSON columns are corrupt."""
    suggestions = []
    for row in rows:
        row = dict(row)
        try:
            suggestions.append(Suggestion(**row))
        except ValidationError as e:
            logger.warning(
                "malformed_suggestion_row",
                suggestion_id=str(row.get("id")),
                fields=sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]}),
            )
    return suggestions


class SuggestionEngine:
    """Turns stored patterns into a ranked, diversified set of pending suggestions.

    Stages run in a fixed order: candidate generation, pattern scoring,
    ranking, diversity filtering, persistence, learning adjustments.
    """

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        temporal: Optional[TemporalPatternService] = None,
        sequential: Optional[SequentialPatternService] = None,
        contextual: Optional[ContextualPatternService] = None,
        frequency: Optional[FrequencyPatternService] = None,
        scoring: Optional[ConfidenceScoringService] = None,
        learning=None,
        rng: Optional[random.Random] = None,
        history: Optional[TaskHistoryService] = None,
    ):
        settings = get_settings()
        self.store = store or PatternStore()
        self.history = history or TaskHistoryService()
        self.rng = rng or random.Random(settings.suggestion_random_seed)
        self.temporal = temporal or TemporalPatternService(self.store)
        self.sequential = sequential or SequentialPatternService(self.store)
        self.contextual = contextual or ContextualPatternService(self.store, self.rng)
        self.frequency = frequency or FrequencyPatternService(self.store)
        self.scoring = scoring or ConfidenceScoringService()
        # FeedbackLearningService; optional so the engine can run without learning
        self.learning = learning
        self.max_suggestions = settings.max_suggestions
        self.min_confidence = settings.min_suggestion_confidence

    def _expiry(self, now: datetime, minutes: int) -> datetime:
        return now + timedelta(minutes=minutes)

    # ---- candidate sources ----

    def temporal_candidates(
        self, patterns: list[Pattern], context: UserContext
    ) -> list[SuggestionCandidate]:
        settings = get_settings()
        now = context.current_time
        candidates = []
        for pattern in patterns:
            payload = pattern.payload
            if not isinstance(payload, TemporalPayload):
                continue
            if pattern.confidence <= TEMPORAL_MIN_CONFIDENCE:
                continue
            if abs(now.hour - payload.time_of_day) > 1:
                continue

            if payload.period_type == PeriodType.WEEKLY:
                if day_of_week(now) != payload.day_of_week:
                    continue
                reason = f"Matches your weekly schedule on {DAY_NAMES[payload.day_of_week]}"
            elif payload.period_type == PeriodType.MONTHLY:
                if day_of_month_group(now.day) != payload.day_of_month:
                    continue
                reason = f"Matches your monthly schedule around day {payload.day_of_month}"
            else:
                reason = f"Matches your daily routine around {payload.time_of_day:02d}:00"

            if pattern.last_occurrence is not None:
                days_since = (now - pattern.last_occurrence).total_seconds() / 86400
                if days_since < MIN_GAP_DAYS[payload.period_type]:
                    continue

            candidates.append(
                SuggestionCandidate(
                    title=payload.task_title,
                    category=payload.category,
                    priority=priority_from_frequency(pattern.frequency),
                    confidence=pattern.confidence * TEMPORAL_WEIGHT,
                    reasoning=[reason, f"Completed {pattern.frequency} times at this time"],
                    based_on=[SuggestionSource(kind=PatternKind.TEMPORAL.value, pattern_id=pattern.id)],
                    estimated_minutes=estimate_duration(payload.category),
                    optimal_time=optimal_time_for_hour(payload.time_of_day, now),
                    expires_at=self._expiry(now, settings.expiry_default_minutes),
                    context_relevance=self.scoring.context_relevance(pattern, context),
                )
            )
        return candidates

    async def sequential_candidates(
        self, patterns: list[Pattern], context: UserContext
    ) -> list[SuggestionCandidate]:
        settings = get_settings()
        now = context.current_time
        workflow = await self.sequential.get_workflow_suggestions(
            context.user_id,
            context.recent_task_titles,
            last_completed_at=context.last_completed_at,
            now=now,
            limit=self.max_suggestions,
            patterns=patterns,
        )
        return [
            SuggestionCandidate(
                title=s.title,
                category=s.category,
                priority=priority_for_confidence(s.confidence),
                confidence=s.confidence * SEQUENTIAL_WEIGHT,
                reasoning=[s.reasoning, "Next step in your established workflow"],
                based_on=[SuggestionSource(kind=PatternKind.SEQUENTIAL.value, pattern_id=s.pattern_id)],
                estimated_minutes=estimate_duration(s.category),
                expires_at=self._expiry(now, settings.expiry_sequential_minutes),
            )
            for s in workflow
            if s.confidence >= SEQUENTIAL_MIN_CONFIDENCE
        ]

    async def contextual_candidates(
        self, patterns: list[Pattern], context: UserContext
    ) -> list[SuggestionCandidate]:
        settings = get_settings()
        now = context.current_time
        matches = await self.contextual.get_contextual_suggestions(
            context.user_id, context, limit=self.max_suggestions, patterns=patterns
        )
        return [
            SuggestionCandidate(
                title=s.title,
                category=s.category,
                priority=s.priority,
                confidence=s.confidence * CONTEXTUAL_WEIGHT,
                reasoning=[s.reasoning],
                based_on=[SuggestionSource(kind=PatternKind.CONTEXTUAL.value, pattern_id=s.pattern_id)],
                estimated_minutes=s.estimated_minutes,
                expires_at=self._expiry(now, settings.expiry_contextual_minutes),
                context_relevance=s.context_match if s.context_match is not None else 0.5,
            )
            for s in matches
            if s.confidence >= CONTEXTUAL_MIN_CONFIDENCE
        ]

    def frequency_candidates(
        self, patterns: list[Pattern], context: UserContext
    ) -> list[SuggestionCandidate]:
        settings = get_settings()
        now = context.current_time
        candidates = []
        for pattern in patterns:
            payload = pattern.payload
            if not isinstance(payload, FrequencyPayload):
                continue
            if pattern.confidence < FREQUENCY_MIN_CONFIDENCE or pattern.last_occurrence is None:
                continue
            days_since = (now - pattern.last_occurrence).total_seconds() / 86400
            if days_since < FREQUENCY_DUE_RATIO * payload.interval_days:
                continue

            candidates.append(
                SuggestionCandidate(
                    title=payload.task_title,
                    category=payload.category,
                    priority=priority_from_frequency(pattern.frequency),
                    confidence=pattern.confidence * min(1.0, days_since / payload.interval_days),
                    reasoning=[
                        f"Due based on your {payload.interval_days:.0f}-day cycle",
                        f"Last done {days_since:.0f} days ago",
                    ],
                    based_on=[SuggestionSource(kind=PatternKind.FREQUENCY.value, pattern_id=pattern.id)],
                    estimated_minutes=estimate_duration(payload.category),
                    optimal_time=pattern.next_predicted,
                    expires_at=self._expiry(now, settings.expiry_frequency_minutes),
                )
            )
        return candidates

    def _temporal_relevance(self, payload: TemporalPayload, now: datetime) -> float:
        time_relevance = max(0.0, 1 - abs(now.hour - payload.time_of_day) / 12)
        day_relevance = 1.0 if day_of_week(now) == payload.day_of_week else 0.3
        return (time_relevance + day_relevance) / 2

    def find_pattern_combinations(
        self, patterns: list[Pattern], context: UserContext
    ) -> list[tuple[list[Pattern], float, float]]:
        """Pairs of patterns that reinforce each other, as (patterns, strength, relevance)."""
        settings = get_settings()
        by_kind: dict[PatternKind, list[Pattern]] = {kind: [] for kind in PatternKind}
        for pattern in patterns:
            by_kind[pattern.kind].append(pattern)

        combinations = []
        for temporal, freq in product(by_kind[PatternKind.TEMPORAL], by_kind[PatternKind.FREQUENCY]):
            if temporal.payload.task_title.lower() != freq.payload.task_title.lower():
                continue
            strength = (temporal.confidence + freq.confidence) / 2
            if strength > TEMPORAL_FREQUENCY_MIN_STRENGTH:
                relevance = self._temporal_relevance(temporal.payload, context.current_time)
                combinations.append(([temporal, freq], strength, relevance))

        for seq, ctx in product(by_kind[PatternKind.SEQUENTIAL], by_kind[PatternKind.CONTEXTUAL]):
            if not patterns_compatible(seq, ctx):
                continue
            strength = (seq.confidence + ctx.confidence) / 2
            if strength > SEQUENTIAL_CONTEXTUAL_MIN_STRENGTH:
                match = self.contextual.context_match(ctx.payload, context)
                combinations.append(([seq, ctx], strength, 0.5 if match is None else match))

        combinations.sort(key=lambda c: c[1] + c[2], reverse=True)
        return combinations[:settings.max_hybrid_suggestions]

    def hybrid_candidates(
        self, patterns: list[Pattern], context: UserContext
    ) -> list[SuggestionCandidate]:
        settings = get_settings()
        now = context.current_time
        candidates = []
        for combo, strength, relevance in self.find_pattern_combinations(patterns, context):
            title = None
            category = combo[0].category
            priority = TaskPriority.MEDIUM
            optimal_time = None
            reasoning = []
            for pattern in combo:
                payload = pattern.payload
                if isinstance(payload, TemporalPayload):
                    title = payload.task_title
                    priority = priority_from_frequency(pattern.frequency)
                    optimal_time = optimal_time_for_hour(payload.time_of_day, now)
                    reasoning.append(
                        f"Matches your {payload.period_type.value} schedule on "
                        f"{DAY_NAMES[payload.day_of_week]}"
                    )
                elif isinstance(payload, FrequencyPayload):
                    reasoning.append(f"Due based on your {payload.interval_days:.0f}-day cycle")
                elif isinstance(payload, SequentialPayload):
                    reasoning.append("Next step in your established workflow")
                else:
                    if payload.task_titles:
                        title = payload.task_titles[0]
                    reasoning.append("Matches your current context and environment")

            if title is None:
                title = combo[0].title or f"{category} task"

            confidence = min(
                settings.hybrid_confidence_cap,
                strength + 0.1 * (len(combo) - 1) + relevance * 0.15,
            )
            candidates.append(
                SuggestionCandidate(
                    title=title,
                    category=category,
                    priority=priority,
                    confidence=confidence,
                    reasoning=reasoning,
                    based_on=[SuggestionSource(kind=HYBRID)]
                    + [SuggestionSource(kind=p.kind.value, pattern_id=p.id) for p in combo],
                    estimated_minutes=estimate_duration(category),
                    optimal_time=optimal_time,
                    expires_at=self._expiry(now, settings.expiry_hybrid_minutes),
                    context_relevance=relevance,
                    pattern_strength=strength,
                )
            )
        return candidates

    async def generate_candidates(
        self, patterns: list[Pattern], context: UserContext
    ) -> list[SuggestionCandidate]:
        """Candidates from every source. A failing source contributes nothing."""
        by_kind: dict[PatternKind, list[Pattern]] = {kind: [] for kind in PatternKind}
        for pattern in patterns:
            by_kind[pattern.kind].append(pattern)

        sources = [
            ("temporal", lambda: self.temporal_candidates(by_kind[PatternKind.TEMPORAL], context)),
            ("sequential", lambda: self.sequential_candidates(by_kind[PatternKind.SEQUENTIAL], context)),
            ("contextual", lambda: self.contextual_candidates(by_kind[PatternKind.CONTEXTUAL], context)),
            ("frequency", lambda: self.frequency_candidates(by_kind[PatternKind.FREQUENCY], context)),
            ("hybrid", lambda: self.hybrid_candidates(patterns, context)),
        ]

        candidates = []
        for name, source in sources:
            try:
                result = source()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.error(
                    "candidate_source_failed",
                    source=name,
                    user_id=context.user_id,
                    error=str(e),
                )
                continue
            candidates.extend(result)

        return [c for c in candidates if c.confidence >= self.min_confidence]

    # ---- scoring, ranking, diversity ----

    async def score_candidates(
        self,
        candidates: list[SuggestionCandidate],
        patterns: list[Pattern],
        context: UserContext,
    ) -> list[SuggestionCandidate]:
        """Set each candidate's pattern strength from the scored source patterns."""
        by_id = {p.id: p for p in patterns}
        referenced = {pid for c in candidates for pid in c.pattern_ids if pid in by_id}
        scores = await self.scoring.score_patterns([by_id[pid] for pid in referenced], context)

        for candidate in candidates:
            if candidate.pattern_strength:
                continue
            values = [scores[pid].score for pid in candidate.pattern_ids if pid in scores]
            candidate.pattern_strength = sum(values) / len(values) if values else candidate.confidence
        return candidates

    def _total(self, scores: RankingScores) -> float:
        settings = get_settings()
        return (
            scores.relevance * settings.rank_weight_relevance
            + scores.timing * settings.rank_weight_timing
            + scores.user_preference * settings.rank_weight_user_preference
            + scores.context * settings.rank_weight_context
            + scores.pattern_strength * settings.rank_weight_pattern_strength
            + scores.diversity * settings.rank_weight_diversity
        )

    async def rank_candidates(
        self, candidates: list[SuggestionCandidate], context: UserContext
    ) -> list[SuggestionCandidate]:
        """Six-term score; keeps twice the final count for the diversity pass."""
        now = context.current_time
        for candidate in candidates:
            timing = 0.5
            if candidate.optimal_time is not None:
                hours = abs((now - candidate.optimal_time).total_seconds()) / 3600
                timing = max(0.0, 1 - hours / 24)

            scores = RankingScores(
                relevance=candidate.confidence,
                timing=timing,
                user_preference=await self.scoring.category_feedback_ratio(
                    context.user_id, candidate.category
                ),
                context=candidate.context_relevance,
                pattern_strength=candidate.pattern_strength or candidate.confidence,
                diversity=1.0,
            )
            scores.total = self._total(scores)
            candidate.scores = scores

        ranked = sorted(candidates, key=lambda c: c.scores.total, reverse=True)
        return ranked[:self.max_suggestions * 2]

    def apply_diversity_filter(
        self, ranked: list[SuggestionCandidate]
    ) -> list[SuggestionCandidate]:
        """Cap repeats per category and per contributing pattern kind, drop near-duplicate titles."""
        settings = get_settings()
        max_per_category = max(2, self.max_suggestions // 3)
        max_per_kind = max(1, self.max_suggestions // 4)

        category_count: dict[str, int] = {}
        kind_count: dict[str, int] = {}
        accepted: list[SuggestionCandidate] = []

        for candidate in ranked:
            current_category = category_count.get(candidate.category, 0)
            if current_category >= max_per_category:
                continue
            kinds = candidate.pattern_kinds
            if any(kind_count.get(k, 0) >= max_per_kind for k in kinds):
                continue
            if any(
                title_similarity(candidate.title, a.title) > settings.title_similarity_threshold
                for a in accepted
            ):
                continue

            category_penalty = current_category * settings.category_diversity_weight
            kind_penalty = max(
                (kind_count.get(k, 0) * settings.pattern_kind_diversity_weight for k in kinds),
                default=0.0,
            )
            candidate.scores.diversity = max(0.0, 1 - (category_penalty + kind_penalty))
            candidate.scores.total = self._total(candidate.scores)

            accepted.append(candidate)
            category_count[candidate.category] = current_category + 1
            for kind in kinds:
                kind_count[kind] = kind_count.get(kind, 0) + 1

            if len(accepted) >= self.max_suggestions:
                break

        accepted.sort(key=lambda c: c.scores.total, reverse=True)
        return accepted

    # ---- persistence ----

    async def persist_suggestions(
        self, user_id: str, candidates: list[SuggestionCandidate], now: datetime
    ) -> list[Suggestion]:
        suggestions = [
            Suggestion(
                id=uuid4(),
                user_id=UUID(user_id),
                title=c.title,
                category=c.category,
                priority=c.priority,
                confidence=c.confidence,
                reasoning=c.reasoning,
                based_on=c.based_on,
                estimated_minutes=c.estimated_minutes,
                optimal_time=c.optimal_time,
                status=SuggestionStatus.PENDING,
                created_at=now,
                expires_at=max(c.expires_at, now + MIN_SUGGESTION_LIFETIME),
            )
            for c in candidates
        ]
        if not suggestions:
            return []

        pool = await get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    """
                    INSERT INTO suggestions
                        (id, user_id, title, category, priority, confidence, reasoning,
                         based_on, estimated_minutes, optimal_time, status, created_at, expires_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                    """,
                    [
                        (
                            s.id,
                            s.user_id,
                            s.title,
                            s.category,
                            s.priority.value,
                            s.confidence,
                            json.dumps(s.reasoning),
                            json.dumps([b.model_dump(mode="json") for b in s.based_on]),
                            s.estimated_minutes,
                            s.optimal_time,
                            s.status.value,
                            s.created_at,
                            s.expires_at,
                        )
                        for s in suggestions
                    ],
                )
        return suggestions

    async def _store_adjustments(
        self, original: list[Suggestion], adjusted: list[Suggestion]
    ) -> None:
        before = {s.id: s.confidence for s in original}
        changed = [s for s in adjusted if before.get(s.id) != s.confidence]
        if not changed:
            return

        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.executemany(
                "UPDATE suggestions SET confidence = $2, based_on = $3 WHERE id = $1",
                [
                    (
                        s.id,
                        s.confidence,
                        json.dumps([b.model_dump(mode="json") for b in s.based_on]),
                    )
                    for s in changed
                ],
            )

    async def mine_patterns(self, user_id: str) -> dict[str, int]:
        """Re-mine every pattern kind from task history. Returns counts per kind."""
        tasks = await self.history.get_completed_tasks(user_id)
        results = await asyncio.gather(
            self.temporal.mine_patterns(user_id, tasks),
            self.sequential.mine_patterns(user_id, tasks),
            self.contextual.mine_patterns(user_id, tasks),
            self.frequency.mine_patterns(user_id, tasks),
        )
        counts = {kind.value: len(found) for kind, found in zip(PatternKind, results)}
        logger.info("patterns_mined", user_id=user_id, task_count=len(tasks), **counts)
        return counts

    async def generate_suggestions(
        self,
        context: UserContext,
        patterns: Optional[list[Pattern]] = None,
        mine: bool = True,
    ) -> list[Suggestion]:
        """Run the full pipeline for one user. Never raises; failures yield [].

        Args:
            context: The user's current situation; its current_time drives
                candidate timing, expiry and learning adjustments
            patterns: Pre-loaded patterns. Passing them skips mining and the
                pattern lookup
            mine: Re-mine patterns from task history before reading them

        Returns:
            Persisted suggestions, most relevant first, or [] on failure
        """
        user_id = context.user_id
        try:
            if patterns is None:
                if mine:
                    await self.mine_patterns(user_id)
                patterns = await self.store.query_by_user_and_kind(user_id)

            self.scoring.clear_feedback_cache()
            candidates = await self.generate_candidates(patterns, context)
            candidates = await self.score_candidates(candidates, patterns, context)
            ranked = await self.rank_candidates(candidates, context)
            diverse = self.apply_diversity_filter(ranked)
            suggestions = await self.persist_suggestions(user_id, diverse, context.current_time)
        except Exception as e:
            logger.error("suggestion_generation_failed", user_id=user_id, error=str(e))
            return []

        if self.learning is not None and suggestions:
            try:
                adjusted = await self.learning.apply_learning_adjustments(
                    user_id, suggestions, now=context.current_time
                )
                await self._store_adjustments(suggestions, adjusted)
            except Exception as e:
                logger.error("suggestion_adjustment_failed", user_id=user_id, error=str(e))
            else:
                suggestions = adjusted

        logger.info(
            "suggestions_generated",
            user_id=user_id,
            pattern_count=len(patterns),
            candidate_count=len(candidates),
            suggestion_count=len(suggestions),
        )
        return suggestions

    async def get_active_suggestions(
        self,
        user_id: str,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[Suggestion]:
        """Pending, unexpired suggestions, most confident first."""
        now = now or datetime.now(timezone.utc)
        query = f"""
            SELECT {SUGGESTION_COLUMNS}
            FROM suggestions
            WHERE user_id = $1 AND status = 'pending' AND expires_at > $2
            ORDER BY confidence DESC, created_at DESC
        """
        params: list = [UUID(user_id), now]
        if limit is not None:
            query += " LIMIT $3"
            params.append(limit)

        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return suggestions_from_rows(rows)
