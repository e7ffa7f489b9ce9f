"""Multi-factor confidence scoring for mined patterns."""

import math
from datetime import datetime, timedelta, timezone
from statistics import pvariance
from typing import Optional
from uuid import UUID

import structlog

from src.config import get_settings
from src.database import get_pool
from src.models.context import UserContext
from src.models.feedback import Feedback, FeedbackType
from src.models.pattern import (
    ContextualPayload,
    FrequencyPayload,
    Pattern,
    PeriodType,
    SequentialPayload,
    TemporalPayload,
)
from src.models.scoring import ConfidenceFactors, ConfidenceScore, Reliability, ScoringWeights
from src.services.contextual_pattern_service import context_match, interval_consistency
from src.services.temporal_pattern_service import day_of_week

logger = structlog.get_logger(__name__)

EXPECTED_FREQUENCY = {PeriodType.DAILY: 30, PeriodType.WEEKLY: 8, PeriodType.MONTHLY: 3}
DEFAULT_EXPECTED_FREQUENCY = 5

RECENCY_DECAY_DAYS = {PeriodType.DAILY: 7, PeriodType.WEEKLY: 21, PeriodType.MONTHLY: 90}
DEFAULT_RECENCY_DECAY_DAYS = 30

MAX_HOUR_VARIANCE = 144.0
MAX_DAY_VARIANCE = 9.0
RECENT_DATA_DAYS = 60

FALLBACK_SCORE = 0.3


def default_weights() -> ScoringWeights:
    settings = get_settings()
    return ScoringWeights(
        frequency=settings.weight_frequency,
        recency=settings.weight_recency,
        consistency=settings.weight_consistency,
        user_feedback=settings.weight_user_feedback,
        data_quality=settings.weight_data_quality,
        context_relevance=settings.weight_context_relevance,
    ).normalized()


def frequency_factor(frequency: int, period: Optional[PeriodType]) -> float:
    """Sigmoid-squashed occurrence count relative to what the period expects."""
    expected = EXPECTED_FREQUENCY.get(period, DEFAULT_EXPECTED_FREQUENCY)
    return min(1.0, 2 / (1 + math.exp(-frequency / expected)) - 1)


def recency_factor(
    last_occurrence: Optional[datetime], period: Optional[PeriodType], now: datetime
) -> float:
    if last_occurrence is None:
        return 0.5
    decay = RECENCY_DECAY_DAYS.get(period, DEFAULT_RECENCY_DECAY_DAYS)
    days = max(0.0, (now - last_occurrence).total_seconds() / 86400)
    return math.exp(-days / decay)


def temporal_consistency(times: list[datetime]) -> float:
    """Average of hour-of-day and day-of-week consistency; 0.5 without data."""
    if len(times) < 2:
        return 0.5
    hour_variance = pvariance([t.hour for t in times])
    day_variance = pvariance([day_of_week(t) for t in times])
    hour_consistency = max(0.0, 1 - hour_variance / MAX_HOUR_VARIANCE)
    day_consistency = max(0.0, 1 - day_variance / MAX_DAY_VARIANCE)
    return (hour_consistency + day_consistency) / 2


def direct_feedback_factor(feedback: list[Feedback]) -> float:
    if not feedback:
        return 0.5
    positive = sum(1 for f in feedback if f.feedback_type == FeedbackType.POSITIVE)
    return positive / len(feedback)


def reliability_for(score: float, data_points: int) -> Reliability:
    if score > 0.7 and data_points >= 5:
        return Reliability.HIGH
    if score > 0.5 and data_points >= 3:
        return Reliability.MEDIUM
    return Reliability.LOW


def _completion_times(pattern: Pattern) -> list[datetime]:
    return list(getattr(pattern.payload, "completion_times", []))


def payload_completeness(pattern: Pattern) -> float:
    """Share of the fields a payload of this kind should carry that are present."""
    payload = pattern.payload
    if isinstance(payload, TemporalPayload):
        checks = [True, True, pattern.frequency > 0, pattern.last_occurrence is not None]
    elif isinstance(payload, SequentialPayload):
        checks = [len(payload.sequence) >= 2, bool(payload.category)]
    elif isinstance(payload, ContextualPayload):
        has_signal = any(
            value is not None
            for value in (
                payload.location,
                payload.time_slot,
                payload.weather_condition,
                payload.calendar_event_type,
            )
        )
        checks = [has_signal, bool(payload.task_titles)]
    else:
        checks = [payload.interval_days > 0, bool(payload.completion_times)]
    return sum(checks) / len(checks)


class ConfidenceScoringService:
    """Scores patterns from six bounded factors combined by normalized weights."""

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = (weights or default_weights()).normalized()
        self._feedback_cache: dict[tuple[str, str], float] = {}

    def clear_feedback_cache(self) -> None:
        self._feedback_cache.clear()

    def update_weights(self, factor_accuracy: dict[str, float]) -> ScoringWeights:
        """Shift weight toward factors that proved predictive, then renormalize.

        Unknown factor names are ignored. Factors missing from the mapping keep
        their relative weight.
        """
        current = self.weights.model_dump()
        known = {k: v for k, v in factor_accuracy.items() if k in current and v >= 0}
        total = sum(known.values())
        if total > 0:
            for name, accuracy in known.items():
                current[name] *= accuracy / total * len(known)
        self.weights = ScoringWeights(**current).normalized()
        logger.info("scoring_weights_updated", weights=self.weights.model_dump())
        return self.weights

    async def category_feedback_ratio(self, user_id: str, category: str) -> float:
        """Positive share of feedback on suggestions in a category (0.5 if none)."""
        key = (user_id, category)
        if key in self._feedback_cache:
            return self._feedback_cache[key]

        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT COUNT(*) AS total,
                           COUNT(*) FILTER (WHERE f.feedback_type = 'positive') AS positive
                    FROM suggestion_feedback f
                    JOIN suggestions s ON s.id = f.suggestion_id
                    WHERE f.user_id = $1 AND s.category = $2
                    """,
                    UUID(user_id),
                    category,
                )
        except Exception as e:
            logger.error("feedback_factor_lookup_failed", user_id=user_id, error=str(e))
            return 0.5

        ratio = row["positive"] / row["total"] if row and row["total"] else 0.5
        self._feedback_cache[key] = ratio
        return ratio

    def data_quality(self, pattern: Pattern, now: datetime) -> float:
        times = _completion_times(pattern)
        completeness = payload_completeness(pattern)

        if isinstance(pattern.payload, TemporalPayload):
            count = len(times) or pattern.frequency
            if count >= 5:
                score = 0.3
            elif count >= 3:
                score = 0.2
            else:
                score = 0.1
            if times:
                # Every stored time is a real completion timestamp
                score += 0.3
                cutoff = now - timedelta(days=RECENT_DATA_DAYS)
                score += sum(1 for t in times if t > cutoff) / len(times) * 0.2
            return min(1.0, score + completeness * 0.2)

        data_points = len(times) or pattern.frequency
        score = (
            min(1.0, data_points / 5) * 0.4
            + completeness * 0.3
            + pattern.confidence * 0.3
        )
        return min(1.0, score)

    def context_relevance(self, pattern: Pattern, context: Optional[UserContext]) -> float:
        if context is None:
            return 0.5
        payload = pattern.payload
        if isinstance(payload, TemporalPayload):
            hour_diff = abs(context.current_time.hour - payload.time_of_day)
            hour_relevance = max(0.0, 1 - hour_diff / 12)
            day_match = 1.0 if day_of_week(context.current_time) == payload.day_of_week else 0.0
            return hour_relevance * 0.6 + day_match * 0.4
        if isinstance(payload, ContextualPayload):
            match = context_match(payload, context)
            return 0.5 if match is None else match
        return 0.5

    def consistency(self, pattern: Pattern) -> float:
        times = _completion_times(pattern)
        if isinstance(pattern.payload, TemporalPayload):
            return temporal_consistency(times)
        if isinstance(pattern.payload, FrequencyPayload):
            return pattern.payload.regularity
        if len(times) < 3:
            return 0.5
        return interval_consistency(times)

    def explain(self, factors: ConfidenceFactors, pattern: Pattern) -> list[str]:
        settings = get_settings()
        high, low = settings.high_factor_threshold, settings.low_factor_threshold
        period = getattr(pattern.payload, "period_type", None)
        explanation = []

        if factors.frequency > high:
            per = f" per {period.value} period" if period else ""
            explanation.append(f"High frequency: {pattern.frequency} occurrences{per}")
        elif factors.frequency < low:
            explanation.append(f"Low frequency: only {pattern.frequency} occurrences")

        if factors.recency > high:
            explanation.append("Recent activity supports this pattern")
        elif factors.recency < low:
            explanation.append("Pattern hasn't occurred recently")

        if factors.consistency > high:
            explanation.append("Highly consistent timing")
        elif factors.consistency < low:
            explanation.append("Inconsistent timing reduces confidence")

        if factors.user_feedback > high:
            explanation.append("Positive feedback on similar suggestions")
        elif factors.user_feedback < low:
            explanation.append("Limited or negative feedback on similar suggestions")

        if factors.data_quality > high:
            explanation.append("High quality supporting data")
        elif factors.data_quality < low:
            explanation.append("Limited data quality affects confidence")

        if factors.context_relevance > high:
            explanation.append("Highly relevant to the current context")

        return explanation

    async def score_pattern(
        self,
        pattern: Pattern,
        context: Optional[UserContext] = None,
        feedback: Optional[list[Feedback]] = None,
        now: Optional[datetime] = None,
    ) -> ConfidenceScore:
        """Score one pattern. Never raises; failures give a low fallback score.

        Args:
            pattern: The pattern to score
            context: Current situation, used for context relevance and as the
                reference time
            feedback: Feedback on suggestions from this pattern. When omitted
                the category acceptance ratio is looked up instead
            now: Reference time overriding the context

        Returns:
            The weighted score with its factors, reliability and explanation
        """
        now = now or (context.current_time if context else datetime.now(timezone.utc))
        try:
            period = getattr(pattern.payload, "period_type", None)
            if feedback is not None:
                user_feedback = direct_feedback_factor(feedback)
            else:
                user_feedback = await self.category_feedback_ratio(
                    str(pattern.user_id), pattern.category
                )

            factors = ConfidenceFactors(
                frequency=frequency_factor(pattern.frequency, period),
                recency=recency_factor(pattern.last_occurrence, period, now),
                consistency=self.consistency(pattern),
                user_feedback=user_feedback,
                data_quality=self.data_quality(pattern, now),
                context_relevance=self.context_relevance(pattern, context),
            )
            score = min(1.0, max(0.0, self.weights.combine(factors)))
            data_points = len(_completion_times(pattern)) or pattern.frequency
            return ConfidenceScore(
                score=score,
                factors=factors,
                reliability=reliability_for(score, data_points),
                explanation=self.explain(factors, pattern),
                data_points=data_points,
            )
        except Exception as e:
            logger.error(
                "confidence_scoring_failed",
                pattern_id=str(pattern.id),
                error=str(e),
            )
            fallback = FALLBACK_SCORE
            return ConfidenceScore(
                score=fallback,
                factors=ConfidenceFactors(
                    frequency=fallback,
                    recency=fallback,
                    consistency=fallback,
                    user_feedback=fallback,
                    data_quality=fallback,
                    context_relevance=fallback,
                ),
                reliability=Reliability.LOW,
                explanation=["Error calculating confidence"],
            )

    async def score_patterns(
        self, patterns: list[Pattern], context: Optional[UserContext] = None
    ) -> dict[UUID, ConfidenceScore]:
        return {p.id: await self.score_pattern(p, context) for p in patterns}
