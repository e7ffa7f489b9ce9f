"""Batch learning: find regularities in recent feedback and act on them."""

import json
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.config import get_settings
from src.database import get_pool
from src.models.feedback import (
    AdaptiveLearningResult,
    ConfidenceBucket,
    FeedbackSummary,
    FeedbackType,
    InsightImpact,
    InsightType,
    KindBreakdown,
    LearningInsight,
)
from src.models.pattern import PatternKind
from src.models.suggestion import SuggestionSource
from src.services.feedback_learning_service import FeedbackLearningService, acceptance_improvement
from src.services.pattern_store import PatternStore

logger = structlog.get_logger(__name__)

MIN_FEEDBACK_FOR_LEARNING = 5
MIN_CATEGORY_SAMPLES = 5
MIN_KIND_SAMPLES = 5
MIN_BUCKET_SAMPLES = 3
MIN_HOUR_SAMPLES = 3
HIGH_RATE = 0.8
LOW_RATE = 0.3
CALIBRATION_ERROR = 0.2
HIGH_CALIBRATION_ERROR = 0.3
HOURLY_EFFECTIVENESS = "hourly_effectiveness"

_PATTERN_KINDS = {kind.value for kind in PatternKind}


def _sources(raw) -> list[SuggestionSource]:
    if isinstance(raw, str):
        raw = json.loads(raw)
    return [SuggestionSource(**item) for item in raw or []]


def _rate(outcomes: list[bool]) -> float:
    return sum(outcomes) / len(outcomes)


class AdaptiveLearningService:
    """Derives insights from the last weeks of feedback and applies them to patterns."""

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        learning: Optional[FeedbackLearningService] = None,
    ):
        self.store = store or PatternStore()
        self.learning = learning or FeedbackLearningService(self.store)

    async def _recent_feedback(self, user_id: str, since: Optional[datetime] = None) -> list[dict]:
        """Feedback joined with its suggestion, oldest first."""
        params: list = [UUID(user_id)]
        time_filter = ""
        if since is not None:
            params.append(since)
            time_filter = " AND f.created_at >= $2"

        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT f.feedback_type, f.created_at, s.category, s.confidence, s.based_on
                FROM suggestion_feedback f
                JOIN suggestions s ON s.id = f.suggestion_id
                WHERE f.user_id = $1{time_filter}
                ORDER BY f.created_at ASC
                """,
                *params,
            )

        return [
            {
                "accepted": row["feedback_type"] == FeedbackType.POSITIVE.value,
                "created_at": row["created_at"],
                "category": row["category"],
                "confidence": row["confidence"],
                "kinds": {s.kind for s in _sources(row["based_on"]) if s.kind in _PATTERN_KINDS},
            }
            for row in rows
        ]

    def category_insights(self, feedback: list[dict]) -> list[LearningInsight]:
        by_category: dict[str, list[bool]] = defaultdict(list)
        for item in feedback:
            by_category[item["category"]].append(item["accepted"])

        insights = []
        for category, outcomes in by_category.items():
            if len(outcomes) < MIN_CATEGORY_SAMPLES:
                continue
            rate = _rate(outcomes)
            data = {"category": category, "positive_rate": rate, "sample_size": len(outcomes)}
            if rate >= HIGH_RATE:
                insights.append(
                    LearningInsight(
                        type=InsightType.CATEGORY_PREFERENCE,
                        description=f"High acceptance rate for {category} suggestions",
                        impact=InsightImpact.HIGH,
                        recommendation=f"Increase confidence and frequency for {category} suggestions",
                        data=data,
                    )
                )
            elif rate <= LOW_RATE:
                insights.append(
                    LearningInsight(
                        type=InsightType.CATEGORY_PREFERENCE,
                        description=f"Low acceptance rate for {category} suggestions",
                        impact=InsightImpact.HIGH,
                        recommendation=f"Reduce confidence or improve {category} suggestion quality",
                        data=data,
                    )
                )
        return insights

    def calibration_insights(self, feedback: list[dict]) -> list[LearningInsight]:
        by_bucket: dict[ConfidenceBucket, list[bool]] = defaultdict(list)
        for item in feedback:
            by_bucket[ConfidenceBucket.for_confidence(item["confidence"])].append(item["accepted"])

        insights = []
        for bucket in ConfidenceBucket:
            outcomes = by_bucket.get(bucket, [])
            if len(outcomes) < MIN_BUCKET_SAMPLES:
                continue
            rate = _rate(outcomes)
            error = abs(rate - bucket.midpoint)
            if error <= CALIBRATION_ERROR:
                continue
            direction = "under" if rate > bucket.midpoint else "over"
            insights.append(
                LearningInsight(
                    type=InsightType.CONFIDENCE_CALIBRATION,
                    description=f"Suggestions in the {bucket.value}% confidence range are {direction}confident",
                    impact=InsightImpact.HIGH if error > HIGH_CALIBRATION_ERROR else InsightImpact.MEDIUM,
                    recommendation=f"Adjust confidence calibration for the {bucket.value}% range",
                    data={
                        "bucket": bucket.value,
                        "actual_rate": rate,
                        "expected_rate": bucket.midpoint,
                        "error": error,
                        "sample_size": len(outcomes),
                    },
                )
            )
        return insights

    def pattern_kind_insights(self, feedback: list[dict]) -> list[LearningInsight]:
        by_kind: dict[str, list[bool]] = defaultdict(list)
        for item in feedback:
            for kind in item["kinds"]:
                by_kind[kind].append(item["accepted"])

        insights = []
        for kind, outcomes in by_kind.items():
            if len(outcomes) < MIN_KIND_SAMPLES:
                continue
            rate = _rate(outcomes)
            data = {"pattern_kind": kind, "positive_rate": rate, "sample_size": len(outcomes)}
            if rate >= HIGH_RATE:
                insights.append(
                    LearningInsight(
                        type=InsightType.PATTERN_EFFECTIVENESS,
                        description=f"{kind.capitalize()} patterns are highly effective",
                        impact=InsightImpact.MEDIUM,
                        recommendation=f"Increase weight and confidence for {kind} patterns",
                        data=data,
                    )
                )
            elif rate <= LOW_RATE:
                insights.append(
                    LearningInsight(
                        type=InsightType.PATTERN_EFFECTIVENESS,
                        description=f"{kind.capitalize()} patterns are less effective",
                        impact=InsightImpact.MEDIUM,
                        recommendation=f"Review and improve {kind} pattern detection",
                        data=data,
                    )
                )
        return insights

    def timing_insights(self, feedback: list[dict]) -> list[LearningInsight]:
        by_hour: dict[int, list[bool]] = defaultdict(list)
        for item in feedback:
            by_hour[item["created_at"].hour].append(item["accepted"])

        rates = {
            hour: _rate(outcomes)
            for hour, outcomes in by_hour.items()
            if len(outcomes) >= MIN_HOUR_SAMPLES
        }
        best = sorted(h for h, r in rates.items() if r >= HIGH_RATE)
        worst = sorted(h for h, r in rates.items() if r <= LOW_RATE)

        insights = []
        if best:
            insights.append(
                LearningInsight(
                    type=InsightType.TIMING_PREFERENCE,
                    description=f"Suggestions are most effective during hours: {', '.join(map(str, best))}",
                    impact=InsightImpact.MEDIUM,
                    recommendation="Prioritize suggestions during high-acceptance hours",
                    data={"best_hours": best, "average_rate": sum(rates[h] for h in best) / len(best)},
                )
            )
        if worst:
            insights.append(
                LearningInsight(
                    type=InsightType.TIMING_PREFERENCE,
                    description=f"Suggestions are least effective during hours: {', '.join(map(str, worst))}",
                    impact=InsightImpact.LOW,
                    recommendation="Reduce suggestion frequency during low-acceptance hours",
                    data={"worst_hours": worst, "average_rate": sum(rates[h] for h in worst) / len(worst)},
                )
            )
        return insights

    async def generate_insights(
        self, user_id: str, feedback: Optional[list[dict]] = None
    ) -> list[LearningInsight]:
        if feedback is None:
            since = datetime.now(timezone.utc) - timedelta(days=get_settings().insight_window_days)
            feedback = await self._recent_feedback(user_id, since)
        return (
            self.category_insights(feedback)
            + self.calibration_insights(feedback)
            + self.pattern_kind_insights(feedback)
            + self.timing_insights(feedback)
        )

    async def apply_insights(self, user_id: str, insights: list[LearningInsight]) -> int:
        """Nudge pattern confidence and store timing preferences. Returns patterns updated."""
        if not insights:
            return 0

        rate = await self.learning.calculate_adaptive_learning_rate(user_id)
        patterns = await self.store.query_by_user_and_kind(user_id)
        updated = 0

        pool = await get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for insight in insights:
                    if insight.type == InsightType.CATEGORY_PREFERENCE:
                        targets = [p for p in patterns if p.category == insight.data["category"]]
                    elif insight.type == InsightType.PATTERN_EFFECTIVENESS:
                        targets = [p for p in patterns if p.kind.value == insight.data["pattern_kind"]]
                    elif insight.type == InsightType.TIMING_PREFERENCE:
                        await conn.execute(
                            """
                            INSERT INTO timing_preferences
                                (id, user_id, preference_type, timing_data, confidence, created_at)
                            VALUES ($1, $2, $3, $4, $5, $6)
                            """,
                            uuid4(),
                            UUID(user_id),
                            HOURLY_EFFECTIVENESS,
                            json.dumps(insight.data),
                            insight.data["average_rate"],
                            datetime.now(timezone.utc),
                        )
                        continue
                    else:
                        continue

                    adjustment = (insight.data["positive_rate"] - 0.5) * rate
                    for pattern in targets:
                        pattern.confidence = pattern.confidence + adjustment
                        await self.store.update_confidence(pattern.id, pattern.confidence, conn)
                        updated += 1

        return updated

    async def run_adaptive_learning(self, user_id: str) -> AdaptiveLearningResult:
        """Generate and apply insights from the recent feedback window."""
        try:
            since = datetime.now(timezone.utc) - timedelta(days=get_settings().insight_window_days)
            feedback = await self._recent_feedback(user_id, since)
            if len(feedback) < MIN_FEEDBACK_FOR_LEARNING:
                return AdaptiveLearningResult()

            insights = await self.generate_insights(user_id, feedback)
            patterns_updated = await self.apply_insights(user_id, insights)
        except Exception as e:
            logger.error("adaptive_learning_failed", user_id=user_id, error=str(e))
            return AdaptiveLearningResult()

        result = AdaptiveLearningResult(
            insights=insights,
            patterns_updated=patterns_updated,
            overall_improvement=acceptance_improvement([f["accepted"] for f in feedback]),
        )
        logger.info(
            "adaptive_learning_completed",
            user_id=user_id,
            insight_count=len(insights),
            patterns_updated=patterns_updated,
        )
        return result

    async def get_feedback_analytics(self, user_id: str) -> FeedbackSummary:
        feedback = await self._recent_feedback(user_id)
        if not feedback:
            return FeedbackSummary()

        by_kind: dict[str, list[bool]] = defaultdict(list)
        by_category: dict[str, list[bool]] = defaultdict(list)
        accepted_conf, rejected_conf = [], []
        for item in feedback:
            for kind in item["kinds"]:
                by_kind[kind].append(item["accepted"])
            by_category[item["category"]].append(item["accepted"])
            (accepted_conf if item["accepted"] else rejected_conf).append(item["confidence"])

        def breakdown(groups: dict[str, list[bool]]) -> list[KindBreakdown]:
            return [
                KindBreakdown(kind=key, total=len(v), positive=sum(v), acceptance_rate=_rate(v))
                for key, v in sorted(groups.items())
            ]

        return FeedbackSummary(
            total_feedback=len(feedback),
            positive_rate=_rate([f["accepted"] for f in feedback]),
            by_pattern_kind=breakdown(by_kind),
            by_category=breakdown(by_category),
            avg_confidence_accepted=sum(accepted_conf) / len(accepted_conf) if accepted_conf else None,
            avg_confidence_rejected=sum(rejected_conf) / len(rejected_conf) if rejected_conf else None,
        )
