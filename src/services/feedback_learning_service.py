"""Feedback learning loop: turns accept/reject feedback into confidence updates."""

import json
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from src.config import get_settings
from src.database import get_pool
from src.models.feedback import (
    BucketAccuracy,
    CategoryPerformance,
    ConfidenceBucket,
    Feedback,
    FeedbackAnalytics,
    FeedbackContext,
    FeedbackType,
    LearningProgress,
    PendingFeedbackResult,
    TimeOfDayPerformance,
)
from src.models.suggestion import LEARNING_ADJUSTED, Suggestion, SuggestionSource, SuggestionStatus
from src.services.pattern_store import PatternStore
from src.services.temporal_pattern_service import day_of_week

logger = structlog.get_logger(__name__)

SUGGESTION_TIMING = "suggestion_timing"
NEW_USER_FEEDBACK = 10
ESTABLISHED_USER_FEEDBACK = 100
MIN_IMPROVEMENT_SAMPLES = 10


class SuggestionNotFoundError(Exception):
    """Feedback referenced a suggestion that does not exist for the user."""

    def __init__(self, suggestion_id: UUID):
        self.suggestion_id = str(suggestion_id)
        super().__init__(f"Suggestion {suggestion_id} not found")


def pattern_adjustment(
    feedback_type: FeedbackType,
    pattern_confidence: float,
    suggestion_confidence: float,
    learning_rate: float,
) -> float:
    """Signed confidence delta for one pattern.

    Weighted by how close the pattern's confidence is to the suggestion's.
    Positive feedback has diminishing returns near 1; negative feedback bites
    harder the more confident the pattern was.
    """
    weight = 1 - abs(pattern_confidence - suggestion_confidence)
    if feedback_type == FeedbackType.POSITIVE:
        return learning_rate * weight * (1 - pattern_confidence)
    return -learning_rate * weight * (1 + pattern_confidence)


def updated_pattern_confidence(
    feedback_type: FeedbackType,
    pattern_confidence: float,
    suggestion_confidence: float,
    learning_rate: float,
) -> float:
    delta = pattern_adjustment(feedback_type, pattern_confidence, suggestion_confidence, learning_rate)
    return min(1.0, max(0.0, pattern_confidence + delta))


def incoming_bucket_factor(feedback_type: FeedbackType, learning_rate: float) -> float:
    if feedback_type == FeedbackType.POSITIVE:
        return 1 + learning_rate / 2
    return 1 - learning_rate / 2


def preference_factor(positive: int, total: int) -> float:
    """Multiplier in [0.8, 1.2] from a positive ratio."""
    return positive / total * 0.4 + 0.8


def time_period(hour: int) -> str:
    if 6 <= hour <= 11:
        return "Morning"
    if 12 <= hour <= 17:
        return "Afternoon"
    if 18 <= hour <= 22:
        return "Evening"
    return "Night"


def acceptance_improvement(outcomes: list[bool]) -> Optional[float]:
    """Positive rate of the newer half minus the older half, oldest first."""
    if len(outcomes) < MIN_IMPROVEMENT_SAMPLES:
        return None
    middle = len(outcomes) // 2
    earlier, recent = outcomes[:middle], outcomes[middle:]
    return sum(recent) / len(recent) - sum(earlier) / len(earlier)


def _row_to_feedback(row) -> Feedback:
    context = None
    if row.get("time_of_day") is not None or row.get("day_of_week") is not None:
        context = FeedbackContext(
            time_of_day=row.get("time_of_day"),
            day_of_week=row.get("day_of_week"),
            location=row.get("location"),
            device=row.get("device"),
            activity=row.get("activity"),
        )
    return Feedback(
        id=row["id"],
        user_id=row["user_id"],
        suggestion_id=row["suggestion_id"],
        feedback_type=FeedbackType(row["feedback_type"]),
        reason=row["reason"],
        context=context,
        created_at=row["created_at"],
    )


class FeedbackLearningService:
    """Records feedback and applies what it teaches to patterns and future suggestions."""

    def __init__(self, store: Optional[PatternStore] = None):
        self.store = store or PatternStore()

    async def collect_feedback(
        self,
        user_id: str,
        suggestion_id: UUID,
        feedback_type: FeedbackType,
        reason: Optional[str] = None,
        context: Optional[FeedbackContext] = None,
    ) -> Feedback:
        """Append feedback for a suggestion and learn from it.

        The feedback row is committed before learning runs. If learning fails
        the row stays unprocessed and the maintenance batch retries it.

        Args:
            user_id: Owner of the suggestion
            suggestion_id: The suggestion being rated
            feedback_type: Positive (accepted) or negative (rejected)
            reason: Optional free-text reason from the user
            context: When and where the feedback was given, used for timing
                preferences

        Returns:
            The stored feedback record

        Raises:
            SuggestionNotFoundError: If the suggestion does not belong to the user
        """
        feedback = Feedback(
            id=uuid4(),
            user_id=UUID(user_id),
            suggestion_id=suggestion_id,
            feedback_type=feedback_type,
            reason=reason,
            context=context,
            created_at=datetime.now(timezone.utc),
        )

        pool = await get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                exists = await conn.fetchval(
                    "SELECT 1 FROM suggestions WHERE id = $1 AND user_id = $2",
                    suggestion_id,
                    feedback.user_id,
                )
                if not exists:
                    raise SuggestionNotFoundError(suggestion_id)

                await conn.execute(
                    """
                    INSERT INTO suggestion_feedback
                        (id, user_id, suggestion_id, feedback_type, reason, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    feedback.id,
                    feedback.user_id,
                    suggestion_id,
                    feedback_type.value,
                    reason,
                    feedback.created_at,
                )
                if context is not None:
                    await conn.execute(
                        """
                        INSERT INTO feedback_context
                            (feedback_id, time_of_day, day_of_week, location, device, activity)
                        VALUES ($1, $2, $3, $4, $5, $6)
                        """,
                        feedback.id,
                        context.time_of_day,
                        context.day_of_week,
                        context.location,
                        context.device,
                        context.activity,
                    )

        logger.info(
            "feedback_collected",
            user_id=user_id,
            suggestion_id=str(suggestion_id),
            feedback_type=feedback_type.value,
        )

        try:
            await self.process_feedback(feedback)
        except Exception as e:
            logger.error(
                "feedback_processing_failed",
                feedback_id=str(feedback.id),
                error=str(e),
            )
        return feedback

    async def calculate_adaptive_learning_rate(
        self, user_id: str, conn: Optional[asyncpg.Connection] = None
    ) -> float:
        """Higher for new users, lower for established ones, scaled by consistency."""
        settings = get_settings()
        async with self.store.connection(conn) as c:
            row = await c.fetchrow(
                """
                SELECT
                    (SELECT COUNT(*) FROM suggestion_feedback WHERE user_id = $1) AS total_feedback,
                    (SELECT COUNT(*) FROM (
                        SELECT suggestion_id FROM suggestion_feedback
                        WHERE user_id = $1
                        GROUP BY suggestion_id
                        HAVING COUNT(DISTINCT feedback_type) = 1
                    ) consistent) AS consistent_feedback
                """,
                UUID(user_id),
            )

        total = row["total_feedback"] if row else 0
        if not total:
            return settings.base_learning_rate

        consistency_ratio = row["consistent_feedback"] / total
        base = settings.base_learning_rate
        if total < NEW_USER_FEEDBACK:
            base = 0.15
        elif total > ESTABLISHED_USER_FEEDBACK:
            base = 0.05

        rate = base * (0.5 + 0.5 * consistency_ratio)
        return min(settings.max_learning_rate, max(settings.min_learning_rate, rate))

    async def process_feedback(self, feedback: Feedback) -> int:
        """Apply one feedback event atomically. Returns the number of patterns updated.

        Raises:
            SuggestionNotFoundError: If the referenced suggestion is gone
        """
        user_id = str(feedback.user_id)
        pool = await get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    SELECT id, user_id, title, category, priority, confidence, reasoning,
                           based_on, estimated_minutes, optimal_time, status, created_at, expires_at
                    FROM suggestions WHERE id = $1 AND user_id = $2
                    """,
                    feedback.suggestion_id,
                    feedback.user_id,
                )
                if row is None:
                    raise SuggestionNotFoundError(feedback.suggestion_id)
                suggestion = Suggestion(**dict(row))

                new_status = (
                    SuggestionStatus.ACCEPTED
                    if feedback.feedback_type == FeedbackType.POSITIVE
                    else SuggestionStatus.REJECTED
                )
                await conn.execute(
                    "UPDATE suggestions SET status = $2 WHERE id = $1 AND status = 'pending'",
                    suggestion.id,
                    new_status.value,
                )

                rate = await self.calculate_adaptive_learning_rate(user_id, conn)
                updated = await self._update_patterns(conn, suggestion, feedback, rate)
                await self._update_bucket(conn, user_id, suggestion.confidence, feedback.feedback_type, rate)
                if feedback.context is not None:
                    await self._record_timing(conn, suggestion, feedback)
                await self._update_category_preference(conn, user_id, suggestion.category)

                await conn.execute(
                    """
                    INSERT INTO feedback_processing (feedback_id, learning_rate, patterns_updated, processed_at)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (feedback_id) DO NOTHING
                    """,
                    feedback.id,
                    rate,
                    updated,
                    datetime.now(timezone.utc),
                )

        logger.info(
            "feedback_processed",
            feedback_id=str(feedback.id),
            user_id=user_id,
            learning_rate=rate,
            patterns_updated=updated,
        )
        return updated

    async def _update_patterns(
        self,
        conn: asyncpg.Connection,
        suggestion: Suggestion,
        feedback: Feedback,
        rate: float,
    ) -> int:
        updated = 0
        for pattern_id in suggestion.pattern_ids:
            pattern = await self.store.get_by_id(pattern_id, conn)
            if pattern is None:
                logger.warning(
                    "feedback_pattern_missing",
                    pattern_id=str(pattern_id),
                    suggestion_id=str(suggestion.id),
                )
                continue

            new_confidence = updated_pattern_confidence(
                feedback.feedback_type, pattern.confidence, suggestion.confidence, rate
            )
            await self.store.update_confidence(pattern_id, new_confidence, conn)
            await conn.execute(
                """
                INSERT INTO confidence_calibration
                    (id, user_id, pattern_id, pattern_types, category,
                     original_confidence, feedback_type, adjustment, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                uuid4(),
                suggestion.user_id,
                pattern_id,
                json.dumps([pattern.kind.value]),
                suggestion.category,
                pattern.confidence,
                feedback.feedback_type.value,
                new_confidence - pattern.confidence,
                datetime.now(timezone.utc),
            )
            updated += 1
        return updated

    async def _update_bucket(
        self,
        conn: asyncpg.Connection,
        user_id: str,
        confidence: float,
        feedback_type: FeedbackType,
        rate: float,
    ) -> None:
        """EMA of the bucket factor; a new bucket starts at the incoming value."""
        settings = get_settings()
        await conn.execute(
            """
            INSERT INTO confidence_adjustments
                (user_id, confidence_range, adjustment_factor, sample_count, updated_at)
            VALUES ($1, $2, $3, 1, $5)
            ON CONFLICT (user_id, confidence_range) DO UPDATE
            SET adjustment_factor = confidence_adjustments.adjustment_factor * $4 + $3 * (1 - $4),
                sample_count = confidence_adjustments.sample_count + 1,
                updated_at = $5
            """,
            UUID(user_id),
            ConfidenceBucket.for_confidence(confidence).value,
            incoming_bucket_factor(feedback_type, rate),
            settings.calibration_ema_decay,
            datetime.now(timezone.utc),
        )

    async def _record_timing(
        self, conn: asyncpg.Connection, suggestion: Suggestion, feedback: Feedback
    ) -> None:
        timing_data = {
            "time_of_day": feedback.context.time_of_day,
            "day_of_week": feedback.context.day_of_week,
            "category": suggestion.category,
            "feedback_type": feedback.feedback_type.value,
            "suggestion_confidence": suggestion.confidence,
        }
        await conn.execute(
            """
            INSERT INTO timing_preferences (id, user_id, preference_type, timing_data, confidence, created_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            uuid4(),
            suggestion.user_id,
            SUGGESTION_TIMING,
            json.dumps(timing_data),
            0.8 if feedback.feedback_type == FeedbackType.POSITIVE else 0.2,
            datetime.now(timezone.utc),
        )

    async def _update_category_preference(
        self, conn: asyncpg.Connection, user_id: str, category: str
    ) -> None:
        """Store the category's acceptance rate; other categories are left as they are."""
        stats = await conn.fetchrow(
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
        if not stats or not stats["total"]:
            return

        await conn.execute(
            """
            INSERT INTO user_preferences (user_id, category_preferences, updated_at)
            VALUES ($1, jsonb_build_object($2::text, $3::float8), $4)
            ON CONFLICT (user_id) DO UPDATE
            SET category_preferences =
                    user_preferences.category_preferences || jsonb_build_object($2::text, $3::float8),
                updated_at = $4
            """,
            UUID(user_id),
            category,
            stats["positive"] / stats["total"],
            datetime.now(timezone.utc),
        )

    async def apply_learning_adjustments(
        self,
        user_id: str,
        suggestions: list[Suggestion],
        now: Optional[datetime] = None,
    ) -> list[Suggestion]:
        """Rescale suggestion confidence by bucket, category and timing history.

        Returns the input unchanged if the learning tables cannot be read.
        """
        settings = get_settings()
        now = now or datetime.now(timezone.utc)
        if not suggestions:
            return suggestions

        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                bucket_rows = await conn.fetch(
                    "SELECT confidence_range, adjustment_factor FROM confidence_adjustments WHERE user_id = $1",
                    UUID(user_id),
                )
                category_rows = await conn.fetch(
                    """
                    SELECT s.category,
                           COUNT(*) AS total,
                           COUNT(*) FILTER (WHERE f.feedback_type = 'positive') AS accepted,
                           AVG(s.confidence) AS avg_confidence
                    FROM suggestion_feedback f
                    JOIN suggestions s ON s.id = f.suggestion_id
                    WHERE f.user_id = $1
                    GROUP BY s.category
                    HAVING COUNT(*) >= $2
                    """,
                    UUID(user_id),
                    settings.min_category_samples,
                )
                timing_rows = await conn.fetch(
                    """
                    SELECT timing_data FROM timing_preferences
                    WHERE user_id = $1 AND preference_type = $2
                    ORDER BY created_at DESC
                    LIMIT $3
                    """,
                    UUID(user_id),
                    SUGGESTION_TIMING,
                    settings.timing_history_limit,
                )
        except Exception as e:
            logger.error("learning_adjustment_lookup_failed", user_id=user_id, error=str(e))
            return suggestions

        bucket_factors = {r["confidence_range"]: r["adjustment_factor"] for r in bucket_rows}

        category_factors = {}
        for r in category_rows:
            acceptance = r["accepted"] / r["total"]
            if acceptance > 0:
                category_factors[r["category"]] = acceptance / max(0.1, r["avg_confidence"])
            else:
                category_factors[r["category"]] = 0.8

        hour_counts: dict[int, list[int]] = defaultdict(lambda: [0, 0])
        day_counts: dict[int, list[int]] = defaultdict(lambda: [0, 0])
        for r in timing_rows:
            data = r["timing_data"]
            try:
                if isinstance(data, (str, bytes)):
                    data = json.loads(data)
            except json.JSONDecodeError as e:
                logger.warning("malformed_timing_preference", user_id=user_id, error=str(e))
                continue
            if not isinstance(data, dict):
                logger.warning(
                    "malformed_timing_preference",
                    user_id=user_id,
                    error=f"expected an object, got {type(data).__name__}",
                )
                continue
            positive = 1 if data.get("feedback_type") == FeedbackType.POSITIVE.value else 0
            if data.get("time_of_day") is not None:
                hour_counts[data["time_of_day"]][0] += positive
                hour_counts[data["time_of_day"]][1] += 1
            if data.get("day_of_week") is not None:
                day_counts[data["day_of_week"]][0] += positive
                day_counts[data["day_of_week"]][1] += 1

        timing_factor = 1.0
        for counts in (hour_counts.get(now.hour), day_counts.get(day_of_week(now))):
            if counts and counts[1] >= settings.min_timing_samples:
                timing_factor *= preference_factor(counts[0], counts[1])

        adjusted = []
        for suggestion in suggestions:
            factor = bucket_factors.get(ConfidenceBucket.for_confidence(suggestion.confidence).value, 1.0)
            factor *= category_factors.get(suggestion.category, 1.0)
            factor *= timing_factor

            confidence = min(
                settings.adjusted_confidence_max,
                max(settings.adjusted_confidence_min, suggestion.confidence * factor),
            )
            based_on = list(suggestion.based_on)
            if factor != 1.0 and not suggestion.is_learning_adjusted:
                based_on.append(SuggestionSource(kind=LEARNING_ADJUSTED))
            adjusted.append(suggestion.model_copy(update={"confidence": confidence, "based_on": based_on}))

        return adjusted

    async def generate_feedback_analytics(
        self,
        user_id: str,
        timeframe: Optional[tuple[datetime, datetime]] = None,
    ) -> FeedbackAnalytics:
        """Acceptance, calibration and timing statistics over an optional window."""
        params: list = [UUID(user_id)]
        time_filter = ""
        if timeframe is not None:
            params.extend(timeframe)
            time_filter = " AND f.created_at BETWEEN $2 AND $3"

        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT f.feedback_type, f.created_at, s.category, s.confidence, fc.time_of_day
                FROM suggestion_feedback f
                JOIN suggestions s ON s.id = f.suggestion_id
                LEFT JOIN feedback_context fc ON fc.feedback_id = f.id
                WHERE f.user_id = $1{time_filter}
                ORDER BY f.created_at ASC
                """,
                *params,
            )
            calibration = await conn.fetchrow(
                """
                SELECT COUNT(*) AS entries, COUNT(DISTINCT pattern_id) AS patterns
                FROM confidence_calibration WHERE user_id = $1
                """,
                UUID(user_id),
            )
            rate = await self.calculate_adaptive_learning_rate(user_id, conn)

        outcomes = [r["feedback_type"] == FeedbackType.POSITIVE.value for r in rows]
        total = len(outcomes)
        positive = sum(outcomes)

        by_category: dict[str, list] = defaultdict(list)
        by_bucket: dict[ConfidenceBucket, list[bool]] = defaultdict(list)
        by_period: dict[str, list[bool]] = defaultdict(list)
        for row, accepted in zip(rows, outcomes):
            by_category[row["category"]].append((accepted, row["confidence"]))
            by_bucket[ConfidenceBucket.for_confidence(row["confidence"])].append(accepted)
            if row["time_of_day"] is not None:
                by_period[time_period(row["time_of_day"])].append(accepted)

        category_performance = [
            CategoryPerformance(
                category=category,
                total=len(items),
                accepted=sum(1 for a, _ in items if a),
                acceptance_rate=sum(1 for a, _ in items if a) / len(items) * 100,
                avg_confidence=sum(c for _, c in items) / len(items),
            )
            for category, items in by_category.items()
        ]

        confidence_accuracy = []
        for bucket in ConfidenceBucket:
            items = by_bucket.get(bucket)
            if not items:
                continue
            actual = sum(items) / len(items) * 100
            confidence_accuracy.append(
                BucketAccuracy(
                    bucket=bucket,
                    total=len(items),
                    accepted=sum(items),
                    actual_acceptance=actual,
                    calibration_error=abs(actual - bucket.midpoint * 100),
                )
            )

        time_of_day_performance = [
            TimeOfDayPerformance(
                period=period,
                total=len(items),
                accepted=sum(items),
                acceptance_rate=sum(items) / len(items) * 100,
                pattern_strength=0.8 if len(items) >= 5 else 0.4,
            )
            for period, items in by_period.items()
        ]

        return FeedbackAnalytics(
            total_feedback=total,
            positive_feedback=positive,
            negative_feedback=total - positive,
            acceptance_rate=positive / total * 100 if total else 0.0,
            category_performance=category_performance,
            confidence_accuracy=confidence_accuracy,
            time_of_day_performance=time_of_day_performance,
            learning_progress=LearningProgress(
                learning_rate=rate,
                patterns_adjusted=calibration["patterns"] if calibration else 0,
                calibration_entries=calibration["entries"] if calibration else 0,
                overall_improvement=acceptance_improvement(outcomes),
            ),
        )

    async def get_learning_insights(self, user_id: str) -> list[str]:
        """Plain-language observations derived from the analytics."""
        analytics = await self.generate_feedback_analytics(user_id)
        insights = []
        if not analytics.total_feedback:
            return insights

        if analytics.acceptance_rate > 80:
            insights.append("Suggestions are highly accurate and closely match your preferences.")
        elif analytics.acceptance_rate < 50:
            insights.append("Suggestions are still adapting to your preferences. Feedback keeps improving them.")

        if analytics.category_performance:
            best = max(analytics.category_performance, key=lambda c: c.acceptance_rate)
            if best.acceptance_rate > 70:
                insights.append(
                    f"Suggestions work best for {best.category} tasks ({best.acceptance_rate:.1f}% accepted)."
                )

        if analytics.time_of_day_performance:
            best_time = max(analytics.time_of_day_performance, key=lambda t: t.acceptance_rate)
            if best_time.acceptance_rate > 70:
                insights.append(
                    f"You accept more suggestions in the {best_time.period.lower()}."
                )

        if any(b.calibration_error > 20 for b in analytics.confidence_accuracy):
            insights.append("Confidence estimates are being recalibrated against your actual choices.")

        return insights

    async def process_pending_feedback(self, limit: Optional[int] = None) -> PendingFeedbackResult:
        """Process feedback rows that have no processing marker yet, oldest first.

        Each failure is counted in feedback_failures; rows that reached
        feedback_max_attempts are no longer selected.
        """
        settings = get_settings()
        limit = limit or settings.pending_feedback_batch_size
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT f.id, f.user_id, f.suggestion_id, f.feedback_type, f.reason, f.created_at,
                       fc.time_of_day, fc.day_of_week, fc.location, fc.device, fc.activity
                FROM suggestion_feedback f
                LEFT JOIN feedback_context fc ON fc.feedback_id = f.id
                LEFT JOIN feedback_processing p ON p.feedback_id = f.id
                LEFT JOIN feedback_failures ff ON ff.feedback_id = f.id
                WHERE p.feedback_id IS NULL AND COALESCE(ff.attempts, 0) < $2
                ORDER BY f.created_at ASC
                LIMIT $1
                """,
                limit,
                settings.feedback_max_attempts,
            )

        result = PendingFeedbackResult()
        for row in rows:
            feedback = _row_to_feedback(dict(row))
            try:
                await self.process_feedback(feedback)
                result.processed += 1
            except Exception as e:
                logger.error(
                    "pending_feedback_failed",
                    feedback_id=str(feedback.id),
                    error=str(e),
                )
                result.failed += 1
                await self._record_failed_attempt(feedback.id, str(e))

        if rows:
            logger.info("pending_feedback_processed", processed=result.processed, failed=result.failed)
        return result

    async def _record_failed_attempt(self, feedback_id: UUID, error: str) -> None:
        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                attempts = await conn.fetchval(
                    """
                    INSERT INTO feedback_failures (feedback_id, attempts, last_error, last_attempt_at)
                    VALUES ($1, 1, $2, $3)
                    ON CONFLICT (feedback_id) DO UPDATE SET
                        attempts = feedback_failures.attempts + 1,
                        last_error = EXCLUDED.last_error,
                        last_attempt_at = EXCLUDED.last_attempt_at
                    RETURNING attempts
                    """,
                    feedback_id,
                    error,
                    datetime.now(timezone.utc),
                )
        except Exception as e:
            logger.error("feedback_failure_record_failed", feedback_id=str(feedback_id), error=str(e))
            return

        if attempts is not None and attempts >= get_settings().feedback_max_attempts:
            logger.warning("feedback_processing_abandoned", feedback_id=str(feedback_id), attempts=attempts)
