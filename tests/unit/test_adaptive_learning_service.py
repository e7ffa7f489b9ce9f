"""Unit tests for AdaptiveLearningService."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest

from src.models.feedback import InsightImpact, InsightType, LearningInsight
from src.models.pattern import Pattern, PatternKind, PeriodType, TemporalPayload
from src.services.adaptive_learning_service import AdaptiveLearningService

USER_ID = str(uuid4())
NOW = datetime(2026, 6, 3, 9, 0, tzinfo=timezone.utc)


def _item(accepted, category="Work", confidence=0.5, kinds=("temporal",), hour=9):
    return {
        "accepted": accepted,
        "created_at": NOW.replace(hour=hour),
        "category": category,
        "confidence": confidence,
        "kinds": set(kinds),
    }


def _row(feedback_type, category="Work", confidence=0.7, based_on=None, minutes=0):
    return {
        "feedback_type": feedback_type,
        "created_at": NOW + timedelta(minutes=minutes),
        "category": category,
        "confidence": confidence,
        "based_on": json.dumps(based_on if based_on is not None else [{"kind": "temporal"}]),
    }


def _pattern(category, confidence=0.6):
    return Pattern(
        id=uuid4(),
        user_id=UUID(USER_ID),
        kind=PatternKind.TEMPORAL,
        payload=TemporalPayload(
            task_title=f"{category} task",
            category=category,
            period_type=PeriodType.DAILY,
            time_of_day=9,
            day_of_week=3,
        ),
        confidence=confidence,
    )


@pytest.fixture
def store():
    store = MagicMock()
    store.query_by_user_and_kind = AsyncMock(return_value=[])
    store.update_confidence = AsyncMock()
    return store


@pytest.fixture
def learning():
    learning = MagicMock()
    learning.calculate_adaptive_learning_rate = AsyncMock(return_value=0.1)
    return learning


@pytest.fixture
def service(store, learning):
    return AdaptiveLearningService(store, learning)


class TestCategoryInsights:
    def test_high_and_low_acceptance(self, service):
        feedback = [_item(True) for _ in range(5)] + [_item(False, "Chores") for _ in range(5)]
        insights = service.category_insights(feedback)

        by_category = {i.data["category"]: i for i in insights}
        assert by_category["Work"].description == "High acceptance rate for Work suggestions"
        assert by_category["Work"].impact == InsightImpact.HIGH
        assert by_category["Chores"].description == "Low acceptance rate for Chores suggestions"
        assert by_category["Chores"].data["positive_rate"] == 0.0

    def test_needs_enough_samples(self, service):
        assert service.category_insights([_item(True) for _ in range(4)]) == []

    def test_middling_rate_ignored(self, service):
        feedback = [_item(True)] * 3 + [_item(False)] * 3
        assert service.category_insights(feedback) == []


class TestCalibrationInsights:
    def test_overconfident_bucket(self, service):
        feedback = [_item(i == 0, confidence=0.9) for i in range(3)]
        insights = service.calibration_insights(feedback)

        assert len(insights) == 1
        insight = insights[0]
        assert insight.type == InsightType.CONFIDENCE_CALIBRATION
        assert "overconfident" in insight.description
        assert insight.impact == InsightImpact.HIGH
        assert insight.data["expected_rate"] == pytest.approx(0.9)

    def test_underconfident_bucket(self, service):
        feedback = [_item(True, confidence=0.25) for _ in range(3)]
        insight = service.calibration_insights(feedback)[0]
        assert "underconfident" in insight.description

    def test_well_calibrated_bucket(self, service):
        feedback = [_item(i % 2 == 0, confidence=0.5) for i in range(4)]
        assert service.calibration_insights(feedback) == []


class TestPatternKindInsights:
    def test_ineffective_kind(self, service):
        feedback = [_item(False, kinds=("sequential",)) for _ in range(5)]
        insights = service.pattern_kind_insights(feedback)

        assert len(insights) == 1
        assert insights[0].description == "Sequential patterns are less effective"
        assert insights[0].data["pattern_kind"] == "sequential"

    def test_multi_kind_suggestion_counts_for_each(self, service):
        feedback = [_item(True, kinds=("temporal", "frequency")) for _ in range(5)]
        kinds = {i.data["pattern_kind"] for i in service.pattern_kind_insights(feedback)}
        assert kinds == {"temporal", "frequency"}


class TestTimingInsights:
    def test_best_and_worst_hours(self, service):
        feedback = [_item(True, hour=9) for _ in range(3)] + [_item(False, hour=20) for _ in range(3)]
        insights = service.timing_insights(feedback)

        assert [i.data.get("best_hours") for i in insights] == [[9], None]
        assert insights[1].data["worst_hours"] == [20]
        assert insights[1].impact == InsightImpact.LOW

    def test_sparse_hours_ignored(self, service):
        assert service.timing_insights([_item(True, hour=9), _item(True, hour=9)]) == []


class TestApplyInsights:
    @pytest.mark.asyncio
    async def test_category_insight_nudges_matching_patterns(self, service, store, mock_pool):
        pool, conn = mock_pool
        work, home = _pattern("Work", 0.6), _pattern("Home", 0.6)
        store.query_by_user_and_kind.return_value = [work, home]
        insight = LearningInsight(
            type=InsightType.CATEGORY_PREFERENCE,
            description="High acceptance rate for Work suggestions",
            impact=InsightImpact.HIGH,
            recommendation="Increase confidence and frequency for Work suggestions",
            data={"category": "Work", "positive_rate": 1.0, "sample_size": 5},
        )

        with patch("src.services.adaptive_learning_service.get_pool", return_value=pool):
            updated = await service.apply_insights(USER_ID, [insight])

        assert updated == 1
        pattern_id, confidence, used_conn = store.update_confidence.call_args[0]
        assert pattern_id == work.id
        assert confidence == pytest.approx(0.65)
        assert used_conn is conn
        assert home.confidence == 0.6

    @pytest.mark.asyncio
    async def test_timing_insight_stored(self, service, mock_pool):
        pool, conn = mock_pool
        insight = LearningInsight(
            type=InsightType.TIMING_PREFERENCE,
            description="Suggestions are most effective during hours: 9",
            impact=InsightImpact.MEDIUM,
            recommendation="Prioritize suggestions during high-acceptance hours",
            data={"best_hours": [9], "average_rate": 1.0},
        )

        with patch("src.services.adaptive_learning_service.get_pool", return_value=pool):
            updated = await service.apply_insights(USER_ID, [insight])

        assert updated == 0
        args = conn.execute.call_args[0]
        assert "INSERT INTO timing_preferences" in args[0]
        assert args[3] == "hourly_effectiveness"
        assert json.loads(args[4])["best_hours"] == [9]

    @pytest.mark.asyncio
    async def test_no_insights(self, service, learning):
        assert await service.apply_insights(USER_ID, []) == 0
        learning.calculate_adaptive_learning_rate.assert_not_called()


class TestRunAdaptiveLearning:
    @pytest.mark.asyncio
    async def test_generates_and_applies(self, service, mock_pool):
        pool, conn = mock_pool
        conn.fetch.return_value = [_row("positive", minutes=i) for i in range(6)]
        service.apply_insights = AsyncMock(return_value=2)

        with patch("src.services.adaptive_learning_service.get_pool", return_value=pool):
            result = await service.run_adaptive_learning(USER_ID)

        assert result.patterns_updated == 2
        assert any(i.type == InsightType.CATEGORY_PREFERENCE for i in result.insights)
        assert result.overall_improvement is None
        query, user_uuid, since = conn.fetch.call_args[0]
        assert "f.created_at >= $2" in query
        assert user_uuid == UUID(USER_ID)

    @pytest.mark.asyncio
    async def test_too_little_feedback(self, service, mock_pool):
        pool, conn = mock_pool
        conn.fetch.return_value = [_row("positive") for _ in range(4)]
        service.apply_insights = AsyncMock()

        with patch("src.services.adaptive_learning_service.get_pool", return_value=pool):
            result = await service.run_adaptive_learning(USER_ID)

        assert result.insights == []
        service.apply_insights.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_returns_empty_result(self, service):
        with patch("src.services.adaptive_learning_service.get_pool", side_effect=Exception("down")):
            result = await service.run_adaptive_learning(USER_ID)
        assert result.patterns_updated == 0
        assert result.insights == []


class TestFeedbackSummary:
    @pytest.mark.asyncio
    async def test_breakdowns(self, service, mock_pool):
        pool, conn = mock_pool
        conn.fetch.return_value = [
            _row("positive", "Work", 0.8, [{"kind": "hybrid"}, {"kind": "temporal"}, {"kind": "frequency"}]),
            _row("negative", "Work", 0.4, [{"kind": "sequential"}, {"kind": "learning_adjusted"}]),
            _row("positive", "Home", 0.6, [{"kind": "temporal"}]),
        ]

        with patch("src.services.adaptive_learning_service.get_pool", return_value=pool):
            summary = await service.get_feedback_analytics(USER_ID)

        assert summary.total_feedback == 3
        assert summary.positive_rate == pytest.approx(2 / 3)
        kinds = {k.kind: k for k in summary.by_pattern_kind}
        assert set(kinds) == {"temporal", "frequency", "sequential"}
        assert kinds["temporal"].positive == 2
        assert kinds["sequential"].acceptance_rate == 0.0
        assert [c.kind for c in summary.by_category] == ["Home", "Work"]
        assert summary.avg_confidence_accepted == pytest.approx(0.7)
        assert summary.avg_confidence_rejected == pytest.approx(0.4)
        query, user_uuid = conn.fetch.call_args[0]
        assert "$2" not in query

    @pytest.mark.asyncio
    async def test_empty(self, service, mock_pool):
        pool, _ = mock_pool
        with patch("src.services.adaptive_learning_service.get_pool", return_value=pool):
            summary = await service.get_feedback_analytics(USER_ID)
        assert summary.total_feedback == 0
        assert summary.avg_confidence_accepted is None
