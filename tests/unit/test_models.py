"""Unit tests for Pydantic models."""

import json
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from src.config import Settings
from src.models.feedback import ConfidenceBucket
from src.models.pattern import (
    MalformedPayloadError,
    Pattern,
    PatternKind,
    PeriodType,
    SequentialPayload,
    TemporalPayload,
    parse_payload,
    serialize_payload,
)
from src.models.request import ContextRequest
from src.models.scoring import ConfidenceFactors, ScoringWeights
from src.models.suggestion import Suggestion, SuggestionSource


def _temporal_payload(**overrides):
    data = {
        "task_title": "Review inbox",
        "category": "Work",
        "period_type": PeriodType.DAILY,
        "time_of_day": 9,
        "day_of_week": 1,
    }
    data.update(overrides)
    return TemporalPayload(**data)


class TestPatternConfidence:
    """Confidence is clamped to [0, 1] on construction and assignment."""

    def test_clamps_above_one(self):
        pattern = Pattern(
            id=uuid4(),
            user_id=uuid4(),
            kind=PatternKind.TEMPORAL,
            payload=_temporal_payload(),
            confidence=1.7,
        )
        assert pattern.confidence == 1.0

    def test_clamps_on_assignment(self):
        pattern = Pattern(
            id=uuid4(),
            user_id=uuid4(),
            kind=PatternKind.TEMPORAL,
            payload=_temporal_payload(),
            confidence=0.5,
        )
        pattern.confidence = -0.2
        assert pattern.confidence == 0.0

    def test_title_of_sequential_is_last_step(self):
        pattern = Pattern(
            id=uuid4(),
            user_id=uuid4(),
            kind=PatternKind.SEQUENTIAL,
            payload=SequentialPayload(
                sequence=["A", "B", "C"], support=0.4, avg_gap_minutes=30, category="Work"
            ),
        )
        assert pattern.title == "C"
        assert pattern.category == "Work"


class TestParsePayload:
    def test_parses_json_text(self):
        text = serialize_payload(_temporal_payload())
        payload = parse_payload(PatternKind.TEMPORAL, text)
        assert isinstance(payload, TemporalPayload)
        assert payload.task_title == "Review inbox"

    def test_invalid_json_raises_malformed(self):
        with pytest.raises(MalformedPayloadError) as exc_info:
            parse_payload("temporal", "{not json")
        assert exc_info.value.kind == "temporal"

    def test_kind_mismatch_raises_malformed(self):
        text = serialize_payload(_temporal_payload())
        with pytest.raises(MalformedPayloadError):
            parse_payload(PatternKind.SEQUENTIAL, text)

    def test_future_schema_version_rejected(self):
        data = json.loads(serialize_payload(_temporal_payload()))
        data["schema_version"] = 99
        with pytest.raises(MalformedPayloadError):
            parse_payload(PatternKind.TEMPORAL, data)

    def test_upgrades_unversioned_payload(self):
        legacy = {
            "taskTitle": "Water plants",
            "category": "Home",
            "periodType": "weekly",
            "time_of_day": 18,
            "day_of_week": 6,
        }
        payload = parse_payload(PatternKind.TEMPORAL, legacy)
        assert payload.task_title == "Water plants"
        assert payload.period_type == PeriodType.WEEKLY
        assert payload.schema_version == 1

    def test_sequence_needs_two_steps(self):
        with pytest.raises(MalformedPayloadError):
            parse_payload(
                PatternKind.SEQUENTIAL,
                {"sequence": ["A"], "support": 0.5, "avg_gap_minutes": 10, "category": "Work"},
            )


class TestSuggestion:
    def test_decodes_json_columns(self):
        now = datetime.now(timezone.utc)
        pattern_id = uuid4()
        suggestion = Suggestion(
            id=uuid4(),
            user_id=uuid4(),
            title="Stretch",
            category="Health",
            confidence=0.6,
            reasoning=json.dumps(["You usually stretch around 7:00"]),
            based_on=json.dumps([{"kind": "temporal", "pattern_id": str(pattern_id)}]),
            created_at=now,
            expires_at=now + timedelta(hours=2),
        )
        assert suggestion.reasoning == ["You usually stretch around 7:00"]
        assert suggestion.pattern_ids == [pattern_id]
        assert suggestion.pattern_kinds == {"temporal"}

    def test_expiry_before_creation_rejected(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            Suggestion(
                id=uuid4(),
                user_id=uuid4(),
                title="Stretch",
                category="Health",
                confidence=0.6,
                created_at=now,
                expires_at=now - timedelta(minutes=1),
            )

    def test_expiry_equal_to_creation_rejected(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            Suggestion(
                id=uuid4(),
                user_id=uuid4(),
                title="Stretch",
                category="Health",
                confidence=0.6,
                created_at=now,
                expires_at=now,
            )

    def test_learning_marker_is_not_a_pattern_kind(self):
        now = datetime.now(timezone.utc)
        suggestion = Suggestion(
            id=uuid4(),
            user_id=uuid4(),
            title="Stretch",
            category="Health",
            confidence=0.6,
            based_on=[
                SuggestionSource(kind="temporal", pattern_id=uuid4()),
                SuggestionSource(kind="learning_adjusted"),
            ],
            created_at=now,
            expires_at=now + timedelta(minutes=30),
        )
        assert suggestion.is_learning_adjusted
        assert suggestion.pattern_kinds == {"temporal"}


class TestScoringWeights:
    def test_normalized_sums_to_one(self):
        weights = ScoringWeights(frequency=2, recency=1, consistency=1,
                                 user_feedback=0, data_quality=0, context_relevance=0)
        normalized = weights.normalized()
        assert sum(normalized.model_dump().values()) == pytest.approx(1.0)
        assert normalized.frequency == pytest.approx(0.5)

    def test_combine_of_neutral_factors(self):
        weights = ScoringWeights().normalized()
        assert weights.combine(ConfidenceFactors()) == pytest.approx(0.5)


class TestConfidenceBucket:
    @pytest.mark.parametrize(
        "confidence,bucket",
        [
            (0.0, ConfidenceBucket.B0_20),
            (0.19, ConfidenceBucket.B0_20),
            (0.2, ConfidenceBucket.B20_40),
            (0.55, ConfidenceBucket.B40_60),
            (0.8, ConfidenceBucket.B80_100),
            (1.0, ConfidenceBucket.B80_100),
        ],
    )
    def test_for_confidence(self, confidence, bucket):
        assert ConfidenceBucket.for_confidence(confidence) == bucket

    def test_midpoint(self):
        assert ConfidenceBucket.B60_80.midpoint == pytest.approx(0.7)


class TestContextRequest:
    def test_to_context_fills_user_and_time(self):
        user_id = str(uuid4())
        context = ContextRequest(recent_task_titles=["  Email ", ""]).to_context(user_id)
        assert context.user_id == user_id
        assert context.current_time.tzinfo is not None
        assert context.recent_task_titles == ["Email"]

    def test_negative_completed_count_rejected(self):
        with pytest.raises(ValidationError):
            ContextRequest(completed_task_count=-1)


class TestSettingsValidation:
    @pytest.mark.parametrize(
        "field", ["expiry_default_minutes", "expiry_hybrid_minutes", "feedback_max_attempts"]
    )
    def test_non_positive_rejected(self, field):
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_defaults_are_valid(self):
        settings = Settings()
        assert settings.expiry_contextual_minutes == 30
        assert settings.feedback_max_attempts == 3
