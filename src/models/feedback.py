"""Feedback, calibration and learning-analytics models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class FeedbackType(str, Enum):
    """User verdict on a suggestion."""

    POSITIVE = "positive"
    NEGATIVE = "negative"


class FeedbackContext(BaseModel):
    """Situation at the moment feedback was given."""

    time_of_day: Optional[int] = Field(default=None, ge=0, le=23)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    location: Optional[str] = None
    device: Optional[str] = None
    activity: Optional[str] = None


class Feedback(BaseModel):
    """Immutable feedback log entry."""

    id: UUID
    user_id: UUID
    suggestion_id: UUID
    feedback_type: FeedbackType
    reason: Optional[str] = None
    context: Optional[FeedbackContext] = None
    created_at: datetime


class ConfidenceBucket(str, Enum):
    """Fixed 20%-wide confidence ranges."""

    B0_20 = "0-20"
    B20_40 = "20-40"
    B40_60 = "40-60"
    B60_80 = "60-80"
    B80_100 = "80-100"

    @classmethod
    def for_confidence(cls, confidence: float) -> "ConfidenceBucket":
        """Bucket containing confidence*100; 1.0 falls in the top bucket."""
        index = min(4, max(0, int(round(confidence * 100, 6)) // 20))
        return list(cls)[index]

    @property
    def midpoint(self) -> float:
        low, high = (int(x) for x in self.value.split("-"))
        return (low + high) / 200


class ConfidenceCalibration(BaseModel):
    """Audit row written for every feedback-driven pattern update."""

    id: UUID
    user_id: UUID
    pattern_id: Optional[UUID] = None
    pattern_types: list[str] = Field(default_factory=list)
    category: str
    original_confidence: float
    feedback_type: FeedbackType
    adjustment: float
    created_at: datetime


class ConfidenceAdjustment(BaseModel):
    """Per-bucket multiplicative factor maintained as an EMA."""

    user_id: UUID
    confidence_range: ConfidenceBucket
    adjustment_factor: float = 1.0
    sample_count: int = 0


class TimingPreference(BaseModel):
    id: UUID
    user_id: UUID
    preference_type: str
    timing_data: dict = Field(default_factory=dict)
    confidence: float = 0.5
    created_at: datetime


class CategoryPerformance(BaseModel):
    category: str
    total: int
    accepted: int
    acceptance_rate: float
    avg_confidence: float


class BucketAccuracy(BaseModel):
    bucket: ConfidenceBucket
    total: int
    accepted: int
    actual_acceptance: float  # percent
    calibration_error: float  # percent points vs bucket midpoint


class TimeOfDayPerformance(BaseModel):
    period: str
    total: int
    accepted: int
    acceptance_rate: float
    pattern_strength: float


class LearningProgress(BaseModel):
    learning_rate: float
    patterns_adjusted: int
    calibration_entries: int
    overall_improvement: Optional[float] = None


class FeedbackAnalytics(BaseModel):
    """Aggregate view of a user's feedback over an optional window."""

    total_feedback: int = 0
    positive_feedback: int = 0
    negative_feedback: int = 0
    acceptance_rate: float = 0.0  # percent
    category_performance: list[CategoryPerformance] = Field(default_factory=list)
    confidence_accuracy: list[BucketAccuracy] = Field(default_factory=list)
    time_of_day_performance: list[TimeOfDayPerformance] = Field(default_factory=list)
    learning_progress: Optional[LearningProgress] = None


class InsightType(str, Enum):
    CATEGORY_PREFERENCE = "category_preference"
    CONFIDENCE_CALIBRATION = "confidence_calibration"
    PATTERN_EFFECTIVENESS = "pattern_effectiveness"
    TIMING_PREFERENCE = "timing_preference"


class InsightImpact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class LearningInsight(BaseModel):
    """A detected regularity in feedback with a corrective recommendation."""

    type: InsightType
    description: str
    impact: InsightImpact
    recommendation: str
    data: dict = Field(default_factory=dict)


class AdaptiveLearningResult(BaseModel):
    insights: list[LearningInsight] = Field(default_factory=list)
    patterns_updated: int = 0
    overall_improvement: Optional[float] = None


class PendingFeedbackResult(BaseModel):
    processed: int = 0
    failed: int = 0


class KindBreakdown(BaseModel):
    kind: str
    total: int
    positive: int
    acceptance_rate: float


class FeedbackSummary(BaseModel):
    """Compact analytics used by the insight batch."""

    total_feedback: int = 0
    positive_rate: float = 0.0
    by_pattern_kind: list[KindBreakdown] = Field(default_factory=list)
    by_category: list[KindBreakdown] = Field(default_factory=list)
    avg_confidence_accepted: Optional[float] = None
    avg_confidence_rejected: Optional[float] = None
