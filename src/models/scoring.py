"""Confidence scoring models."""

from enum import Enum

from pydantic import BaseModel, Field


class Reliability(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConfidenceFactors(BaseModel):
    """The six bounded inputs to a confidence score."""

    frequency: float = Field(default=0.5, ge=0, le=1)
    recency: float = Field(default=0.5, ge=0, le=1)
    consistency: float = Field(default=0.5, ge=0, le=1)
    user_feedback: float = Field(default=0.5, ge=0, le=1)
    data_quality: float = Field(default=0.5, ge=0, le=1)
    context_relevance: float = Field(default=0.5, ge=0, le=1)


class ScoringWeights(BaseModel):
    """Factor weights. Always normalized so they sum to 1.0."""

    frequency: float = Field(default=0.25, ge=0)
    recency: float = Field(default=0.20, ge=0)
    consistency: float = Field(default=0.20, ge=0)
    user_feedback: float = Field(default=0.15, ge=0)
    data_quality: float = Field(default=0.10, ge=0)
    context_relevance: float = Field(default=0.10, ge=0)

    def normalized(self) -> "ScoringWeights":
        values = self.model_dump()
        total = sum(values.values())
        if total <= 0:
            return ScoringWeights()
        return ScoringWeights(**{name: weight / total for name, weight in values.items()})

    def combine(self, factors: ConfidenceFactors) -> float:
        """Weighted sum of factors."""
        weights = self.model_dump()
        scores = factors.model_dump()
        return sum(weights[name] * scores[name] for name in weights)


class ConfidenceScore(BaseModel):
    """Scored confidence with its breakdown and explanation."""

    score: float = Field(ge=0, le=1)
    factors: ConfidenceFactors
    reliability: Reliability
    explanation: list[str] = Field(default_factory=list)
    data_points: int = 0
