"""Models package exports."""

from src.models.context import UserContext
from src.models.feedback import Feedback, FeedbackContext, FeedbackType
from src.models.pattern import MalformedPayloadError, Pattern, PatternKind, PeriodType
from src.models.request import ContextRequest, FeedbackRequest
from src.models.response import ErrorResponse
from src.models.scoring import ConfidenceScore, ScoringWeights
from src.models.suggestion import (
    RefreshCheck,
    Suggestion,
    SuggestionCandidate,
    SuggestionSource,
    SuggestionStatus,
)
from src.models.task import CompletedTaskEvent, TaskPriority

__all__ = [
    "CompletedTaskEvent",
    "ConfidenceScore",
    "ContextRequest",
    "ErrorResponse",
    "Feedback",
    "FeedbackContext",
    "FeedbackRequest",
    "FeedbackType",
    "MalformedPayloadError",
    "Pattern",
    "PatternKind",
    "PeriodType",
    "RefreshCheck",
    "ScoringWeights",
    "Suggestion",
    "SuggestionCandidate",
    "SuggestionSource",
    "SuggestionStatus",
    "TaskPriority",
    "UserContext",
]
