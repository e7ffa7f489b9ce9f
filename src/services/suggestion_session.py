"""Per-user wiring of the suggestion services around shared dependencies."""

import random
from typing import Optional

from src.config import get_settings
from src.services.adaptive_learning_service import AdaptiveLearningService
from src.services.confidence_scoring import ConfidenceScoringService
from src.services.contextual_pattern_service import ContextualPatternService
from src.services.feedback_learning_service import FeedbackLearningService
from src.services.frequency_pattern_service import FrequencyPatternService
from src.services.pattern_store import PatternStore
from src.services.sequential_pattern_service import SequentialPatternService
from src.services.suggestion_engine import SuggestionEngine
from src.services.suggestion_manager import SuggestionManager
from src.services.task_history_service import TaskHistoryService
from src.services.temporal_pattern_service import TemporalPatternService


class SuggestionSession:
    """One user's set of services sharing a store and a random source.

    The manager keeps the last context it generated for, so a session should
    live as long as the user's client session does.
    """

    def __init__(
        self,
        user_id: str,
        rng: Optional[random.Random] = None,
        store: Optional[PatternStore] = None,
    ):
        self.user_id = user_id
        self.rng = rng or random.Random(get_settings().suggestion_random_seed)
        self.store = store or PatternStore()
        self.history = TaskHistoryService()

        self.temporal = TemporalPatternService(self.store)
        self.sequential = SequentialPatternService(self.store)
        self.contextual = ContextualPatternService(self.store, self.rng)
        self.frequency = FrequencyPatternService(self.store)
        self.scoring = ConfidenceScoringService()
        self.feedback = FeedbackLearningService(self.store)
        self.engine = SuggestionEngine(
            store=self.store,
            temporal=self.temporal,
            sequential=self.sequential,
            contextual=self.contextual,
            frequency=self.frequency,
            scoring=self.scoring,
            learning=self.feedback,
            rng=self.rng,
            history=self.history,
        )
        self.manager = SuggestionManager(engine=self.engine, store=self.store)
        self.adaptive = AdaptiveLearningService(store=self.store, learning=self.feedback)

    async def mine_patterns(self) -> dict[str, int]:
        return await self.engine.mine_patterns(self.user_id)
