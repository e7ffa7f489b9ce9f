"""Refresh policy: decide when the user's situation changed enough to regenerate."""

from datetime import datetime, timezone
from typing import Optional

import structlog

from src.config import get_settings
from src.models.context import UserContext
from src.models.suggestion import RefreshCheck, Suggestion
from src.services.contextual_pattern_service import haversine_m, location_key
from src.services.pattern_store import PatternStore
from src.services.suggestion_engine import SuggestionEngine

logger = structlog.get_logger(__name__)

INITIAL = "initial"
NO_CHANGE = "no_significant_change"


def location_change_km(previous: UserContext, current: UserContext) -> Optional[float]:
    """Distance moved, or None when it cannot be measured."""
    before, after = previous.location, current.location
    if before is None and after is None:
        return 0.0
    if before is None or after is None:
        return None
    if before.has_coordinates and after.has_coordinates:
        return haversine_m(before.latitude, before.longitude, after.latitude, after.longitude) / 1000
    return 0.0 if location_key(before) == location_key(after) else None


class SuggestionManager:
    """Per-session wrapper around the engine that remembers the last context."""

    def __init__(
        self,
        engine: Optional[SuggestionEngine] = None,
        store: Optional[PatternStore] = None,
    ):
        self.store = store or PatternStore()
        self.engine = engine or SuggestionEngine(store=self.store)
        self.last_context: Optional[UserContext] = None

    def check_contextual_refresh(self, context: UserContext) -> RefreshCheck:
        """Score how far the situation moved since the last generation."""
        settings = get_settings()
        previous = self.last_context
        if previous is None:
            return RefreshCheck(needs_refresh=True, reason=INITIAL, score=1.0)

        hours = abs((context.current_time - previous.current_time).total_seconds()) / 3600
        time_change = min(1.0, hours / settings.refresh_time_saturation_hours)

        km = location_change_km(previous, context)
        # A location that appeared, vanished or can't be compared counts as a full move
        location_change = 1.0 if km is None else min(1.0, km / settings.refresh_location_saturation_km)

        delta = abs(context.completed_task_count - previous.completed_task_count)
        task_change = min(1.0, delta / settings.refresh_task_saturation)

        score = (
            time_change * settings.refresh_time_weight
            + location_change * settings.refresh_location_weight
            + task_change * settings.refresh_task_weight
        )

        reasons = []
        if time_change > 0.5:
            reasons.append("time_elapsed")
        if location_change > 0.2:
            reasons.append("location_changed")
        if task_change > 0.2:
            reasons.append("tasks_completed")

        return RefreshCheck(
            needs_refresh=score > settings.refresh_threshold,
            reason=", ".join(reasons) or NO_CHANGE,
            score=min(1.0, score),
        )

    async def refresh_suggestions(self, context: UserContext) -> list[Suggestion]:
        """Regenerate when the context moved enough, otherwise serve active suggestions."""
        check = self.check_contextual_refresh(context)
        if check.needs_refresh:
            logger.info(
                "suggestions_refreshing",
                user_id=context.user_id,
                reason=check.reason,
                score=round(check.score, 3),
            )
            suggestions = await self.engine.generate_suggestions(context)
            self.last_context = context
            return suggestions

        try:
            return await self.engine.get_active_suggestions(
                context.user_id,
                limit=get_settings().max_suggestions,
                now=context.current_time,
            )
        except Exception as e:
            logger.error("active_suggestions_read_failed", user_id=context.user_id, error=str(e))
            return []

    async def cleanup_expired_suggestions(
        self, user_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> int:
        """Dismiss expired or stale pending suggestions. Safe to call repeatedly."""
        return await self.store.mark_expired(now or datetime.now(timezone.utc), user_id=user_id)
