"""Background maintenance: expiry cleanup, pending feedback and scheduled learning."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from croniter import croniter

from src.config import get_settings
from src.database import get_pool
from src.services.adaptive_learning_service import AdaptiveLearningService
from src.services.feedback_learning_service import FeedbackLearningService
from src.services.pattern_store import PatternStore

logger = structlog.get_logger(__name__)


class MaintenanceService:
    """Polls on an interval and runs adaptive learning on a cron schedule."""

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        learning: Optional[FeedbackLearningService] = None,
        adaptive: Optional[AdaptiveLearningService] = None,
    ):
        self.store = store or PatternStore()
        self.learning = learning or FeedbackLearningService(self.store)
        self.adaptive = adaptive or AdaptiveLearningService(self.store, self.learning)
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.next_learning_run: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def start(self):
        """Start the maintenance loop as an asyncio background task."""
        self._running = True
        self.next_learning_run = self._next_run(datetime.now(timezone.utc))
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("maintenance_started", next_learning_run=self.next_learning_run.isoformat())

    async def stop(self):
        """Stop the maintenance loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("maintenance_stopped")

    def _next_run(self, after: datetime) -> datetime:
        return croniter(get_settings().learning_schedule_cron, after).get_next(datetime)

    async def _poll_loop(self):
        """Main loop; one failed pass is logged and the next one still runs."""
        interval = get_settings().maintenance_poll_interval_seconds

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("maintenance_poll_error", error=str(e))

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

    async def run_once(self, now: Optional[datetime] = None) -> dict:
        """One maintenance pass: cleanup, pending feedback, then learning if due."""
        now = now or datetime.now(timezone.utc)
        expired = await self.store.mark_expired(now)
        pending = await self.learning.process_pending_feedback()

        learned_users = 0
        if self.next_learning_run is None:
            self.next_learning_run = self._next_run(now)
        if now >= self.next_learning_run:
            learned_users = await self.run_scheduled_learning(now)
            self.next_learning_run = self._next_run(now)

        return {
            "expired": expired,
            "feedback_processed": pending.processed,
            "feedback_failed": pending.failed,
            "learning_users": learned_users,
        }

    async def run_scheduled_learning(self, now: datetime) -> int:
        """Adaptive learning for every user with feedback in the insight window."""
        since = now - timedelta(days=get_settings().insight_window_days)
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT DISTINCT user_id FROM suggestion_feedback WHERE created_at >= $1",
                since,
            )

        for row in rows:
            # run_adaptive_learning logs and swallows its own failures
            await self.adaptive.run_adaptive_learning(str(row["user_id"]))

        logger.info("scheduled_learning_completed", user_count=len(rows))
        return len(rows)
