"""Read-only access to the user's completed task history."""

import json
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import structlog

from src.config import get_settings
from src.database import get_pool
from src.models.task import CompletedTaskEvent, TaskContext, TaskPriority

logger = structlog.get_logger(__name__)


class TaskHistoryService:
    """Loads CompletedTaskEvent records written by the task collaborator."""

    async def get_completed_tasks(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[CompletedTaskEvent]:
        """Completed tasks in chronological order.

        Defaults to the configured analysis window ending now.
        """
        settings = get_settings()
        until = until or datetime.now(timezone.utc)
        since = since or until - timedelta(days=settings.analysis_window_days)
        pool = await get_pool()

        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, title, category, priority, completed_at, context
                FROM completed_tasks
                WHERE user_id = $1 AND completed_at BETWEEN $2 AND $3
                ORDER BY completed_at ASC
                """,
                UUID(user_id),
                since,
                until,
            )

        events = []
        for row in rows:
            context = row["context"]
            if isinstance(context, str):
                context = json.loads(context)
            events.append(
                CompletedTaskEvent(
                    id=row["id"],
                    title=row["title"],
                    category=row["category"],
                    priority=TaskPriority(row["priority"]),
                    completed_at=row["completed_at"],
                    context=TaskContext(**context) if context else None,
                )
            )

        logger.debug("completed_tasks_loaded", user_id=user_id, count=len(events))
        return events

    async def count_completed_tasks(self, user_id: str) -> int:
        pool = await get_pool()
        async with pool.acquire() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM completed_tasks WHERE user_id = $1",
                UUID(user_id),
            )
        return count or 0
