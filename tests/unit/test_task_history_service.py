"""Unit tests for TaskHistoryService and database helpers."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import UUID, uuid4

import pytest

from src import database
from src.models.task import DEFAULT_CATEGORY, TaskPriority
from src.services.task_history_service import TaskHistoryService

USER_ID = str(uuid4())
NOW = datetime(2026, 6, 3, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def service():
    return TaskHistoryService()


class TestGetCompletedTasks:
    @pytest.mark.asyncio
    async def test_maps_rows(self, service, mock_pool):
        pool, conn = mock_pool
        conn.fetch.return_value = [
            {
                "id": uuid4(),
                "title": "Yoga",
                "category": "Health",
                "priority": "high",
                "completed_at": NOW - timedelta(days=1),
                "context": json.dumps({"location": {"place_name": "Home"}}),
            },
            {
                "id": uuid4(),
                "title": "Email",
                "category": DEFAULT_CATEGORY,
                "priority": "medium",
                "completed_at": NOW,
                "context": None,
            },
        ]

        with patch("src.services.task_history_service.get_pool", return_value=pool):
            tasks = await service.get_completed_tasks(USER_ID, until=NOW)

        assert [t.title for t in tasks] == ["Yoga", "Email"]
        assert tasks[0].priority == TaskPriority.HIGH
        assert tasks[0].context.location.place_name == "Home"
        assert tasks[1].context is None

    @pytest.mark.asyncio
    async def test_default_window(self, service, mock_pool):
        pool, conn = mock_pool

        with patch("src.services.task_history_service.get_pool", return_value=pool):
            await service.get_completed_tasks(USER_ID, until=NOW)

        query, user_uuid, since, until = conn.fetch.call_args[0]
        assert "ORDER BY completed_at ASC" in query
        assert user_uuid == UUID(USER_ID)
        assert since == NOW - timedelta(days=90)
        assert until == NOW

    @pytest.mark.asyncio
    async def test_count(self, service, mock_pool):
        pool, conn = mock_pool
        conn.fetchval.return_value = None

        with patch("src.services.task_history_service.get_pool", return_value=pool):
            assert await service.count_completed_tasks(USER_ID) == 0


class TestDatabase:
    @pytest.mark.asyncio
    async def test_get_pool_before_init(self):
        with patch.object(database, "_pool", None):
            with pytest.raises(RuntimeError):
                await database.get_pool()

    @pytest.mark.asyncio
    async def test_run_migrations_in_order(self, mock_pool, tmp_path):
        pool, conn = mock_pool
        (tmp_path / "002_second.sql").write_text("SELECT 2;")
        (tmp_path / "001_first.sql").write_text("SELECT 1;")

        with patch.object(database, "get_pool", AsyncMock(return_value=pool)):
            applied = await database.run_migrations(tmp_path)

        assert applied == 2
        assert [c[0][0] for c in conn.execute.call_args_list] == ["SELECT 1;", "SELECT 2;"]

    @pytest.mark.asyncio
    async def test_missing_migrations_directory(self, mock_pool, tmp_path):
        pool, _ = mock_pool
        with patch.object(database, "get_pool", AsyncMock(return_value=pool)):
            assert await database.run_migrations(tmp_path / "missing") == 0

    @pytest.mark.asyncio
    async def test_health_check_without_pool(self):
        with patch.object(database, "_pool", None):
            assert await database.health_check() is False
