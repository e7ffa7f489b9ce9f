"""Pattern store: persistence contract for patterns and suggestion expiry."""

import re
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Iterable, Optional
from uuid import UUID

import asyncpg
import structlog

from src.config import get_settings
from src.database import get_pool
from src.models.pattern import (
    MalformedPayloadError,
    Pattern,
    PatternKind,
    PeriodType,
    TemporalPattern,
    parse_payload,
    serialize_payload,
)

logger = structlog.get_logger(__name__)

# Tables reachable through query_range, with the column their range applies to
RANGE_TABLES = {
    "completed_tasks": "completed_at",
    "user_patterns": "updated_at",
    "temporal_patterns": "updated_at",
    "suggestions": "created_at",
    "suggestion_feedback": "created_at",
    "confidence_calibration": "created_at",
    "timing_preferences": "created_at",
}

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

PATTERN_COLUMNS = """
    id, user_id, pattern_type, pattern_data, confidence, frequency,
    last_occurrence, next_predicted, created_at, updated_at
"""


class PatternStore:
    """Reads and writes pattern records.

    Every method accepts an optional ``conn`` so callers can run it inside a
    transaction they already hold.
    """

    @asynccontextmanager
    async def connection(
        self, conn: Optional[asyncpg.Connection] = None
    ) -> AsyncIterator[asyncpg.Connection]:
        if conn is not None:
            yield conn
            return
        pool = await get_pool()
        async with pool.acquire() as acquired:
            yield acquired

    def _row_to_pattern(self, row: Any) -> Optional[Pattern]:
        """Build a Pattern, or None when the stored payload is corrupt."""
        try:
            payload = parse_payload(row["pattern_type"], row["pattern_data"])
        except MalformedPayloadError as e:
            logger.warning(
                "malformed_pattern_payload",
                pattern_id=str(row["id"]),
                pattern_type=row["pattern_type"],
                error=e.reason,
            )
            return None

        return Pattern(
            id=row["id"],
            user_id=row["user_id"],
            kind=PatternKind(row["pattern_type"]),
            payload=payload,
            confidence=row["confidence"],
            frequency=row["frequency"],
            last_occurrence=row["last_occurrence"],
            next_predicted=row["next_predicted"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def get_by_id(
        self, pattern_id: UUID, conn: Optional[asyncpg.Connection] = None
    ) -> Optional[Pattern]:
        async with self.connection(conn) as c:
            row = await c.fetchrow(
                f"SELECT {PATTERN_COLUMNS} FROM user_patterns WHERE id = $1",
                pattern_id,
            )
        if row is None:
            return None
        return self._row_to_pattern(row)

    async def upsert(
        self, pattern: Pattern, conn: Optional[asyncpg.Connection] = None
    ) -> Pattern:
        """Insert or replace a pattern by id, keeping the original created_at."""
        now = datetime.now(timezone.utc)

        async with self.connection(conn) as c:
            created_at = await c.fetchval(
                """
                INSERT INTO user_patterns
                (id, user_id, pattern_type, pattern_data, confidence, frequency,
                 last_occurrence, next_predicted, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $9)
                ON CONFLICT (id) DO UPDATE
                SET pattern_type = EXCLUDED.pattern_type,
                    pattern_data = EXCLUDED.pattern_data,
                    confidence = EXCLUDED.confidence,
                    frequency = EXCLUDED.frequency,
                    last_occurrence = EXCLUDED.last_occurrence,
                    next_predicted = EXCLUDED.next_predicted,
                    updated_at = EXCLUDED.updated_at
                RETURNING created_at
                """,
                pattern.id,
                pattern.user_id,
                pattern.kind.value,
                serialize_payload(pattern.payload),
                pattern.confidence,
                pattern.frequency,
                pattern.last_occurrence,
                pattern.next_predicted,
                now,
            )

        logger.debug(
            "pattern_upserted",
            pattern_id=str(pattern.id),
            pattern_type=pattern.kind.value,
            confidence=pattern.confidence,
        )
        return pattern.model_copy(update={"created_at": created_at or now, "updated_at": now})

    async def upsert_many(self, patterns: Iterable[Pattern]) -> list[Pattern]:
        """Batch upsert in one transaction."""
        patterns = list(patterns)
        if not patterns:
            return []

        pool = await get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                stored = [await self.upsert(p, conn=conn) for p in patterns]

        logger.info(
            "patterns_batch_upserted",
            user_id=str(patterns[0].user_id),
            count=len(stored),
        )
        return stored

    async def update_confidence(
        self,
        pattern_id: UUID,
        confidence: float,
        conn: Optional[asyncpg.Connection] = None,
    ) -> None:
        """Write a new confidence, clamped to [0, 1]."""
        async with self.connection(conn) as c:
            await c.execute(
                """
                UPDATE user_patterns
                SET confidence = $1, updated_at = $2
                WHERE id = $3
                """,
                min(1.0, max(0.0, confidence)),
                datetime.now(timezone.utc),
                pattern_id,
            )

    async def query_by_user_and_kind(
        self,
        user_id: str,
        kind: Optional[PatternKind] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> list[Pattern]:
        """Patterns for a user, best first (confidence, then most recently updated)."""
        query = f"SELECT {PATTERN_COLUMNS} FROM user_patterns WHERE user_id = $1"
        params: list[Any] = [UUID(user_id)]
        if kind is not None:
            query += " AND pattern_type = $2"
            params.append(kind.value)
        query += " ORDER BY confidence DESC, updated_at DESC"

        async with self.connection(conn) as c:
            rows = await c.fetch(query, *params)

        patterns = [self._row_to_pattern(row) for row in rows]
        return [p for p in patterns if p is not None]

    async def upsert_temporal_pattern(
        self, pattern: TemporalPattern, conn: Optional[asyncpg.Connection] = None
    ) -> None:
        now = datetime.now(timezone.utc)

        async with self.connection(conn) as c:
            await c.execute(
                """
                INSERT INTO temporal_patterns
                (id, user_id, task_title, task_category, time_of_day, day_of_week,
                 day_of_month, frequency, period_type, confidence, last_occurrence,
                 next_predicted, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $13)
                ON CONFLICT (id) DO UPDATE
                SET task_title = EXCLUDED.task_title,
                    frequency = EXCLUDED.frequency,
                    confidence = EXCLUDED.confidence,
                    last_occurrence = EXCLUDED.last_occurrence,
                    next_predicted = EXCLUDED.next_predicted,
                    updated_at = EXCLUDED.updated_at
                """,
                pattern.id,
                pattern.user_id,
                pattern.task_title,
                pattern.task_category,
                pattern.time_of_day,
                pattern.day_of_week,
                pattern.day_of_month,
                pattern.frequency,
                pattern.period_type.value,
                pattern.confidence,
                pattern.last_occurrence,
                pattern.next_predicted,
                now,
            )

        # The generic table carries the full payload used by scoring and generation
        await self.upsert(pattern.to_pattern(), conn=conn)

    async def get_temporal_patterns(
        self, user_id: str, category: Optional[str] = None
    ) -> list[TemporalPattern]:
        query = """
            SELECT id, user_id, task_title, task_category, time_of_day, day_of_week,
                   day_of_month, frequency, period_type, confidence, last_occurrence,
                   next_predicted, created_at, updated_at
            FROM temporal_patterns
            WHERE user_id = $1
        """
        params: list[Any] = [UUID(user_id)]
        if category is not None:
            query += " AND task_category = $2"
            params.append(category)
        query += " ORDER BY confidence DESC, frequency DESC"

        async with self.connection() as c:
            rows = await c.fetch(query, *params)

        return [
            TemporalPattern(**{**dict(row), "period_type": PeriodType(row["period_type"])})
            for row in rows
        ]

    async def query_range(
        self,
        table: str,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        filters: Optional[dict[str, Any]] = None,
        limit: Optional[int] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> list[dict]:
        """Rows of a known table for one user inside a time range, newest first.

        ``filters`` adds equality predicates on plain column names.

        Raises:
            ValueError: For an unknown table or an invalid column name
        """
        if table not in RANGE_TABLES:
            raise ValueError(f"Unknown table for range query: {table}")
        time_column = RANGE_TABLES[table]

        clauses = ["user_id = $1"]
        params: list[Any] = [UUID(user_id)]
        if since is not None:
            params.append(since)
            clauses.append(f"{time_column} >= ${len(params)}")
        if until is not None:
            params.append(until)
            clauses.append(f"{time_column} <= ${len(params)}")
        for column, value in (filters or {}).items():
            if not _IDENTIFIER.match(column):
                raise ValueError(f"Invalid column name: {column}")
            params.append(value)
            clauses.append(f"{column} = ${len(params)}")

        query = f"SELECT * FROM {table} WHERE {' AND '.join(clauses)} ORDER BY {time_column} DESC"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"

        async with self.connection(conn) as c:
            rows = await c.fetch(query, *params)

        return [dict(row) for row in rows]

    async def mark_expired(
        self,
        now: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> int:
        """Move expired or stale pending suggestions to dismissed.

        Rows are never deleted, so they stay available for analytics. Returns
        the number of suggestions transitioned.
        """
        settings = get_settings()
        now = now or datetime.now(timezone.utc)
        stale_before = now - timedelta(days=settings.stale_suggestion_days)

        query = """
            UPDATE suggestions
            SET status = 'dismissed'
            WHERE status = 'pending'
            AND (expires_at <= $1 OR created_at < $2)
        """
        params: list[Any] = [now, stale_before]
        if user_id is not None:
            query += " AND user_id = $3"
            params.append(UUID(user_id))

        async with self.connection() as c:
            result = await c.execute(query, *params)

        # result is like "UPDATE N"
        count = int(result.split()[-1])
        if count:
            logger.info("suggestions_expired", count=count, user_id=user_id)
        return count

