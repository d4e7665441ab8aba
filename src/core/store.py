"""Persistent pattern, automation and notification store using SQLite."""

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Optional

import aiosqlite
import structlog
from pydantic import TypeAdapter

from core.errors import PatternNotFoundError
from core.models import (
    Automation,
    Notification,
    Pattern,
    PatternPayload,
    PatternType,
    ReplayPayload,
)

logger = structlog.get_logger()

_pattern_payload = TypeAdapter(PatternPayload)
_replay_payload = TypeAdapter(ReplayPayload)


class PatternStore:
    """
    Key-addressed store for patterns, automations and notifications.

    All writes go through a single connection guarded by an asyncio lock;
    counter updates are single UPDATE statements so concurrent trackers
    never lose an increment.
    """

    def __init__(self, db_path: str = "./data/patterns.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create tables."""
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS patterns (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                confidence REAL DEFAULT 0,
                occurrence_count INTEGER DEFAULT 1,
                first_seen REAL NOT NULL,
                last_seen REAL NOT NULL,
                dismissed INTEGER DEFAULT 0,
                intent_summary TEXT,
                intent_summary_detailed TEXT,
                summary_generated_at REAL
            );

            CREATE TABLE IF NOT EXISTS automations (
                id TEXT PRIMARY KEY,
                pattern_id TEXT,
                name TEXT NOT NULL,
                description TEXT,
                payload_json TEXT NOT NULL,
                intent_summary TEXT,
                execution_count INTEGER DEFAULT 0,
                last_executed REAL,
                created_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                severity TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                pattern_id TEXT,
                created_at REAL NOT NULL,
                dismissed INTEGER DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_patterns_last_seen ON patterns(last_seen);
            CREATE INDEX IF NOT EXISTS idx_patterns_type ON patterns(type, dismissed);
            CREATE INDEX IF NOT EXISTS idx_notifications_pattern ON notifications(pattern_id, dismissed);
        """)
        await self._db.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    # ==================== Patterns ====================

    async def put_pattern(self, pattern: Pattern) -> None:
        """Insert or replace a pattern record."""
        async with self._lock:
            await self._db.execute(
                """
                INSERT OR REPLACE INTO patterns (
                    id, type, payload_json, confidence, occurrence_count,
                    first_seen, last_seen, dismissed, intent_summary,
                    intent_summary_detailed, summary_generated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    pattern.id,
                    pattern.type.value,
                    pattern.payload.model_dump_json(),
                    pattern.confidence,
                    pattern.occurrence_count,
                    pattern.first_seen,
                    pattern.last_seen,
                    int(pattern.dismissed),
                    pattern.intent_summary,
                    pattern.intent_summary_detailed,
                    pattern.summary_generated_at,
                ),
            )
            await self._db.commit()

    async def get_pattern(self, pattern_id: str) -> Optional[Pattern]:
        async with self._db.execute(
            "SELECT * FROM patterns WHERE id = ?", (pattern_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_pattern(row) if row else None

    async def delete_pattern(self, pattern_id: str) -> bool:
        async with self._lock:
            cursor = await self._db.execute(
                "DELETE FROM patterns WHERE id = ?", (pattern_id,)
            )
            await self._db.commit()
            return cursor.rowcount > 0

    async def list_patterns(
        self,
        include_dismissed: bool = False,
        pattern_type: Optional[PatternType] = None,
        limit: Optional[int] = None,
    ) -> list[Pattern]:
        """List patterns, most recently seen first."""
        query = "SELECT * FROM patterns WHERE 1 = 1"
        params: list[Any] = []
        if not include_dismissed:
            query += " AND dismissed = 0"
        if pattern_type is not None:
            query += " AND type = ?"
            params.append(pattern_type.value)
        query += " ORDER BY last_seen DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with self._db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_pattern(row) for row in rows]

    async def increment_occurrence(
        self,
        pattern_id: str,
        seen_at: Optional[float] = None,
    ) -> int:
        """Atomically bump occurrence_count and last_seen; returns the new count."""
        seen_at = seen_at or time.time()
        async with self._lock:
            cursor = await self._db.execute(
                """
                UPDATE patterns
                SET occurrence_count = occurrence_count + 1,
                    last_seen = MAX(last_seen, ?)
                WHERE id = ? AND dismissed = 0
                """,
                (seen_at, pattern_id),
            )
            await self._db.commit()
            if cursor.rowcount == 0:
                raise PatternNotFoundError(
                    f"No active pattern {pattern_id}", record_id=pattern_id
                )
            async with self._db.execute(
                "SELECT occurrence_count FROM patterns WHERE id = ?", (pattern_id,)
            ) as cur:
                row = await cur.fetchone()
        return row["occurrence_count"]

    async def update_confidence(self, updates: dict[str, float]) -> None:
        """Persist recomputed confidence values in one transaction."""
        if not updates:
            return
        async with self._lock:
            await self._db.executemany(
                "UPDATE patterns SET confidence = ? WHERE id = ?",
                [(value, pattern_id) for pattern_id, value in updates.items()],
            )
            await self._db.commit()

    async def set_summaries(
        self,
        pattern_id: str,
        short: str,
        detailed: str,
        generated_at: Optional[float] = None,
    ) -> None:
        async with self._lock:
            await self._db.execute(
                """
                UPDATE patterns
                SET intent_summary = ?, intent_summary_detailed = ?, summary_generated_at = ?
                WHERE id = ?
                """,
                (short, detailed, generated_at or time.time(), pattern_id),
            )
            await self._db.commit()

    async def dismiss_pattern(self, pattern_id: str) -> bool:
        async with self._lock:
            cursor = await self._db.execute(
                "UPDATE patterns SET dismissed = 1 WHERE id = ?", (pattern_id,)
            )
            await self._db.commit()
            return cursor.rowcount > 0

    async def prune(self, retention_days: int, max_patterns: int) -> int:
        """
        Drop patterns past retention, then evict oldest beyond the cap.

        Returns:
            Number of deleted patterns
        """
        cutoff = time.time() - retention_days * 86400
        async with self._lock:
            cursor = await self._db.execute(
                "DELETE FROM patterns WHERE last_seen < ?", (cutoff,)
            )
            deleted = cursor.rowcount

            async with self._db.execute("SELECT COUNT(*) AS n FROM patterns") as cur:
                total = (await cur.fetchone())["n"]

            if total > max_patterns:
                cursor = await self._db.execute(
                    """
                    DELETE FROM patterns WHERE id IN (
                        SELECT id FROM patterns ORDER BY first_seen ASC LIMIT ?
                    )
                    """,
                    (total - max_patterns,),
                )
                deleted += cursor.rowcount

            await self._db.commit()

        if deleted:
            logger.info("patterns_pruned", deleted=deleted)
        return deleted

    # ==================== Automations ====================

    async def put_automation(self, automation: Automation) -> None:
        async with self._lock:
            await self._db.execute(
                """
                INSERT OR REPLACE INTO automations (
                    id, pattern_id, name, description, payload_json,
                    intent_summary, execution_count, last_executed, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    automation.id,
                    automation.pattern_id,
                    automation.name,
                    automation.description,
                    automation.payload.model_dump_json(),
                    automation.intent_summary,
                    automation.execution_count,
                    automation.last_executed,
                    automation.created_at,
                ),
            )
            await self._db.commit()

    async def get_automation(self, automation_id: str) -> Optional[Automation]:
        async with self._db.execute(
            "SELECT * FROM automations WHERE id = ?", (automation_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_automation(row) if row else None

    async def list_automations(self) -> list[Automation]:
        async with self._db.execute(
            "SELECT * FROM automations ORDER BY created_at DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_automation(row) for row in rows]

    async def delete_automation(self, automation_id: str) -> bool:
        async with self._lock:
            cursor = await self._db.execute(
                "DELETE FROM automations WHERE id = ?", (automation_id,)
            )
            await self._db.commit()
            return cursor.rowcount > 0

    async def record_execution(self, automation_id: str, executed_at: Optional[float] = None) -> None:
        """Atomically bump execution_count and last_executed."""
        async with self._lock:
            await self._db.execute(
                """
                UPDATE automations
                SET execution_count = execution_count + 1, last_executed = ?
                WHERE id = ?
                """,
                (executed_at or time.time(), automation_id),
            )
            await self._db.commit()

    # ==================== Notifications ====================

    async def put_notification(self, notification: Notification) -> None:
        async with self._lock:
            await self._db.execute(
                """
                INSERT OR REPLACE INTO notifications (
                    id, type, severity, title, message, pattern_id, created_at, dismissed
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.id,
                    notification.type,
                    notification.severity,
                    notification.title,
                    notification.message,
                    notification.pattern_id,
                    notification.created_at,
                    int(notification.dismissed),
                ),
            )
            await self._db.commit()

    async def find_active_notification(
        self,
        pattern_id: str,
        notification_type: str = "pattern",
    ) -> Optional[Notification]:
        async with self._db.execute(
            """
            SELECT * FROM notifications
            WHERE pattern_id = ? AND type = ? AND dismissed = 0
            LIMIT 1
            """,
            (pattern_id, notification_type),
        ) as cursor:
            row = await cursor.fetchone()
        return Notification(**self._notification_fields(row)) if row else None

    async def list_notifications(self, include_dismissed: bool = False) -> list[Notification]:
        query = "SELECT * FROM notifications"
        if not include_dismissed:
            query += " WHERE dismissed = 0"
        query += " ORDER BY created_at DESC"
        async with self._db.execute(query) as cursor:
            rows = await cursor.fetchall()
        return [Notification(**self._notification_fields(row)) for row in rows]

    async def dismiss_notification(self, notification_id: str) -> bool:
        async with self._lock:
            cursor = await self._db.execute(
                "UPDATE notifications SET dismissed = 1 WHERE id = ?", (notification_id,)
            )
            await self._db.commit()
            return cursor.rowcount > 0

    # ==================== Row mapping ====================

    @staticmethod
    def _row_to_pattern(row: aiosqlite.Row) -> Pattern:
        return Pattern(
            id=row["id"],
            type=PatternType(row["type"]),
            payload=_pattern_payload.validate_python(json.loads(row["payload_json"])),
            confidence=row["confidence"],
            occurrence_count=row["occurrence_count"],
            first_seen=row["first_seen"],
            last_seen=row["last_seen"],
            dismissed=bool(row["dismissed"]),
            intent_summary=row["intent_summary"],
            intent_summary_detailed=row["intent_summary_detailed"],
            summary_generated_at=row["summary_generated_at"],
        )

    @staticmethod
    def _row_to_automation(row: aiosqlite.Row) -> Automation:
        return Automation(
            id=row["id"],
            pattern_id=row["pattern_id"],
            name=row["name"],
            description=row["description"] or "",
            payload=_replay_payload.validate_python(json.loads(row["payload_json"])),
            intent_summary=row["intent_summary"],
            execution_count=row["execution_count"],
            last_executed=row["last_executed"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _notification_fields(row: aiosqlite.Row) -> dict[str, Any]:
        fields = dict(row)
        fields["dismissed"] = bool(fields["dismissed"])
        return fields
