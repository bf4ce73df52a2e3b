"""SQLite-backed record of webhook deliveries that exhausted their retries."""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from task_service.utils.logging import get_logger

logger = get_logger(__name__)


class DeadLetterStore:
    """Persists failed deliveries for operator inspection.

    Entries are append-only; nothing in the request path reads them.
    """

    def __init__(self, db_path: str = "dead_letters.db") -> None:
        """Initialize dead-letter store.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests)
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        if self.db_path != ":memory:":
            path = Path(self.db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)
        else:
            target = self.db_path

        async with self._lock:
            if self._db is not None:
                return
            self._db = await aiosqlite.connect(target)

            if target != ":memory:":
                await self._db.execute("PRAGMA journal_mode=WAL")
                await self._db.execute("PRAGMA synchronous=NORMAL")

            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS dead_letters (
                    delivery_id TEXT PRIMARY KEY,
                    subscription_id INTEGER NOT NULL,
                    url TEXT NOT NULL,
                    event TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    attempts INTEGER NOT NULL,
                    last_error TEXT,
                    last_status INTEGER,
                    failed_at TIMESTAMP NOT NULL
                )
            """)
            await self._db.execute("""
                CREATE INDEX IF NOT EXISTS idx_dead_letters_failed_at
                ON dead_letters(failed_at)
            """)
            await self._db.commit()
            logger.info("dead_letter_store_initialized", path=target)

    async def record(
        self,
        delivery_id: str,
        subscription_id: int,
        url: str,
        event: str,
        payload: dict[str, Any],
        attempts: int,
        last_error: str | None,
        last_status: int | None,
    ) -> None:
        """Store one failed delivery."""
        if not self._db:
            await self.initialize()

        async with self._lock:
            await self._db.execute(
                """
                INSERT OR REPLACE INTO dead_letters
                (delivery_id, subscription_id, url, event, payload, attempts, last_error, last_status, failed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    delivery_id,
                    subscription_id,
                    url,
                    event,
                    json.dumps(payload),
                    attempts,
                    last_error,
                    last_status,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            await self._db.commit()

    async def list_entries(self, limit: int = 50, event: str | None = None) -> list[dict[str, Any]]:
        """Most recent failed deliveries first.

        Args:
            limit: Maximum entries to return
            event: Only entries for this event type

        Returns:
            List of entries with the payload decoded
        """
        if not self._db:
            await self.initialize()

        query = "SELECT delivery_id, subscription_id, url, event, payload, attempts, last_error, last_status, failed_at FROM dead_letters"
        params: tuple[Any, ...] = ()
        if event:
            query += " WHERE event = ?"
            params = (event,)
        query += " ORDER BY failed_at DESC LIMIT ?"
        params = (*params, limit)

        async with self._lock:
            cursor = await self._db.execute(query, params)
            rows = await cursor.fetchall()

        return [
            {
                "delivery_id": row[0],
                "subscription_id": row[1],
                "url": row[2],
                "event": row[3],
                "payload": json.loads(row[4]),
                "attempts": row[5],
                "last_error": row[6],
                "last_status": row[7],
                "failed_at": row[8],
            }
            for row in rows
        ]

    async def count(self) -> int:
        if not self._db:
            await self.initialize()

        async with self._lock:
            cursor = await self._db.execute("SELECT COUNT(*) FROM dead_letters")
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def purge(self) -> int:
        """Delete all entries.

        Returns:
            Number of entries removed
        """
        if not self._db:
            await self.initialize()

        async with self._lock:
            cursor = await self._db.execute("DELETE FROM dead_letters")
            await self._db.commit()
            removed = cursor.rowcount
            if removed > 0:
                logger.info("dead_letters_purged", removed=removed)
            return removed

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("dead_letter_store_closed")
