"""SQLite ledger of intents and failed reads."""

import aiosqlite
import logging
import time
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/predictionjack.db"

CREATE_TABLES_SQL = """
-- One row per PendingIntent, upserted on every status change
CREATE TABLE IF NOT EXISTS intents (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL,
    tx_hash TEXT,
    batch_id TEXT,
    error TEXT,
    user_rejected INTEGER DEFAULT 0,
    confirmed_block INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

-- Failed poll cycles
CREATE TABLE IF NOT EXISTS read_failures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    snapshot_key TEXT NOT NULL,
    consecutive INTEGER NOT NULL,
    error TEXT
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_intents_status ON intents(status);
CREATE INDEX IF NOT EXISTS idx_read_failures_key ON read_failures(snapshot_key);
"""

UPSERT_INTENT_SQL = """
INSERT INTO intents (
    id, kind, description, status, tx_hash, batch_id, error,
    user_rejected, confirmed_block, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    status = excluded.status,
    tx_hash = excluded.tx_hash,
    batch_id = excluded.batch_id,
    error = excluded.error,
    user_rejected = excluded.user_rejected,
    confirmed_block = excluded.confirmed_block,
    updated_at = excluded.updated_at
"""


class Database:
    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    async def init_schema(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(CREATE_TABLES_SQL)
            await db.commit()

    async def reset(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DROP TABLE IF EXISTS intents")
            await db.execute("DROP TABLE IF EXISTS read_failures")
            await db.commit()
        await self.init_schema()

    async def record_intent(self, pending: Any) -> None:
        """Upsert a PendingIntent's current state."""
        now = int(time.time())
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(UPSERT_INTENT_SQL, (
                pending.id,
                pending.kind.value,
                pending.intent.description,
                pending.status.value,
                pending.hash,
                pending.batch_id,
                pending.error,
                int(pending.user_rejected),
                pending.confirmed_block,
                int(pending.created_at),
                now,
            ))
            await db.commit()

    async def record_failure(self, key: Any, consecutive: int, error: Optional[str]) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO read_failures (timestamp, snapshot_key, consecutive, error) VALUES (?, ?, ?, ?)",
                (int(time.time()), str(key), consecutive, error),
            )
            await db.commit()

    async def list_intents(self, status: Optional[str] = None, limit: int = 50) -> list[dict]:
        query = "SELECT * FROM intents"
        params: tuple = ()
        if status:
            query += " WHERE status = ?"
            params = (status,)
        query += " ORDER BY created_at DESC, updated_at DESC LIMIT ?"
        params += (limit,)
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def list_failures(self, limit: int = 50) -> list[dict]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM read_failures ORDER BY id DESC LIMIT ?", (limit,)
            ) as cursor:
                rows = await cursor.fetchall()
        return [dict(row) for row in rows]
