"""SQLite database connection manager with schema migration."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from volt_bot.core.errors import StorageError
from volt_bot.log import get_logger
from volt_bot.storage.models import utcnow

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id              TEXT PRIMARY KEY,
    phone_number    TEXT UNIQUE,
    telegram_id     TEXT UNIQUE,
    status          TEXT NOT NULL CHECK(status IN ('pending_approval','active','suspended')),
    platform        TEXT NOT NULL CHECK(platform IN ('telegram','whatsapp','both')),
    created_at      TEXT NOT NULL,
    approved_at     TEXT
);

CREATE TABLE IF NOT EXISTS conversations (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL REFERENCES users(id),
    created_at        TEXT NOT NULL,
    last_activity_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_user
    ON conversations(user_id, last_activity_at);

CREATE TABLE IF NOT EXISTS query_sessions (
    id                  TEXT PRIMARY KEY,
    user_id             TEXT REFERENCES users(id),
    conversation_id     TEXT REFERENCES conversations(id),
    query_text          TEXT NOT NULL,
    query_type          TEXT NOT NULL,
    response_type       TEXT NOT NULL CHECK(response_type IN ('success','error')),
    error_message       TEXT,
    total_cost          TEXT NOT NULL DEFAULT '0',
    processing_time_ms  INTEGER NOT NULL DEFAULT 0,
    platform            TEXT NOT NULL CHECK(platform IN ('telegram','whatsapp')),
    created_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_user
    ON query_sessions(user_id, created_at);

CREATE TABLE IF NOT EXISTS cost_rate_history (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    service_provider  TEXT NOT NULL,
    cost_type         TEXT NOT NULL,
    unit_cost         TEXT NOT NULL,
    unit_type         TEXT NOT NULL,
    currency          TEXT NOT NULL DEFAULT 'USD',
    effective_from    TEXT NOT NULL,
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_rates_key
    ON cost_rate_history(service_provider, cost_type, effective_from);

CREATE TABLE IF NOT EXISTS cost_events (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id           TEXT REFERENCES users(id),
    query_session_id  TEXT NOT NULL REFERENCES query_sessions(id),
    event_type        TEXT NOT NULL,
    service_provider  TEXT NOT NULL,
    cost_type         TEXT NOT NULL,
    unit_cost         TEXT NOT NULL,
    unit_type         TEXT NOT NULL,
    units_consumed    INTEGER NOT NULL,
    cost_amount       TEXT NOT NULL,
    metadata_json     TEXT NOT NULL DEFAULT '{}',
    platform          TEXT NOT NULL CHECK(platform IN ('telegram','whatsapp')),
    created_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_session
    ON cost_events(query_session_id);

CREATE TABLE IF NOT EXISTS conversation_messages (
    id                        INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id           TEXT NOT NULL REFERENCES conversations(id),
    session_id                TEXT NOT NULL REFERENCES query_sessions(id),
    user_query                TEXT NOT NULL,
    structured_response_json  TEXT,
    created_at                TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON conversation_messages(conversation_id, id);
"""

# (service_provider, cost_type, unit_cost, unit_type, currency)
DEFAULT_RATES: list[tuple[str, str, str, str, str]] = [
    ("anthropic", "input_token", "3.0", "per_1m_tokens", "USD"),
    ("anthropic", "output_token", "15.0", "per_1m_tokens", "USD"),
    ("anthropic", "failed_call", "0.001", "call", "USD"),
    ("groq", "input_token", "1.0", "per_1m_tokens", "USD"),
    ("groq", "output_token", "3.0", "per_1m_tokens", "USD"),
    ("groq", "failed_call", "0.0005", "call", "USD"),
    ("twilio", "whatsapp_incoming", "0.005", "message", "USD"),
    ("twilio", "whatsapp_service", "0.005", "message", "USD"),
    ("telegram", "telegram_incoming", "0", "message", "USD"),
    ("telegram", "telegram_outgoing", "0", "message", "USD"),
    ("erp", "stock_lookup", "0", "call", "USD"),
]


class Database:
    """Async SQLite database manager.

    Writes go through ``transaction()`` on the writer connection, which
    serializes writers. Plain reads use ``reader``, a second connection that
    only sees committed data. An in-memory database has one connection
    for both.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._reader: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self, seed_rates: bool = True) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        if self._db_path == ":memory:":
            self._reader = self._conn
        else:
            self._reader = await aiosqlite.connect(self._db_path, isolation_level=None)
            self._reader.row_factory = aiosqlite.Row
            await self._reader.execute("PRAGMA query_only=ON")
        if seed_rates:
            await self._seed_rates()
        logger.info("database_initialized", path=self._db_path)

    async def _seed_rates(self) -> None:
        cursor = await self.reader.execute("SELECT COUNT(*) FROM cost_rate_history")
        row = await cursor.fetchone()
        if row[0]:
            return
        now = utcnow().isoformat()
        async with self.transaction() as conn:
            await conn.executemany(
                """INSERT INTO cost_rate_history
                   (service_provider, cost_type, unit_cost, unit_type, currency, effective_from)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [(*rate, now) for rate in DEFAULT_RATES],
            )
        logger.info("cost_rates_seeded", count=len(DEFAULT_RATES))

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    @property
    def reader(self) -> aiosqlite.Connection:
        """Connection for reads outside a transaction."""
        if self._reader is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._reader

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """All statements inside commit together or not at all."""
        async with self._write_lock:
            conn = self.conn
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            else:
                try:
                    await conn.execute("COMMIT")
                except Exception as e:
                    await conn.execute("ROLLBACK")
                    raise StorageError(f"commit failed: {e}") from e

    async def close(self) -> None:
        if self._reader is not None and self._reader is not self._conn:
            await self._reader.close()
        self._reader = None
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
