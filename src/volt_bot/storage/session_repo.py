"""QuerySession repository: the atomic audit + billing write."""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from volt_bot.core.errors import LedgerError
from volt_bot.core.types import Platform, QueryType, ResponseType
from volt_bot.log import get_logger
from volt_bot.storage.database import Database
from volt_bot.storage.models import ConversationMessage, CostEvent, QuerySession

logger = get_logger(__name__)


class QuerySessionRepository:
    def __init__(self, db: Database):
        self._db = db

    async def commit(
        self,
        session: QuerySession,
        events: Sequence[CostEvent],
        message: Optional[ConversationMessage] = None,
    ) -> None:
        """Write the session, its cost events and the conversation entry together.

        ``session.total_cost`` must equal the sum of the events; nothing is
        written otherwise.
        """
        events_total = sum((e.cost_amount for e in events), Decimal("0"))
        if events_total != session.total_cost:
            raise LedgerError(f"session total {session.total_cost} != events total {events_total}")

        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO query_sessions
                   (id, user_id, conversation_id, query_text, query_type, response_type,
                    error_message, total_cost, processing_time_ms, platform, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    session.id,
                    session.user_id,
                    session.conversation_id,
                    session.query_text,
                    session.query_type.value,
                    session.response_type.value,
                    session.error_message,
                    str(session.total_cost),
                    session.processing_time_ms,
                    session.platform.value,
                    session.created_at.isoformat(),
                ),
            )
            await conn.executemany(
                """INSERT INTO cost_events
                   (user_id, query_session_id, event_type, service_provider, cost_type,
                    unit_cost, unit_type, units_consumed, cost_amount, metadata_json,
                    platform, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        e.user_id,
                        e.query_session_id,
                        e.event_type,
                        e.service_provider,
                        e.cost_type,
                        str(e.unit_cost),
                        e.unit_type,
                        e.units_consumed,
                        str(e.cost_amount),
                        json.dumps(e.metadata, default=str),
                        e.platform.value,
                        e.created_at.isoformat(),
                    )
                    for e in events
                ],
            )
            if message is not None:
                await conn.execute(
                    """INSERT INTO conversation_messages
                       (conversation_id, session_id, user_query, structured_response_json, created_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        message.conversation_id,
                        message.session_id,
                        message.user_query,
                        json.dumps(message.structured_response, default=str)
                        if message.structured_response is not None
                        else None,
                        message.created_at.isoformat(),
                    ),
                )
            if session.conversation_id is not None:
                await conn.execute(
                    "UPDATE conversations SET last_activity_at = ? WHERE id = ?",
                    (session.created_at.isoformat(), session.conversation_id),
                )

        logger.info(
            "session_committed",
            session_id=session.id,
            query_type=str(session.query_type),
            response_type=str(session.response_type),
            total_cost=str(session.total_cost),
            events=len(events),
        )

    async def get(self, session_id: str) -> Optional[QuerySession]:
        cursor = await self._db.reader.execute("SELECT * FROM query_sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def list_recent(self, limit: int = 100, user_id: Optional[str] = None) -> list[QuerySession]:
        if user_id:
            cursor = await self._db.reader.execute(
                "SELECT * FROM query_sessions WHERE user_id = ? ORDER BY rowid DESC LIMIT ?",
                (user_id, limit),
            )
        else:
            cursor = await self._db.reader.execute(
                "SELECT * FROM query_sessions ORDER BY rowid DESC LIMIT ?",
                (limit,),
            )
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    async def cost_events(self, session_id: str) -> list[CostEvent]:
        cursor = await self._db.reader.execute(
            "SELECT * FROM cost_events WHERE query_session_id = ? ORDER BY id ASC",
            (session_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    @staticmethod
    def _row_to_session(row) -> QuerySession:
        return QuerySession(
            id=row["id"],
            user_id=row["user_id"],
            conversation_id=row["conversation_id"],
            query_text=row["query_text"],
            query_type=QueryType(row["query_type"]),
            response_type=ResponseType(row["response_type"]),
            platform=Platform(row["platform"]),
            total_cost=Decimal(row["total_cost"]),
            error_message=row["error_message"],
            processing_time_ms=row["processing_time_ms"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_event(row) -> CostEvent:
        return CostEvent(
            id=row["id"],
            query_session_id=row["query_session_id"],
            event_type=row["event_type"],
            service_provider=row["service_provider"],
            cost_type=row["cost_type"],
            unit_cost=Decimal(row["unit_cost"]),
            unit_type=row["unit_type"],
            units_consumed=row["units_consumed"],
            cost_amount=Decimal(row["cost_amount"]),
            platform=Platform(row["platform"]),
            user_id=row["user_id"],
            metadata=json.loads(row["metadata_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
