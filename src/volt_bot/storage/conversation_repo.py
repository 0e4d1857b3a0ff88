"""Conversation repository: bounded per-user history used as LLM context."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from typing import Optional

from volt_bot.log import get_logger
from volt_bot.storage.database import Database
from volt_bot.storage.models import Conversation, ConversationMessage, utcnow

logger = get_logger(__name__)


class ConversationRepository:
    """Conversations expire after a period of inactivity; a new one starts on the next message."""

    def __init__(self, db: Database, expiry: timedelta = timedelta(hours=24)):
        self._db = db
        self._expiry = expiry

    async def latest(self, user_id: str) -> Optional[Conversation]:
        cursor = await self._db.reader.execute(
            "SELECT * FROM conversations WHERE user_id = ? ORDER BY rowid DESC LIMIT 1",
            (user_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def get_or_start(self, user_id: str, now: Optional[datetime] = None) -> Conversation:
        """The user's conversation if still active, otherwise a fresh one."""
        now = now or utcnow()
        current = await self.latest(user_id)
        if current is not None and now - current.last_activity_at < self._expiry:
            return current

        conversation = Conversation(id=str(uuid.uuid4()), user_id=user_id, created_at=now, last_activity_at=now)
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO conversations (id, user_id, created_at, last_activity_at) VALUES (?, ?, ?, ?)",
                (conversation.id, user_id, now.isoformat(), now.isoformat()),
            )
        logger.info(
            "conversation_started",
            conversation_id=conversation.id,
            user_id=user_id,
            previous=current.id if current else None,
        )
        return conversation

    async def recent_messages(self, conversation_id: str, limit: int = 10) -> list[ConversationMessage]:
        """Last ``limit`` messages, oldest first."""
        if limit <= 0:
            return []
        cursor = await self._db.reader.execute(
            """SELECT * FROM conversation_messages
               WHERE conversation_id = ?
               ORDER BY id DESC
               LIMIT ?""",
            (conversation_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_activity_at=datetime.fromisoformat(row["last_activity_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> ConversationMessage:
        raw = row["structured_response_json"]
        return ConversationMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            session_id=row["session_id"],
            user_query=row["user_query"],
            structured_response=json.loads(raw) if raw else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
