"""User repository: identity lookup and the approval gate."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from volt_bot.core.types import Platform, UserPlatform, UserStatus
from volt_bot.log import get_logger
from volt_bot.storage.database import Database
from volt_bot.storage.models import User, utcnow

logger = get_logger(__name__)


def _identity_column(platform: Platform) -> str:
    match platform:
        case Platform.TELEGRAM:
            return "telegram_id"
        case Platform.WHATSAPP:
            return "phone_number"
    raise ValueError(f"Unknown platform: {platform}")


class UserRepository:
    def __init__(self, db: Database):
        self._db = db

    async def get(self, platform: Platform, sender_id: str) -> Optional[User]:
        column = _identity_column(platform)
        cursor = await self._db.reader.execute(f"SELECT * FROM users WHERE {column} = ?", (sender_id,))
        row = await cursor.fetchone()
        return self._row_to_user(row) if row else None

    async def get_or_create(self, platform: Platform, sender_id: str) -> tuple[User, bool]:
        """Existing user, or a new one pending approval. Second item is True if created."""
        user = await self.get(platform, sender_id)
        if user is not None:
            return user, False
        return await self._insert(platform, sender_id, UserStatus.PENDING_APPROVAL), True

    async def _insert(self, platform: Platform, sender_id: str, status: UserStatus) -> User:
        column = _identity_column(platform)
        now = utcnow()
        approved_at = now if status == UserStatus.ACTIVE else None
        user_id = str(uuid.uuid4())
        async with self._db.transaction() as conn:
            await conn.execute(
                f"""INSERT INTO users (id, {column}, status, platform, created_at, approved_at)
                    VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    user_id,
                    sender_id,
                    status.value,
                    UserPlatform(platform.value).value,
                    now.isoformat(),
                    approved_at.isoformat() if approved_at else None,
                ),
            )
        logger.info("user_created", user_id=user_id, platform=str(platform), status=str(status))
        return User(
            id=user_id,
            status=status,
            platform=UserPlatform(platform.value),
            telegram_id=sender_id if platform == Platform.TELEGRAM else None,
            phone_number=sender_id if platform == Platform.WHATSAPP else None,
            created_at=now,
            approved_at=approved_at,
        )

    async def set_status(self, platform: Platform, sender_id: str, status: UserStatus) -> User:
        """Change a user's status, creating the user if they never wrote in."""
        user = await self.get(platform, sender_id)
        if user is None:
            return await self._insert(platform, sender_id, status)

        approved_at: Optional[datetime] = user.approved_at
        if status == UserStatus.ACTIVE and approved_at is None:
            approved_at = utcnow()
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE users SET status = ?, approved_at = ? WHERE id = ?",
                (status.value, approved_at.isoformat() if approved_at else None, user.id),
            )
        logger.info("user_status_changed", user_id=user.id, old=str(user.status), new=str(status))
        user.status = status
        user.approved_at = approved_at
        return user

    async def approve(self, platform: Platform, sender_id: str) -> User:
        return await self.set_status(platform, sender_id, UserStatus.ACTIVE)

    async def suspend(self, platform: Platform, sender_id: str) -> User:
        return await self.set_status(platform, sender_id, UserStatus.SUSPENDED)

    async def list_pending(self) -> list[User]:
        cursor = await self._db.reader.execute(
            "SELECT * FROM users WHERE status = ? ORDER BY created_at ASC",
            (UserStatus.PENDING_APPROVAL.value,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_user(row) for row in rows]

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row["id"],
            status=UserStatus(row["status"]),
            platform=UserPlatform(row["platform"]),
            telegram_id=row["telegram_id"],
            phone_number=row["phone_number"],
            created_at=datetime.fromisoformat(row["created_at"]),
            approved_at=datetime.fromisoformat(row["approved_at"]) if row["approved_at"] else None,
        )
