"""Append-only cost rate history."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

import aiosqlite

from volt_bot.billing.rates import RateBook
from volt_bot.core.errors import LedgerError
from volt_bot.log import get_logger
from volt_bot.storage.database import Database
from volt_bot.storage.models import CostRate

logger = get_logger(__name__)


class CostRateRepository:
    def __init__(self, db: Database):
        self._db = db

    async def add(self, rate: CostRate) -> CostRate:
        """Insert a new rate version. Existing rows are never modified.

        A rate may not take effect before the newest existing version of the
        same (provider, cost type), nor before the newest cost event billed
        under it: recorded events keep reconciling against the rate they were
        written with.
        """
        if rate.effective_from.tzinfo is None:
            raise ValueError("effective_from must be timezone-aware")
        async with self._db.transaction() as conn:
            floor = await self._latest_use(conn, rate.service_provider, rate.cost_type)
            if floor is not None and rate.effective_from < floor:
                raise LedgerError(
                    f"{rate.service_provider}/{rate.cost_type} rate cannot take effect at "
                    f"{rate.effective_from.isoformat()}, before {floor.isoformat()}"
                )
            cursor = await conn.execute(
                """INSERT INTO cost_rate_history
                   (service_provider, cost_type, unit_cost, unit_type, currency, effective_from)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    rate.service_provider,
                    rate.cost_type,
                    str(rate.unit_cost),
                    rate.unit_type,
                    rate.currency,
                    rate.effective_from.isoformat(),
                ),
            )
            rate_id = cursor.lastrowid
        logger.info(
            "cost_rate_added",
            provider=rate.service_provider,
            cost_type=rate.cost_type,
            unit_cost=str(rate.unit_cost),
            effective_from=rate.effective_from.isoformat(),
        )
        return CostRate(
            id=rate_id,
            service_provider=rate.service_provider,
            cost_type=rate.cost_type,
            unit_cost=rate.unit_cost,
            unit_type=rate.unit_type,
            effective_from=rate.effective_from,
            currency=rate.currency,
        )

    @staticmethod
    async def _latest_use(conn: aiosqlite.Connection, provider: str, cost_type: str) -> Optional[datetime]:
        """Newest rate start or billed event for a (provider, cost type)."""
        stamps: list[datetime] = []
        for query in (
            "SELECT effective_from FROM cost_rate_history WHERE service_provider = ? AND cost_type = ?",
            "SELECT created_at FROM cost_events WHERE service_provider = ? AND cost_type = ?",
        ):
            cursor = await conn.execute(query, (provider, cost_type))
            stamps.extend(datetime.fromisoformat(row[0]) for row in await cursor.fetchall())
        return max(stamps, default=None)

    async def list_all(self) -> list[CostRate]:
        cursor = await self._db.reader.execute("SELECT * FROM cost_rate_history ORDER BY id ASC")
        rows = await cursor.fetchall()
        return [
            CostRate(
                id=row["id"],
                service_provider=row["service_provider"],
                cost_type=row["cost_type"],
                unit_cost=Decimal(row["unit_cost"]),
                unit_type=row["unit_type"],
                currency=row["currency"],
                effective_from=datetime.fromisoformat(row["effective_from"]),
            )
            for row in rows
        ]

    async def rate_book(self) -> RateBook:
        return RateBook(await self.list_all())
