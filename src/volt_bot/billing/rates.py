"""Versioned cost rates and the read snapshot used by the ledger."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from volt_bot.storage.models import CostRate

PER_MILLION = "per_1m_tokens"
_MILLION = Decimal(1_000_000)


def per_unit_cost(rate: CostRate) -> tuple[Decimal, str]:
    """(unit_cost, unit_type) for one consumed unit.

    Token prices are published per million tokens; the ledger bills per token
    so that ``unit_cost * units`` is the exact cost of an event.
    """
    if rate.unit_type == PER_MILLION:
        return rate.unit_cost / _MILLION, "token"
    return rate.unit_cost, rate.unit_type


class RateBook:
    """Immutable snapshot of cost_rate_history.

    Rates are never updated in place; a change is a new row with a later
    ``effective_from``. ``rate_at`` returns the row in force at a given time.
    """

    def __init__(self, rates: Iterable[CostRate]):
        grouped: dict[tuple[str, str], list[CostRate]] = defaultdict(list)
        for rate in rates:
            grouped[(rate.service_provider, rate.cost_type)].append(rate)
        self._rates = {
            key: tuple(sorted(rows, key=lambda r: (r.effective_from, r.id or 0))) for key, rows in grouped.items()
        }

    def rate_at(self, service_provider: str, cost_type: str, at: datetime) -> Optional[CostRate]:
        current = None
        for rate in self._rates.get((service_provider, cost_type), ()):
            if rate.effective_from <= at:
                current = rate
            else:
                break
        return current

    def history(self, service_provider: str, cost_type: str) -> tuple[CostRate, ...]:
        return self._rates.get((service_provider, cost_type), ())

    def __len__(self) -> int:
        return sum(len(rows) for rows in self._rates.values())
