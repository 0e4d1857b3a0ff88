"""Capability interfaces for the external collaborators of the core.

Implementations raise ``AdapterUnavailable`` when the backend is down,
unreachable or returns something unusable.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from volt_bot.core.types import Metal


@dataclass(frozen=True, slots=True)
class Availability:
    query: str
    stock_info: str
    in_stock: Optional[bool] = None


class StockLookup(Protocol):
    async def lookup_stock(self, query: str) -> Availability:
        """Look up availability of an item in the ERP."""
        ...


class MetalSpotPrice(Protocol):
    async def fetch_spot_price(self, metal: Metal) -> Decimal:
        """Fetch the current spot price per kg for a metal."""
        ...
