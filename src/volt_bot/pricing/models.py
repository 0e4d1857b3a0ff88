"""Value types for quotations and metal price snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from volt_bot.core.types import Metal
from volt_bot.pricing.products import Product


@dataclass(frozen=True, slots=True)
class SpotPrice:
    metal: Metal
    price: Decimal  # per kg
    as_of: datetime
    stale: bool = False


@dataclass(frozen=True, slots=True)
class PriceSnapshot:
    """Metal prices captured by the caller before pricing a request."""

    prices: dict[Metal, SpotPrice] = field(default_factory=dict)

    def get(self, metal: Metal) -> Optional[SpotPrice]:
        return self.prices.get(metal)

    @property
    def as_of(self) -> Optional[datetime]:
        """Oldest timestamp among the captured prices."""
        if not self.prices:
            return None
        return min(p.as_of for p in self.prices.values())


@dataclass(frozen=True, slots=True)
class QuoteLine:
    product: Product
    quantity: int  # metres
    tier: str


@dataclass(frozen=True, slots=True)
class QuoteItem:
    product: Product
    description: str
    quantity: int
    tier: str
    base_price: Decimal
    frls_loading: Decimal
    pvc_loading: Decimal
    loaded_price: Decimal
    discount: Decimal
    unit_price: Decimal  # loaded and discounted, unrounded
    subtotal: Decimal  # unit_price * quantity, unrounded
    line_total: Decimal  # subtotal rounded to paise


@dataclass(frozen=True, slots=True)
class Quotation:
    items: list[QuoteItem]
    subtotal: Decimal
    delivery_charges: Decimal
    taxable_value: Decimal
    gst_rate: Decimal
    gst: Decimal
    grand_total: Decimal
    currency: str = "INR"
    prices_as_of: Optional[datetime] = None
