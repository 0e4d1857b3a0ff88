"""Pricing table: list prices, metal content, size-class multipliers and tiers."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from volt_bot.core.types import Metal


class SizeBand(BaseModel):
    """Multiplier applied to conductors up to and including ``max_sqmm``."""

    max_sqmm: Decimal
    multiplier: Decimal = Field(gt=0)


class CategoryPricing(BaseModel):
    # Standard cross-sections manufactured for this category
    sizes: list[Decimal]
    bands: list[SizeBand]
    armoured_multiplier: Decimal = Decimal("1")

    @model_validator(mode="after")
    def _sort_bands(self) -> "CategoryPricing":
        self.bands = sorted(self.bands, key=lambda b: b.max_sqmm)
        return self

    def band_multiplier(self, sqmm: Decimal) -> Optional[Decimal]:
        for band in self.bands:
            if sqmm <= band.max_sqmm:
                return band.multiplier
        return None


class PricingTable(BaseModel):
    """Static pricing data for the quotation engine.

    Base unit price (per metre) of a product is its list price when one is
    present, otherwise::

        spot_price_per_kg * kg_per_m_per_sqmm[metal] * cores * sqmm
            * size_band_multiplier * (armoured_multiplier if armoured)
    """

    currency: str = "INR"
    frls_loading: Decimal = Decimal("0.03")
    pvc_loading: Decimal = Decimal("0.05")
    gst_rate: Decimal = Decimal("0.18")
    metal_content: dict[Metal, Decimal] = Field(
        default_factory=lambda: {
            Metal.COPPER: Decimal("0.00889"),
            Metal.ALUMINIUM: Decimal("0.0027"),
        }
    )
    categories: dict[str, CategoryPricing] = Field(default_factory=dict)
    list_prices: dict[str, Decimal] = Field(default_factory=dict)
    discount_tiers: dict[str, Decimal] = Field(default_factory=lambda: {"retail": Decimal("0")})
    default_tier: str = "retail"

    @model_validator(mode="after")
    def _check_tiers(self) -> "PricingTable":
        if self.default_tier not in self.discount_tiers:
            raise ValueError(f"default_tier '{self.default_tier}' is not a configured discount tier")
        for tier, rate in self.discount_tiers.items():
            if not Decimal("0") <= rate < Decimal("1"):
                raise ValueError(f"discount for tier '{tier}' must be in [0, 1)")
        return self

    @property
    def tier_names(self) -> list[str]:
        return list(self.discount_tiers)


def load_pricing_table(path: str | Path) -> PricingTable:
    table_file = Path(path)
    if not table_file.exists():
        raise FileNotFoundError(f"Pricing table not found: {table_file}")
    data = yaml.safe_load(table_file.read_text(encoding="utf-8")) or {}
    return PricingTable(**data)
