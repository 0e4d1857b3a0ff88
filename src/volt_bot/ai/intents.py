"""Argument shapes of the four intents a message can resolve to."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Annotated, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from volt_bot.core.types import Metal, QueryType
from volt_bot.pricing.products import Product

Quantity = Annotated[int, Field(strict=True, gt=0, description="Length in metres, a positive whole number")]


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class _TieredItem(_Args):
    product: Product
    tier: str = Field(description="Customer discount tier")

    @field_validator("tier")
    @classmethod
    def _known_tier(cls, value: str, info: ValidationInfo) -> str:
        tiers = (info.context or {}).get("tiers")
        if tiers is not None and value not in tiers:
            raise ValueError(f"unknown discount tier '{value}'")
        return value


class QuotationItem(_TieredItem):
    quantity: Quantity


class PriceItem(_TieredItem):
    pass


class GetQuotationArgs(_Args):
    items: list[QuotationItem] = Field(min_length=1)
    delivery_charges: Decimal = Field(default=Decimal("0"), ge=0, description="Delivery charges in INR, before GST")


class GetPricesOnlyArgs(_Args):
    items: list[PriceItem] = Field(min_length=1)


class GetStockArgs(_Args):
    query: str = Field(min_length=1, description="Item name as the customer wrote it")
    product: Optional[Product] = None


class MetalPricingArgs(_Args):
    metals: list[Metal] = Field(default_factory=lambda: [Metal.COPPER, Metal.ALUMINIUM], min_length=1)


IntentArgs = Union[GetQuotationArgs, GetPricesOnlyArgs, GetStockArgs, MetalPricingArgs]

INTENT_ARGS: dict[QueryType, type[_Args]] = {
    QueryType.GET_QUOTATION: GetQuotationArgs,
    QueryType.GET_PRICES_ONLY: GetPricesOnlyArgs,
    QueryType.GET_STOCK: GetStockArgs,
    QueryType.METAL_PRICING: MetalPricingArgs,
}


@dataclass(frozen=True)
class Intent:
    """A validated tool call."""

    query_type: QueryType
    args: IntentArgs
    provider: str = ""
