"""Quotation engine: pure pricing of quotation requests.

Stages per line, in this order:

1. base price: list price, or metal content x spot price x size multiplier
2. loadings, additive on the base price (FRLS, PVC)
3. customer tier discount on the loaded price
4. line subtotal = discounted unit price x quantity

Lines are summed unrounded; GST is applied to the sum plus delivery and only
the reported totals are rounded (half-up, to paise). No I/O happens here: metal
prices come in through a ``PriceSnapshot`` taken by the caller.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence, assert_never

from volt_bot.core.errors import PricingError
from volt_bot.core.types import Metal
from volt_bot.pricing.models import PriceSnapshot, Quotation, QuoteItem, QuoteLine
from volt_bot.pricing.products import (
    CoaxialCable,
    FlexibleCable,
    HTCable,
    LTCable,
    Product,
    SolarCable,
    SubmersibleCable,
    TelephoneCable,
    category,
    conductor_metal,
    describe,
    has_frls,
    has_pvc_insulation,
    price_key,
)
from volt_bot.pricing.table import PricingTable

PAISE = Decimal("0.01")
ZERO = Decimal("0")
ONE = Decimal("1")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(PAISE, rounding=ROUND_HALF_UP)


def required_metals(products: Iterable[Product], table: PricingTable) -> set[Metal]:
    """Metals whose spot price is needed to price ``products``."""
    metals: set[Metal] = set()
    for product in products:
        if price_key(product) not in table.list_prices:
            metals.add(conductor_metal(product))
    return metals


def _metal_linked_dimensions(product: Product) -> tuple[int, Decimal, bool] | None:
    """(cores, sqmm, armoured) for products priced by conductor content."""
    match product:
        case LTCable() | HTCable():
            return product.cores, product.sqmm, product.armoured
        case FlexibleCable() | SubmersibleCable():
            return product.cores, product.sqmm, False
        case SolarCable():
            return 1, product.sqmm, False
        case TelephoneCable() | CoaxialCable():
            # Only sold from list prices
            return None
        case _:
            assert_never(product)


def base_price(product: Product, snapshot: PriceSnapshot, table: PricingTable, line: int) -> Decimal:
    """Base unit price per metre before loadings and discount."""
    listed = table.list_prices.get(price_key(product))
    if listed is not None:
        return listed

    description = describe(product)
    dimensions = _metal_linked_dimensions(product)
    if dimensions is None:
        raise PricingError(f"no list price for {description}", line=line, description=description)
    cores, sqmm, armoured = dimensions

    pricing = table.categories.get(category(product))
    if pricing is None:
        raise PricingError(f"unsupported product category for {description}", line=line, description=description)
    if sqmm not in pricing.sizes:
        raise PricingError(f"{description}: size not manufactured", line=line, description=description)
    multiplier = pricing.band_multiplier(sqmm)
    if multiplier is None:
        raise PricingError(f"{description}: no size-class multiplier", line=line, description=description)

    metal = conductor_metal(product)
    spot = snapshot.get(metal)
    if spot is None:
        raise PricingError(f"{metal} price missing from snapshot", line=line, description=description)
    content = table.metal_content.get(metal)
    if content is None:
        raise PricingError(f"no metal content configured for {metal}", line=line, description=description)

    price = spot.price * content * cores * sqmm * multiplier
    if armoured:
        price *= pricing.armoured_multiplier
    return price


def price_line(quote_line: QuoteLine, snapshot: PriceSnapshot, table: PricingTable, line: int) -> QuoteItem:
    product = quote_line.product
    if quote_line.quantity <= 0:
        raise PricingError("quantity must be positive", line=line, description=describe(product))
    discount = table.discount_tiers.get(quote_line.tier)
    if discount is None:
        raise PricingError(f"unknown discount tier '{quote_line.tier}'", line=line, description=describe(product))

    base = base_price(product, snapshot, table, line)
    frls = table.frls_loading if has_frls(product) else ZERO
    pvc = table.pvc_loading if has_pvc_insulation(product) else ZERO
    loaded = base * (ONE + frls + pvc)
    unit_price = loaded * (ONE - discount)
    subtotal = unit_price * quote_line.quantity

    return QuoteItem(
        product=product,
        description=describe(product),
        quantity=quote_line.quantity,
        tier=quote_line.tier,
        base_price=base,
        frls_loading=frls,
        pvc_loading=pvc,
        loaded_price=loaded,
        discount=discount,
        unit_price=unit_price,
        subtotal=subtotal,
        line_total=round_money(subtotal),
    )


def price_lines(lines: Sequence[QuoteLine], snapshot: PriceSnapshot, table: PricingTable) -> list[QuoteItem]:
    """Price every line or raise on the first failure. Lines are numbered from 1."""
    if not lines:
        raise PricingError("request has no items")
    return [price_line(ql, snapshot, table, idx) for idx, ql in enumerate(lines, start=1)]


def build_quotation(
    lines: Sequence[QuoteLine],
    snapshot: PriceSnapshot,
    table: PricingTable,
    delivery_charges: Decimal = ZERO,
) -> Quotation:
    if delivery_charges < ZERO:
        raise PricingError("delivery charges cannot be negative")
    items = price_lines(lines, snapshot, table)
    subtotal = sum((item.subtotal for item in items), ZERO)
    taxable = subtotal + delivery_charges
    taxable_value = round_money(taxable)
    # GST is the remainder, so taxable value plus GST equals the printed total
    grand_total = round_money(taxable * (ONE + table.gst_rate))
    return Quotation(
        items=items,
        subtotal=round_money(subtotal),
        delivery_charges=round_money(delivery_charges),
        taxable_value=taxable_value,
        gst_rate=table.gst_rate,
        gst=grand_total - taxable_value,
        grand_total=grand_total,
        currency=table.currency,
        prices_as_of=snapshot.as_of,
    )
