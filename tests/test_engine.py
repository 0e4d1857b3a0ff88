from datetime import datetime, timezone
from decimal import Decimal

import pytest

from volt_bot.core.errors import PricingError
from volt_bot.core.types import Metal
from volt_bot.pricing.engine import build_quotation, price_lines, required_metals, round_money
from volt_bot.pricing.models import PriceSnapshot, QuoteLine, SpotPrice
from volt_bot.pricing.products import CoaxialCable, Insulation, LTCable, TelephoneCable

AS_OF = datetime(2026, 1, 5, 6, 0, tzinfo=timezone.utc)


def _frls_xlpe(**overrides) -> LTCable:
    fields = dict(conductor=Metal.COPPER, cores=4, sqmm=Decimal("2.5"), armoured=True, frls=True)
    fields.update(overrides)
    return LTCable(**fields)


def _snapshot(**prices: str) -> PriceSnapshot:
    return PriceSnapshot(
        prices={Metal(m): SpotPrice(metal=Metal(m), price=Decimal(p), as_of=AS_OF) for m, p in prices.items()}
    )


def test_round_money_is_half_up() -> None:
    assert round_money(Decimal("0.005")) == Decimal("0.01")
    assert round_money(Decimal("2.675")) == Decimal("2.68")
    assert round_money(Decimal("2.665")) == Decimal("2.67")


def test_frls_dealer_quotation_example(pricing_table) -> None:
    quotation = build_quotation([QuoteLine(_frls_xlpe(), 10, "dealer")], PriceSnapshot(), pricing_table)

    item = quotation.items[0]
    assert item.base_price == Decimal("100.00")
    assert item.frls_loading == Decimal("0.03")
    assert item.pvc_loading == Decimal("0")
    assert item.loaded_price == Decimal("103.00")
    assert item.unit_price == Decimal("97.85")
    assert item.line_total == Decimal("978.50")
    assert quotation.subtotal == Decimal("978.50")
    assert quotation.gst == Decimal("176.13")
    assert quotation.grand_total == Decimal("1154.63")
    assert quotation.prices_as_of is None


def test_loadings_are_additive_on_base_price(pricing_table) -> None:
    product = _frls_xlpe(insulation=Insulation.PVC)
    item = price_lines([QuoteLine(product, 1, "retail")], PriceSnapshot(), pricing_table)[0]

    # 100 x (1 + 0.03 + 0.05), not 100 x 1.03 x 1.05
    assert item.loaded_price == Decimal("108.00")
    assert item.unit_price == Decimal("108.00")


def test_discount_applies_after_loadings(pricing_table) -> None:
    product = _frls_xlpe(insulation=Insulation.PVC)
    item = price_lines([QuoteLine(product, 1, "distributor")], PriceSnapshot(), pricing_table)[0]
    assert item.unit_price == Decimal("108.00") * Decimal("0.92")


def test_metal_linked_base_price(pricing_table) -> None:
    product = LTCable(conductor=Metal.ALUMINIUM, cores=4, sqmm=Decimal("16"))
    assert required_metals([product], pricing_table) == {Metal.ALUMINIUM}

    quotation = build_quotation([QuoteLine(product, 100, "retail")], _snapshot(aluminium="250"), pricing_table)

    # 250 x 0.0027 x 4 x 16 x 1.05
    assert quotation.items[0].base_price == Decimal("45.36")
    assert quotation.subtotal == Decimal("4536.00")
    assert quotation.gst == Decimal("816.48")
    assert quotation.grand_total == Decimal("5352.48")
    assert quotation.prices_as_of == AS_OF


def test_armoured_multiplier_and_small_size_band(pricing_table) -> None:
    product = LTCable(conductor=Metal.COPPER, cores=2, sqmm=Decimal("4"), armoured=True)
    item = price_lines([QuoteLine(product, 1, "retail")], _snapshot(copper="900"), pricing_table)[0]
    # 900 x 0.00889 x 2 x 4 x 1.10 x 1.20
    assert item.base_price == Decimal("900") * Decimal("0.00889") * 2 * Decimal("4") * Decimal("1.10") * Decimal("1.20")


def test_list_priced_products_need_no_metal(pricing_table) -> None:
    assert required_metals([_frls_xlpe(), CoaxialCable(coaxial_type="RG6")], pricing_table) == set()


def test_total_is_rounded_once(pricing_table) -> None:
    coax = CoaxialCable(coaxial_type="RG6")
    quotation = build_quotation(
        [QuoteLine(coax, 1, "retail"), QuoteLine(coax, 1, "retail")], PriceSnapshot(), pricing_table
    )

    assert [item.line_total for item in quotation.items] == [Decimal("10.01"), Decimal("10.01")]
    # 10.005 + 10.005 = 20.01, not the rounded lines 20.02
    assert quotation.subtotal == Decimal("20.01")
    assert quotation.gst == Decimal("3.60")
    assert quotation.grand_total == Decimal("23.61")


def test_printed_lines_add_up_to_grand_total(pricing_table) -> None:
    table = pricing_table.model_copy(update={"list_prices": {"coaxial:RG59": Decimal("1.00049")}})
    quotation = build_quotation([QuoteLine(CoaxialCable(coaxial_type="RG59"), 10, "retail")], PriceSnapshot(), table)

    # 10.0049 taxable, 11.805782 with GST; a separately rounded GST would print 1.80
    assert quotation.taxable_value == Decimal("10.00")
    assert quotation.grand_total == Decimal("11.81")
    assert quotation.gst == Decimal("1.81")
    assert quotation.taxable_value + quotation.gst == quotation.grand_total


def test_delivery_charges_are_taxed(pricing_table) -> None:
    quotation = build_quotation(
        [QuoteLine(_frls_xlpe(), 10, "dealer")], PriceSnapshot(), pricing_table, delivery_charges=Decimal("500")
    )
    assert quotation.taxable_value == Decimal("1478.50")
    assert quotation.gst == Decimal("266.13")
    assert quotation.grand_total == Decimal("1744.63")


def test_negative_delivery_charges_rejected(pricing_table) -> None:
    with pytest.raises(PricingError):
        build_quotation([QuoteLine(_frls_xlpe(), 1, "retail")], PriceSnapshot(), pricing_table, Decimal("-1"))


def test_pricing_error_names_the_failing_line(pricing_table) -> None:
    lines = [
        QuoteLine(_frls_xlpe(), 10, "dealer"),
        QuoteLine(TelephoneCable(pairs=10, conductor_mm=Decimal("0.5")), 50, "dealer"),
    ]
    with pytest.raises(PricingError) as exc_info:
        build_quotation(lines, PriceSnapshot(), pricing_table)

    assert exc_info.value.line == 2
    assert exc_info.value.message.startswith("line 2: no list price")
    assert "Tel Cable" in exc_info.value.description


def test_size_not_manufactured(pricing_table) -> None:
    product = LTCable(conductor=Metal.ALUMINIUM, cores=4, sqmm=Decimal("3"))
    with pytest.raises(PricingError, match="size not manufactured"):
        price_lines([QuoteLine(product, 1, "retail")], _snapshot(aluminium="250"), pricing_table)


def test_missing_metal_price_in_snapshot(pricing_table) -> None:
    product = LTCable(conductor=Metal.ALUMINIUM, cores=4, sqmm=Decimal("16"))
    with pytest.raises(PricingError, match="aluminium price missing"):
        price_lines([QuoteLine(product, 1, "retail")], _snapshot(copper="900"), pricing_table)


def test_unknown_tier_and_bad_quantity(pricing_table) -> None:
    with pytest.raises(PricingError, match="unknown discount tier"):
        price_lines([QuoteLine(_frls_xlpe(), 1, "vip")], PriceSnapshot(), pricing_table)
    with pytest.raises(PricingError, match="quantity must be positive"):
        price_lines([QuoteLine(_frls_xlpe(), 0, "retail")], PriceSnapshot(), pricing_table)
    with pytest.raises(PricingError, match="no items"):
        price_lines([], PriceSnapshot(), pricing_table)
