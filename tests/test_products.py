from decimal import Decimal

import pydantic
import pytest

from volt_bot.core.types import Metal
from volt_bot.pricing.products import (
    CoaxialCable,
    FlexibleCable,
    HTCable,
    Insulation,
    LTCable,
    SolarCable,
    TelephoneCable,
    conductor_metal,
    describe,
    has_frls,
    has_pvc_insulation,
    price_key,
    product_adapter,
)


def test_product_union_dispatches_on_kind() -> None:
    product = product_adapter.validate_python(
        {"kind": "lt_cable", "conductor": "aluminium", "cores": 4, "sqmm": "16", "insulation": "pvc"}
    )
    assert isinstance(product, LTCable)
    assert product.conductor is Metal.ALUMINIUM
    assert product.insulation is Insulation.PVC
    assert product.sqmm == Decimal("16")

    coax = product_adapter.validate_python({"kind": "coaxial_cable", "coaxial_type": "RG6"})
    assert isinstance(coax, CoaxialCable)


def test_product_union_rejects_unknown_kind_and_extra_fields() -> None:
    with pytest.raises(pydantic.ValidationError):
        product_adapter.validate_python({"kind": "fibre_optic", "cores": 12})
    with pytest.raises(pydantic.ValidationError):
        product_adapter.validate_python({"kind": "coaxial_cable", "coaxial_type": "RG6", "colour": "black"})
    with pytest.raises(pydantic.ValidationError):
        product_adapter.validate_python({"kind": "lt_cable", "conductor": "copper", "cores": 0, "sqmm": "2.5"})


def test_price_key_ignores_loadings() -> None:
    plain = LTCable(conductor=Metal.COPPER, cores=4, sqmm=Decimal("2.50"), armoured=True)
    loaded = LTCable(conductor=Metal.COPPER, cores=4, sqmm=Decimal("2.5"), armoured=True, frls=True, insulation=Insulation.PVC)
    assert price_key(plain) == price_key(loaded) == "lt:copper:4c:2.5:arm"


def test_price_keys_per_category() -> None:
    ht = HTCable(conductor=Metal.ALUMINIUM, voltage_grade="11 kV", cores=3, sqmm=Decimal("185"))
    assert price_key(ht) == "ht:aluminium:11kv:3c:185:arm"
    assert price_key(TelephoneCable(pairs=10, conductor_mm=Decimal("0.5"))) == "telephone:10p:0.5"
    assert price_key(FlexibleCable(cores=3, sqmm=Decimal("1.5"))) == "flexible:FR:3c:1.5"
    assert price_key(SolarCable(solar_type="EN", sqmm=Decimal("4"))) == "solar:EN:4"


def test_describe() -> None:
    lt = LTCable(conductor=Metal.COPPER, cores=4, sqmm=Decimal("2.5"), armoured=True, frls=True)
    assert describe(lt) == "4 C x 2.5 sq. mm XLPE Insulated, FRLS PVC Sheathed Armoured Copper Cable"
    assert describe(CoaxialCable(coaxial_type="RG11")) == "RG11 Coaxial Cable"
    assert describe(TelephoneCable(pairs=20, conductor_mm=Decimal("0.5"))) == "20 P x 0.5 mm Unarmoured Tel Cable"


def test_loading_flags() -> None:
    pvc_frls = LTCable(conductor=Metal.COPPER, cores=2, sqmm=Decimal("4"), insulation=Insulation.PVC, frls=True)
    assert has_frls(pvc_frls)
    assert has_pvc_insulation(pvc_frls)

    ht = HTCable(conductor=Metal.COPPER, voltage_grade="11 kV", cores=3, sqmm=Decimal("95"), frls=True)
    assert has_frls(ht)
    assert not has_pvc_insulation(ht)

    flexible = FlexibleCable(cores=3, sqmm=Decimal("1.5"), flexible_type="FRLSH")
    assert not has_frls(flexible)
    assert not has_pvc_insulation(flexible)
    assert conductor_metal(flexible) is Metal.COPPER
