"""Closed product catalogue for electrical cables.

Products form a tagged union discriminated by ``kind``. Code that depends on
the product class matches on it exhaustively and ends in ``assert_never`` so a
new conductor class cannot be added without every pricing site handling it.
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal, Union, assert_never

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, TypeAdapter

from volt_bot.core.types import Metal


class Insulation(StrEnum):
    XLPE = "xlpe"
    PVC = "pvc"


class FlexibleType(StrEnum):
    FR = "FR"
    FRLSH = "FRLSH"
    HRFR = "HRFR"
    ZHFR = "ZHFR"


class CoaxialType(StrEnum):
    RG6 = "RG6"
    RG11 = "RG11"
    RG59 = "RG59"


class SolarType(StrEnum):
    BS = "BS"
    EN = "EN"


SqMm = Annotated[Decimal, Field(gt=0, description="Conductor cross-section in sq. mm, e.g. 2.5")]


class _Product(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class LTCable(_Product):
    """Low-tension power/control cable (up to 1.1 kV)."""

    kind: Literal["lt_cable"] = "lt_cable"
    conductor: Metal
    cores: PositiveInt
    sqmm: SqMm
    armoured: bool = False
    insulation: Insulation = Insulation.XLPE
    frls: bool = Field(default=False, description="Fire-retardant low-smoke outer sheath")


class HTCable(_Product):
    """High-tension power cable, always XLPE insulated."""

    kind: Literal["ht_cable"] = "ht_cable"
    conductor: Metal
    voltage_grade: str = Field(description="Voltage grade, e.g. '11 kV'")
    cores: PositiveInt
    sqmm: SqMm
    armoured: bool = True
    frls: bool = False


class FlexibleCable(_Product):
    """Multi-strand copper flexible cable. Never carries loadings."""

    kind: Literal["flexible_cable"] = "flexible_cable"
    cores: PositiveInt
    sqmm: SqMm
    flexible_type: FlexibleType = FlexibleType.FR


class TelephoneCable(_Product):
    kind: Literal["telephone_cable"] = "telephone_cable"
    pairs: PositiveInt
    conductor_mm: Decimal = Field(gt=0)


class CoaxialCable(_Product):
    kind: Literal["coaxial_cable"] = "coaxial_cable"
    coaxial_type: CoaxialType


class SubmersibleCable(_Product):
    kind: Literal["submersible_cable"] = "submersible_cable"
    cores: PositiveInt
    sqmm: SqMm


class SolarCable(_Product):
    kind: Literal["solar_cable"] = "solar_cable"
    solar_type: SolarType
    sqmm: SqMm


Product = Annotated[
    Union[
        LTCable,
        HTCable,
        FlexibleCable,
        TelephoneCable,
        CoaxialCable,
        SubmersibleCable,
        SolarCable,
    ],
    Field(discriminator="kind"),
]

product_adapter: TypeAdapter[Product] = TypeAdapter(Product)


def fmt_size(value: Decimal) -> str:
    """Render a size without trailing zeros or exponent: 2.50 -> '2.5', 10 -> '10'."""
    return format(value.normalize(), "f")


def category(product: Product) -> str:
    """Category name used to look up size tables."""
    return product.kind


def conductor_metal(product: Product) -> Metal:
    match product:
        case LTCable() | HTCable():
            return product.conductor
        case FlexibleCable() | TelephoneCable() | CoaxialCable() | SubmersibleCable() | SolarCable():
            return Metal.COPPER
        case _:
            assert_never(product)


def has_frls(product: Product) -> bool:
    match product:
        case LTCable() | HTCable():
            return product.frls
        case FlexibleCable() | TelephoneCable() | CoaxialCable() | SubmersibleCable() | SolarCable():
            return False
        case _:
            assert_never(product)


def has_pvc_insulation(product: Product) -> bool:
    match product:
        case LTCable():
            return product.insulation is Insulation.PVC
        case HTCable() | FlexibleCable() | TelephoneCable() | CoaxialCable() | SubmersibleCable() | SolarCable():
            return False
        case _:
            assert_never(product)


def price_key(product: Product) -> str:
    """Stable key identifying a product in list-price tables.

    Loadings (FRLS, PVC) are not part of the key; they are applied on top of
    the base price.
    """
    match product:
        case LTCable():
            armour = "arm" if product.armoured else "unarm"
            return f"lt:{product.conductor}:{product.cores}c:{fmt_size(product.sqmm)}:{armour}"
        case HTCable():
            armour = "arm" if product.armoured else "unarm"
            grade = product.voltage_grade.lower().replace(" ", "")
            return f"ht:{product.conductor}:{grade}:{product.cores}c:{fmt_size(product.sqmm)}:{armour}"
        case FlexibleCable():
            return f"flexible:{product.flexible_type}:{product.cores}c:{fmt_size(product.sqmm)}"
        case TelephoneCable():
            return f"telephone:{product.pairs}p:{fmt_size(product.conductor_mm)}"
        case CoaxialCable():
            return f"coaxial:{product.coaxial_type}"
        case SubmersibleCable():
            return f"submersible:{product.cores}c:{fmt_size(product.sqmm)}"
        case SolarCable():
            return f"solar:{product.solar_type}:{fmt_size(product.sqmm)}"
        case _:
            assert_never(product)


def describe(product: Product) -> str:
    """Customer-facing description used on quotations."""
    match product:
        case LTCable():
            metal = "Copper" if product.conductor is Metal.COPPER else "Aluminium"
            insulation = "PVC" if product.insulation is Insulation.PVC else "XLPE"
            sheath = "FRLS PVC" if product.frls else "PVC"
            armour = "Armoured" if product.armoured else "Unarmoured"
            return (
                f"{product.cores} C x {fmt_size(product.sqmm)} sq. mm {insulation} Insulated, "
                f"{sheath} Sheathed {armour} {metal} Cable"
            )
        case HTCable():
            metal = "Copper" if product.conductor is Metal.COPPER else "Aluminium"
            armour = "Armoured" if product.armoured else "Unarmoured"
            frls = " FRLS" if product.frls else ""
            return (
                f"{product.voltage_grade} {product.cores} C x {fmt_size(product.sqmm)} sq. mm "
                f"XLPE{frls} {armour} {metal} HT Cable"
            )
        case FlexibleCable():
            return (
                f"{product.cores} C x {fmt_size(product.sqmm)} sq. mm "
                f"{product.flexible_type} Multistrand Flexible Copper Cable"
            )
        case TelephoneCable():
            return f"{product.pairs} P x {fmt_size(product.conductor_mm)} mm Unarmoured Tel Cable"
        case CoaxialCable():
            return f"{product.coaxial_type} Coaxial Cable"
        case SubmersibleCable():
            return f"{product.cores} C x {fmt_size(product.sqmm)} sq. mm Submersible Cable"
        case SolarCable():
            return f"1 C x {fmt_size(product.sqmm)} sq. mm {product.solar_type} Solar Cable"
        case _:
            assert_never(product)
