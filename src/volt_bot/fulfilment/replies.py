"""Templated reply texts."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from volt_bot.adapters.base import Availability
from volt_bot.core.errors import (
    AdapterUnavailable,
    IntentResolutionFailed,
    PricingError,
    ValidationError,
    VoltBotError,
)
from volt_bot.core.types import Metal, UserStatus
from volt_bot.pricing.engine import round_money
from volt_bot.pricing.models import PriceSnapshot, Quotation, QuoteItem

IST = ZoneInfo("Asia/Kolkata")

HELP_TEXT = (
    "Send me what you need in plain words, for example:\n"
    "- quote 100 m 4 core 2.5 sq mm copper armoured FRLS\n"
    "- rate of 3 core 1.5 sq mm flexible\n"
    "- stock of 2 core 4 sq mm submersible\n"
    "- copper price"
)


def money(value: Decimal) -> str:
    return f"Rs. {round_money(value):,.2f}"


def ist_stamp(at: datetime) -> str:
    return at.astimezone(IST).strftime("%d/%m/%Y %I:%M %p IST")


def _metal_label(metal: Metal) -> str:
    return "Copper" if metal is Metal.COPPER else "Aluminium"


def format_quotation(quotation: Quotation, stale: bool = False) -> str:
    lines = ["Quotation", ""]
    for idx, item in enumerate(quotation.items, start=1):
        lines.append(f"{idx}. {item.description}")
        lines.append(f"   {item.quantity} m x {money(item.unit_price)}/m = {money(item.line_total)}")
    lines.append("")
    lines.append(f"Subtotal: {money(quotation.subtotal)}")
    if quotation.delivery_charges:
        lines.append(f"Delivery: {money(quotation.delivery_charges)}")
    gst_pct = (quotation.gst_rate * 100).normalize()
    lines.append(f"GST @ {gst_pct:f}%: {money(quotation.gst)}")
    lines.append(f"Grand total: {money(quotation.grand_total)}")
    if quotation.prices_as_of is not None:
        note = " (latest available, source not reachable)" if stale else ""
        lines.append(f"Metal prices as of {ist_stamp(quotation.prices_as_of)}{note}")
    return "\n".join(lines)


def format_prices(items: Sequence[QuoteItem], prices_as_of: Optional[datetime] = None, stale: bool = False) -> str:
    lines = [f"{item.description}: {money(item.unit_price)}/mtr" for item in items]
    lines.append("Prices exclude GST.")
    if prices_as_of is not None:
        note = " (latest available, source not reachable)" if stale else ""
        lines.append(f"Metal prices as of {ist_stamp(prices_as_of)}{note}")
    return "\n".join(lines)


def format_stock(availability: Availability) -> str:
    return f"Stock for '{availability.query}':\n{availability.stock_info}"


def format_metal_prices(snapshot: PriceSnapshot) -> str:
    lines = ["Metal prices (per kg)"]
    for metal, spot in sorted(snapshot.prices.items()):
        stale = " (stale)" if spot.stale else ""
        lines.append(f"{_metal_label(metal)}: {money(spot.price)} as of {ist_stamp(spot.as_of)}{stale}")
    return "\n".join(lines)


def format_price_alert(snapshot: PriceSnapshot, now: datetime) -> str:
    lines = ["Metal Price Update", ist_stamp(now), ""]
    for metal, spot in sorted(snapshot.prices.items()):
        lines.append(f"{_metal_label(metal)}: {money(spot.price)}")
    return "\n".join(lines)


def format_error_alert(kind: str, message: str, session_id: Optional[str], at: datetime) -> str:
    lines = [f"Error: {kind}", ist_stamp(at)]
    if session_id:
        lines.append(f"Session: {session_id}")
    lines.append(message)
    return "\n".join(lines)


def gate_reply(status: UserStatus) -> str:
    if status == UserStatus.SUSPENDED:
        return "Your account is suspended. Please contact the sales team."
    return "Thanks for reaching out. Your access request is awaiting approval; we will let you know once it is active."


def error_reply(error: Optional[VoltBotError]) -> str:
    match error:
        case ValidationError():
            return (
                "I could not read all the details of your request. Please mention the cable type, "
                "size in sq. mm, number of cores and length in metres."
            )
        case IntentResolutionFailed():
            return "Could not understand query. Please rephrase."
        case PricingError(line=line) if line is not None:
            return f"Could not price item {line}: {error.message.removeprefix(f'line {line}: ')}"
        case PricingError():
            return f"Could not price the request: {error.message}"
        case AdapterUnavailable(adapter="erp"):
            return "Stock information is temporarily unavailable. Please try again shortly."
        case AdapterUnavailable(adapter="metal_prices"):
            return "Metal prices are temporarily unavailable. Please try again shortly."
        case AdapterUnavailable():
            return "This information is temporarily unavailable. Please try again shortly."
        case _:
            return "Cannot fulfil this request at the moment."
