"""PDF quotation documents sent alongside the quotation reply."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Any

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from volt_bot.fulfilment.replies import IST, ist_stamp, money
from volt_bot.pricing.engine import round_money
from volt_bot.pricing.models import Quotation

INTRO_TEXT = "Thank you for your enquiry. Please find the quotation below for your consideration."


@dataclass(frozen=True, slots=True)
class QuotationDocument:
    number: str
    filename: str
    data: bytes
    mime_type: str = "application/pdf"


def quotation_number(session_id: str, issued_at: datetime) -> str:
    """``QT-<IST date>-<session prefix>``, so every document traces back to its session."""
    return f"QT-{issued_at.astimezone(IST):%Y%m%d}-{session_id.replace('-', '')[:8].upper()}"


def quotation_date(issued_at: datetime) -> str:
    """Long-form IST date, e.g. ``21st January, 2026``."""
    local = issued_at.astimezone(IST)
    day = local.day
    if day in (11, 12, 13):
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix} {local:%B}, {local.year}"


def build_quotation_document(
    quotation: Quotation,
    session_id: str,
    issued_at: datetime,
    company_name: str = "",
) -> QuotationDocument:
    number = quotation_number(session_id, issued_at)
    data = render_quotation_pdf(quotation, number, quotation_date(issued_at), company_name)
    return QuotationDocument(number=number, filename=f"{number}.pdf", data=data)


def render_quotation_pdf(quotation: Quotation, number: str, date_text: str, company_name: str = "") -> bytes:
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        name="QuotationTitle",
        parent=styles["Title"],
        fontName="Helvetica-Bold",
        fontSize=16,
        leading=20,
        spaceAfter=10,
    )
    body_style = ParagraphStyle(
        name="QuotationBody",
        parent=styles["BodyText"],
        fontName="Helvetica",
        fontSize=10,
        leading=14,
        spaceAfter=6,
    )
    cell_style = ParagraphStyle(
        name="QuotationCell",
        parent=body_style,
        fontSize=9,
        leading=11,
        spaceAfter=0,
    )
    small_style = ParagraphStyle(
        name="QuotationSmall",
        parent=body_style,
        fontSize=8,
        leading=11,
        textColor=colors.grey,
    )

    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        rightMargin=15 * mm,
        leftMargin=15 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title=f"Quotation {number}",
    )

    story: list[Any] = []
    if company_name:
        story.append(Paragraph(_escape_paragraph(company_name), title_style))
    story.append(Paragraph("Quotation", title_style))

    header = Table([[f"Ref: {number}", f"Date: {date_text}"]], colWidths=[90 * mm, 90 * mm])
    header.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("ALIGN", (1, 0), (1, 0), "RIGHT"),
            ]
        )
    )
    story.append(header)
    story.append(Spacer(1, 8))
    story.append(Paragraph(INTRO_TEXT, body_style))

    rows: list[list[Any]] = [["#", "Item", "Qty (Mtr)", "Rate/mtr.", "Amount"]]
    for idx, item in enumerate(quotation.items, start=1):
        rows.append(
            [
                str(idx),
                Paragraph(_escape_paragraph(item.description), cell_style),
                str(item.quantity),
                f"{round_money(item.unit_price):,.2f}",
                f"{item.line_total:,.2f}",
            ]
        )
    items_table = Table(rows, colWidths=[10 * mm, 90 * mm, 22 * mm, 28 * mm, 30 * mm], repeatRows=1)
    items_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    story.append(items_table)
    story.append(Spacer(1, 10))

    gst_pct = (quotation.gst_rate * 100).normalize()
    totals: list[list[str]] = [["Sub Total", money(quotation.subtotal)]]
    if quotation.delivery_charges:
        totals.append(["Delivery Charges", money(quotation.delivery_charges)])
    totals.append([f"GST @ {gst_pct:f}%", money(quotation.gst)])
    totals.append(["Total", money(quotation.grand_total)])
    totals_table = Table(totals, colWidths=[40 * mm, 40 * mm], hAlign="RIGHT")
    totals_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("LINEABOVE", (0, -1), (-1, -1), 0.5, colors.grey),
            ]
        )
    )
    story.append(totals_table)

    if quotation.prices_as_of is not None:
        story.append(Spacer(1, 10))
        note = f"Metal-linked rates use spot prices as of {ist_stamp(quotation.prices_as_of)}."
        story.append(Paragraph(note, small_style))

    doc.build(story)
    buf.seek(0)
    return buf.getvalue()


def _escape_paragraph(text: str) -> str:
    return (
        str(text)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("\n", "<br/>")
    )
