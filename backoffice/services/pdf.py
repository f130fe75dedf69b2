"""
Invoice PDF rendering with reportlab platypus.

Produces the fixed-layout document attached to invoice emails and served by
the download endpoint.
"""

import asyncio
import io
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from html import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from backoffice.db.models import Invoice
from backoffice.exceptions import InternalError
from backoffice.models.domain import LineItem
from backoffice.observability.logging import get_logger
from backoffice.services.email import format_money

logger = get_logger(__name__)


@dataclass(frozen=True)
class BusinessProfile:
    """Letterhead details printed on every invoice."""

    name: str
    email: str = ""
    website: str = ""


def _date(value: datetime) -> str:
    return value.strftime("%B %d, %Y")


class InvoicePDFRenderer:
    """Renders an Invoice row to PDF bytes."""

    def __init__(self, business: BusinessProfile) -> None:
        self.business = business
        styles = getSampleStyleSheet()
        self.styles = {
            "title": ParagraphStyle("InvoiceTitle", parent=styles["Title"], alignment=2),
            "heading": ParagraphStyle("InvoiceHeading", parent=styles["Heading4"], spaceAfter=4),
            "body": styles["BodyText"],
            "small": ParagraphStyle("InvoiceSmall", parent=styles["BodyText"], fontSize=8),
        }

    def _header(self, invoice: Invoice) -> Table:
        business_lines = [f"<b>{escape(self.business.name)}</b>"]
        if self.business.email:
            business_lines.append(escape(self.business.email))
        if self.business.website:
            business_lines.append(escape(self.business.website))

        meta = (
            f"<b>Invoice #</b> {escape(invoice.invoice_number)}<br/>"
            f"<b>Issue date:</b> {_date(invoice.issue_date)}<br/>"
            f"<b>Due date:</b> {_date(invoice.due_date)}<br/>"
            f"<b>Status:</b> {escape(invoice.status.upper())}"
        )
        table = Table(
            [
                [
                    Paragraph("<br/>".join(business_lines), self.styles["body"]),
                    Paragraph("INVOICE", self.styles["title"]),
                ],
                ["", Paragraph(meta, self.styles["body"])],
            ],
            colWidths=[3.5 * inch, 3.5 * inch],
        )
        table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        return table

    def _bill_to(self, invoice: Invoice) -> list:
        lines = [escape(invoice.client_name), escape(invoice.client_email)]
        if invoice.client_address:
            lines.extend(escape(line) for line in invoice.client_address.splitlines())
        return [
            Paragraph("Bill To", self.styles["heading"]),
            Paragraph("<br/>".join(lines), self.styles["body"]),
        ]

    def _items(self, invoice: Invoice) -> Table:
        currency = invoice.currency
        rows: list[list] = [["Description", "Qty", "Unit Price", "Amount"]]
        for raw in invoice.line_items:
            item = LineItem.from_json(raw)
            rows.append(
                [
                    Paragraph(escape(item.description), self.styles["body"]),
                    f"{item.quantity.normalize():f}",
                    format_money(item.unit_price, currency),
                    format_money(item.total, currency),
                ]
            )

        tax_rate = Decimal(str(invoice.tax_rate)).normalize()
        rows.append(["", "", "Subtotal", format_money(invoice.subtotal, currency)])
        rows.append(["", "", f"Tax ({tax_rate:f}%)", format_money(invoice.tax_amount, currency)])
        rows.append(["", "", "Total", format_money(invoice.total, currency)])

        item_count = len(invoice.line_items)
        table = Table(rows, colWidths=[3.7 * inch, 0.7 * inch, 1.3 * inch, 1.3 * inch], repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#111827")),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("LINEBELOW", (0, 1), (-1, item_count), 0.25, colors.HexColor("#e5e7eb")),
                    ("LINEABOVE", (2, -1), (-1, -1), 1, colors.black),
                    ("FONTNAME", (2, -1), (-1, -1), "Helvetica-Bold"),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        return table

    def _render(self, invoice: Invoice) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=LETTER,
            leftMargin=0.75 * inch,
            rightMargin=0.75 * inch,
            topMargin=0.75 * inch,
            bottomMargin=0.75 * inch,
            title=f"Invoice {invoice.invoice_number}",
            author=self.business.name,
        )

        story: list = [self._header(invoice), Spacer(1, 0.3 * inch)]
        story.extend(self._bill_to(invoice))
        story.append(Spacer(1, 0.3 * inch))
        story.append(self._items(invoice))
        if invoice.notes:
            story.append(Spacer(1, 0.3 * inch))
            story.append(Paragraph("Notes", self.styles["heading"]))
            story.append(Paragraph(escape(invoice.notes), self.styles["body"]))
        if invoice.terms:
            story.append(Spacer(1, 0.2 * inch))
            story.append(Paragraph("Terms", self.styles["heading"]))
            story.append(Paragraph(escape(invoice.terms), self.styles["small"]))

        doc.build(story)
        return buffer.getvalue()

    async def render(self, invoice: Invoice) -> bytes:
        """
        Render the invoice to PDF bytes.

        Raises:
            InternalError: If reportlab fails to lay out the document
        """
        try:
            return await asyncio.to_thread(self._render, invoice)
        except Exception as exc:
            logger.error(
                "invoice_pdf_render_failed",
                invoice_id=str(invoice.id),
                invoice_number=invoice.invoice_number,
                error=str(exc),
                exc_info=True,
            )
            raise InternalError("Failed to generate invoice PDF") from exc
