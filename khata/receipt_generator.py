"""Receipt generator for Khata.

Renders a one-page PDF receipt for a recorded repayment. The renderer only
formats numbers the ledger already committed; it never reads or changes
balances itself.
"""
import os
from datetime import datetime
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors, pagesizes
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from .config import DATE_FORMAT_STORAGE, RECEIPT_CONTENT_TYPE
from .data_structures import ReceiptConfig, ReceiptData, ReceiptDocument


class ReceiptGenerator:
    """Generates PDF payment receipts.

    Args:
        config: Layout and wording; defaults to ReceiptConfig().
    """

    def __init__(self, config: ReceiptConfig = None):
        self.config = config or ReceiptConfig()

    @staticmethod
    def receipt_filename(repayment_id):
        return f"{repayment_id}.pdf"

    @staticmethod
    def _sanitize_filename(name):
        """Sanitize filename to prevent OS issues."""
        if not name:
            name = "Unknown"

        safe = "".join(c for c in str(name) if c.isalnum() or c in (' ', '-', '_'))
        safe = safe.strip()

        if not safe:
            safe = "Receipt"

        return safe[:100]

    def _format_money(self, amount):
        return f"{self.config.currency_symbol} {amount:,.2f}"

    def _format_date(self, date_str):
        try:
            return datetime.strptime(date_str, DATE_FORMAT_STORAGE).strftime(self.config.date_format)
        except ValueError:
            return date_str

    def _page_size(self):
        try:
            return getattr(pagesizes, self.config.page_size.upper())
        except AttributeError:
            raise ValueError(f"Unknown page size '{self.config.page_size}'")

    def _build_elements(self, data: ReceiptData):
        styles = getSampleStyleSheet()
        shop_style = ParagraphStyle(
            'ShopName',
            parent=styles['Heading1'],
            fontSize=20,
            alignment=TA_CENTER,
            spaceAfter=6,
        )
        title_style = ParagraphStyle(
            'ReceiptTitle',
            parent=styles['Heading2'],
            fontSize=14,
            alignment=TA_CENTER,
            spaceAfter=12,
        )
        footer_style = ParagraphStyle(
            'ReceiptFooter',
            parent=styles['Normal'],
            fontSize=9,
            textColor=colors.grey,
            alignment=TA_CENTER,
        )

        elements = [
            Paragraph(escape(data.shop_name or ""), shop_style),
            Paragraph(escape(self.config.title), title_style),
        ]

        details = [
            ["Receipt ID", str(data.repayment_id)],
            ["Date", self._format_date(data.payment_date)],
            ["Customer", data.customer_name],
            ["Loan", data.loan_description],
        ]
        details_table = Table(details, colWidths=[30 * mm, 80 * mm])
        details_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
        ]))
        elements.append(details_table)
        elements.append(Spacer(1, 8 * mm))

        payment = [
            ["Amount Paid", self._format_money(data.amount)],
            ["Remaining Balance", self._format_money(data.remaining_balance)],
        ]
        payment_table = Table(payment, colWidths=[50 * mm, 60 * mm])
        payment_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#E8F0FE')),
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 11),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ]))
        elements.append(payment_table)
        elements.append(Spacer(1, 10 * mm))

        if self.config.footer:
            elements.append(Paragraph(escape(self.config.footer), footer_style))
        elements.append(Paragraph("This is an electronically generated receipt.", footer_style))
        return elements

    def render(self, data: ReceiptData) -> BytesIO:
        """Render a receipt into an in-memory PDF stream, rewound to the start."""
        buffer = BytesIO()
        margin = self.config.margin_mm * mm
        doc = SimpleDocTemplate(
            buffer,
            pagesize=self._page_size(),
            rightMargin=margin,
            leftMargin=margin,
            topMargin=margin,
            bottomMargin=margin,
            title=f"Receipt {data.repayment_id}",
        )
        doc.build(self._build_elements(data))
        buffer.seek(0)
        return buffer

    def save(self, data: ReceiptData, folder) -> str:
        """Render a receipt to ``<folder>/<repayment_id>.pdf``.

        Returns:
            Path of the written file.
        """
        os.makedirs(folder, exist_ok=True)
        filepath = os.path.join(folder, self.receipt_filename(self._sanitize_filename(data.repayment_id)))
        buffer = self.render(data)
        with open(filepath, "wb") as f:
            f.write(buffer.getvalue())
        return filepath

    def document(self, data: ReceiptData) -> ReceiptDocument:
        """Render a receipt packaged for download."""
        return ReceiptDocument(
            filename=f"receipt-{self._sanitize_filename(data.repayment_id)}.pdf",
            content_type=RECEIPT_CONTENT_TYPE,
            stream=self.render(data),
        )
