"""
Payment History PDF Generation Service

Generates the payment history statement for one invoice:
- Invoice header (number, date, client, receivable)
- Payment table (number, date, mode, reference, amount)
- Department split lines under split payments
- Totals (received, due)

Filename format: "Payment-History-<invoice_number>.pdf"
"""

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib.enums import TA_CENTER
from datetime import datetime
from typing import Dict, List, Any
from io import BytesIO
from xml.sax.saxutils import escape
import logging

from reconciliation.currency_normalizer import BASE_CURRENCY, invoice_currency, receivable_amount, total_in_base
from reconciliation.financial_precision import format_money, round_financial, to_decimal
from reconciliation.invoice_balance import current_received

logger = logging.getLogger(__name__)


def _format_date(value) -> str:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return value
    if isinstance(value, datetime):
        return value.strftime("%b %d, %Y")
    return "N/A"


class PaymentHistoryPDFGenerator:
    """Generate payment history PDF statements"""

    def __init__(self):
        self.page_width, self.page_height = A4
        self.margin = 0.75 * inch
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        self.styles.add(ParagraphStyle(
            name='StatementTitle',
            parent=self.styles['Heading1'],
            fontSize=22,
            alignment=TA_CENTER,
            spaceAfter=12,
            textColor=colors.HexColor('#1a365d')
        ))

        self.styles.add(ParagraphStyle(
            name='StatementSubtitle',
            parent=self.styles['Normal'],
            fontSize=13,
            alignment=TA_CENTER,
            spaceAfter=24,
            textColor=colors.HexColor('#4a5568')
        ))

        self.styles.add(ParagraphStyle(
            name='SectionHeader',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceBefore=16,
            spaceAfter=8,
            textColor=colors.HexColor('#2d3748'),
        ))

        self.styles.add(ParagraphStyle(
            name='StatementBody',
            parent=self.styles['Normal'],
            fontSize=10,
            leading=14,
            textColor=colors.HexColor('#2d3748')
        ))

    def generate_pdf(self, invoice: Dict[str, Any], payments: List[Dict[str, Any]]) -> bytes:
        """
        Generate the payment history PDF

        Args:
            invoice: Invoice document
            payments: Payments for the invoice in payment-date order

        Returns:
            PDF bytes
        """
        buffer = BytesIO()

        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Payment History - {invoice.get('invoice_number', '')}"
        )

        story = []
        story.extend(self._build_header(invoice))
        story.extend(self._build_payment_table(payments))
        story.extend(self._build_totals(invoice, payments))

        doc.build(story)

        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"[PDF] Payment history generated for invoice {invoice.get('invoice_number')} ({len(payments)} payments)")
        return pdf_bytes

    def _build_header(self, invoice: Dict[str, Any]) -> List:
        elements = []
        invoice_number = invoice.get('invoice_number', 'N/A')
        client = invoice.get('client_details') or {}

        elements.append(Paragraph("Payment History", self.styles['StatementTitle']))
        elements.append(Paragraph(f"Invoice {escape(str(invoice_number))}", self.styles['StatementSubtitle']))

        header_data = [
            ['Invoice Number:', invoice_number],
            ['Invoice Date:', _format_date(invoice.get('invoice_date'))],
            ['Client:', client.get('name') or 'N/A'],
            ['Invoice Amount:', format_money(receivable_amount(invoice), invoice_currency(invoice))],
            ['Status:', invoice.get('status', 'Unpaid')],
        ]

        header_table = Table(header_data, colWidths=[2 * inch, 4 * inch])
        header_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTNAME', (1, 0), (1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 11),
            ('TEXTCOLOR', (0, 0), (0, -1), colors.HexColor('#4a5568')),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
            ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ]))
        elements.append(header_table)
        elements.append(Spacer(1, 16))
        return elements

    def _build_payment_table(self, payments: List[Dict[str, Any]]) -> List:
        elements = [Paragraph("Payments", self.styles['SectionHeader'])]

        if not payments:
            elements.append(Paragraph("No payments recorded.", self.styles['StatementBody']))
            return elements

        table_data = [['Payment #', 'Date', 'Mode', 'Reference', f'Amount ({BASE_CURRENCY})']]
        split_rows = []

        for payment in payments:
            table_data.append([
                payment.get('payment_number', ''),
                _format_date(payment.get('payment_date')),
                payment.get('payment_mode', ''),
                payment.get('reference_number') or '-',
                f"{round_financial(payment.get('amount_received') or 0):,.2f}",
            ])
            if payment.get('has_department_split'):
                for split in payment.get('department_splits') or []:
                    split_rows.append(len(table_data))
                    table_data.append([
                        '', '', '', f"  {split.get('department_name', '')}",
                        f"{round_financial(split.get('amount') or 0):,.2f}",
                    ])

        style = [
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#2d3748')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('ALIGN', (-1, 0), (-1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#cbd5e0')),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
        ]
        for row in split_rows:
            style.append(('FONTNAME', (0, row), (-1, row), 'Helvetica-Oblique'))
            style.append(('TEXTCOLOR', (0, row), (-1, row), colors.HexColor('#718096')))

        table = Table(table_data, colWidths=[1.2 * inch, 1.1 * inch, 1.3 * inch, 1.6 * inch, 1.3 * inch])
        table.setStyle(TableStyle(style))
        elements.append(table)
        return elements

    def _build_totals(self, invoice: Dict[str, Any], payments: List[Dict[str, Any]]) -> List:
        received = current_received(invoice)
        if not received and payments:
            received = round_financial(sum(to_decimal(p.get('amount_received') or 0) for p in payments))
        due = max(round_financial(total_in_base(invoice) - received), round_financial(0))

        totals = Table([
            ['Total Received:', format_money(received, BASE_CURRENCY)],
            ['Balance Due:', format_money(due, BASE_CURRENCY)],
        ], colWidths=[4.5 * inch, 2 * inch])
        totals.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 11),
            ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
            ('LINEABOVE', (0, 0), (-1, 0), 1, colors.HexColor('#2d3748')),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
        ]))
        return [Spacer(1, 16), totals]

    def get_filename(self, invoice_number: str) -> str:
        """
        Example: "Payment-History-INV-0042.pdf"
        """
        return f"Payment-History-{invoice_number}.pdf"
