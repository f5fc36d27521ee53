"""Receipt rendering: 80mm thermal-style PDF built with reportlab."""

from datetime import datetime
from io import BytesIO
from typing import Dict, Any, List

from reportlab.lib import colors
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER

from cafe_pos.utils.formatters import money_vn, num_vn

RECEIPT_WIDTH = 80 * mm
RECEIPT_MIN_HEIGHT = 140 * mm
ROW_HEIGHT = 9 * mm


def build_receipt_data(result, table_name: str, business_info: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a SettlementResult into the fields printed on the receipt."""
    breakdown = result.breakdown
    return {
        'business': business_info,
        'receipt_number': result.invoice_id,
        'date': result.settled_at,
        'cashier': result.employee,
        'customer': result.customer_label,
        'table': table_name,
        'items': [
            {
                'name': item.name,
                'quantity': item.quantity,
                'price': item.price,
                'total': item.amount,
                'notes': item.note,
            }
            for item in result.items
        ],
        'subtotal': breakdown.subtotal,
        'vat': breakdown.vat,
        'discount': breakdown.total_discount,
        'total': breakdown.final_total,
        'paid': breakdown.amount_tendered,
        'change': breakdown.change,
        'payment_method': result.payment_method,
        'notes': result.note,
    }


class ReceiptRenderer:
    """Turns receipt data into printable PDF bytes."""

    def render(self, receipt: Dict[str, Any]) -> bytes:
        buffer = BytesIO()
        height = max(RECEIPT_MIN_HEIGHT, RECEIPT_MIN_HEIGHT + ROW_HEIGHT * len(receipt['items']))
        doc = SimpleDocTemplate(
            buffer,
            pagesize=(RECEIPT_WIDTH, height),
            rightMargin=4 * mm,
            leftMargin=4 * mm,
            topMargin=4 * mm,
            bottomMargin=4 * mm,
            title=f"Receipt {receipt['receipt_number']}",
        )
        doc.build(self._elements(receipt))
        return buffer.getvalue()

    def _elements(self, receipt: Dict[str, Any]) -> List[Any]:
        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            'ReceiptTitle', parent=styles['Heading2'], alignment=TA_CENTER,
            fontName='Helvetica-Bold', fontSize=12, spaceAfter=2
        )
        small_center = ParagraphStyle(
            'ReceiptSmall', parent=styles['Normal'], alignment=TA_CENTER,
            fontSize=7, textColor=colors.HexColor('#555555')
        )
        small = ParagraphStyle('ReceiptText', parent=styles['Normal'], fontSize=7, leading=9)

        business = receipt.get('business') or {}
        elements: List[Any] = [Paragraph(business.get('name') or 'RECEIPT', title_style)]
        if business.get('address'):
            elements.append(Paragraph(business['address'], small_center))
        if business.get('phone'):
            elements.append(Paragraph(f"Tel: {business['phone']}", small_center))
        elements.append(Spacer(1, 3 * mm))

        issued = receipt.get('date')
        if isinstance(issued, datetime):
            issued = issued.strftime('%d/%m/%Y %H:%M')

        meta = Table([
            ['Receipt:', receipt['receipt_number']],
            ['Date:', issued or ''],
            ['Table:', receipt.get('table') or ''],
            ['Cashier:', receipt.get('cashier') or ''],
            ['Customer:', receipt.get('customer') or ''],
        ], colWidths=[16 * mm, 52 * mm])
        meta.setStyle(TableStyle([
            ('FONTSIZE', (0, 0), (-1, -1), 7),
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 1),
            ('TOPPADDING', (0, 0), (-1, -1), 1),
        ]))
        elements.append(meta)
        elements.append(Spacer(1, 2 * mm))

        rows = [['Item', 'Qty', 'Price', 'Amount']]
        for item in receipt['items']:
            name = item['name']
            if item.get('notes'):
                name = Paragraph(f"{item['name']}<br/><i>{item['notes']}</i>", small)
            rows.append([name, str(item['quantity']), num_vn(item['price']), num_vn(item['total'])])
        items_table = Table(rows, colWidths=[30 * mm, 8 * mm, 15 * mm, 15 * mm])
        items_table.setStyle(TableStyle([
            ('FONTSIZE', (0, 0), (-1, -1), 7),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('LINEBELOW', (0, 0), (-1, 0), 0.5, colors.black),
            ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ]))
        elements.append(items_table)
        elements.append(Spacer(1, 2 * mm))

        totals = [
            ['Subtotal:', money_vn(receipt['subtotal'])],
            ['VAT:', money_vn(receipt['vat'])],
            ['Discount:', money_vn(receipt['discount'])],
            ['TOTAL:', money_vn(receipt['total'])],
            ['Paid:', money_vn(receipt.get('paid'))],
            ['Change:', money_vn(receipt.get('change'))],
            ['Payment:', receipt.get('payment_method') or ''],
        ]
        totals_table = Table(totals, colWidths=[38 * mm, 30 * mm])
        totals_table.setStyle(TableStyle([
            ('FONTSIZE', (0, 0), (-1, -1), 7),
            ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('FONTNAME', (0, 3), (-1, 3), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 3), (-1, 3), 9),
            ('LINEABOVE', (0, 3), (-1, 3), 0.5, colors.black),
        ]))
        elements.append(totals_table)

        if receipt.get('notes'):
            elements.append(Spacer(1, 2 * mm))
            elements.append(Paragraph(f"<b>Note:</b> {receipt['notes']}", small))

        elements.append(Spacer(1, 3 * mm))
        elements.append(Paragraph('Thank you and see you again!', small_center))
        return elements
