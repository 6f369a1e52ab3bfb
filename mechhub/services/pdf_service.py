"""
Order PDF Generator
Plain work order / budget document used as an email attachment and download
"""

import html
import io
import logging
from datetime import datetime

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.orm import Session

from ..models import Order, OrderHistory, WorkshopConfig

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "pending": "Pendiente",
    "quoted": "Presupuestado",
    "approved": "Aprobado",
    "in_progress": "En reparación",
    "ready": "Listo para retirar",
    "delivered": "Entregado",
    "cancelled": "Cancelado",
}


def _money(value) -> str:
    return f"${float(value or 0):,.2f}"


def _text(value) -> str:
    return html.escape(str(value or ""))


class OrderPDFGenerator:
    """Render an order (or its latest budget) with its status history"""

    def __init__(self, order: Order, db: Session):
        self.order = order
        self.db = db
        self.workshop_config = db.query(WorkshopConfig).first()
        self.budget = order.budgets[-1] if order.budgets else None

        self.page_width, self.page_height = A4
        self.margin = 0.75 * inch

        self.brand_color = colors.HexColor("#2563eb")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    def generate(self) -> bytes:
        logger.info(f"📄 Generating PDF for order {self.order.id}")

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Orden #{self.order.id}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "OrderTitle",
            parent=styles["Heading1"],
            fontSize=20,
            textColor=self.brand_color,
            spaceAfter=6,
        )
        heading_style = ParagraphStyle(
            "OrderHeading",
            parent=styles["Heading2"],
            fontSize=13,
            textColor=self.dark_gray,
            spaceBefore=16,
            spaceAfter=8,
        )
        body_style = ParagraphStyle(
            "OrderBody", parent=styles["Normal"], fontSize=10, textColor=self.dark_gray
        )

        workshop_name = (
            self.workshop_config.workshop_name if self.workshop_config else None
        ) or "Taller"
        document_title = "PRESUPUESTO DE SERVICIO" if self.budget else "ORDEN DE TRABAJO"

        story = [
            Paragraph(_text(workshop_name.upper()), title_style),
            Paragraph(f"<b>{document_title}</b> #{self.order.id}", body_style),
            Spacer(1, 0.25 * inch),
        ]

        client = self.order.client
        vehicle = self.order.vehicle
        created = self.order.created_at or datetime.utcnow()
        info_data = [
            ["Cliente:", client.full_name if client else "Cliente"],
            [
                "Vehículo:",
                f"{vehicle.display_name} ({vehicle.plate})" if vehicle else "-",
            ],
            ["Fecha:", created.strftime("%d/%m/%Y")],
            ["Estado:", STATUS_LABELS.get(self.order.status, self.order.status)],
        ]
        info_table = Table(info_data, colWidths=[1.3 * inch, 5 * inch])
        info_table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                    ("FONT", (1, 0), (1, -1), "Helvetica", 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.append(info_table)

        story.append(Paragraph("Detalle", heading_style))
        story.append(self._items_table())
        story.append(Spacer(1, 0.2 * inch))
        for line in self._totals_lines():
            story.append(Paragraph(line, body_style))

        history = (
            self.db.query(OrderHistory)
            .filter(OrderHistory.order_id == self.order.id)
            .order_by(OrderHistory.created_at.asc(), OrderHistory.id.asc())
            .all()
        )
        if history:
            story.append(Paragraph("Historial", heading_style))
            for entry in history:
                when = entry.created_at.strftime("%d/%m/%Y %H:%M") if entry.created_at else ""
                label = STATUS_LABELS.get(entry.status, entry.status)
                notes = f" - {_text(entry.notes)}" if entry.notes else ""
                story.append(Paragraph(f"{when} <b>{_text(label)}</b>{notes}", body_style))

        if self.workshop_config and self.workshop_config.footer_text:
            story.append(Spacer(1, 0.4 * inch))
            story.append(
                Paragraph(
                    f"<i>{_text(self.workshop_config.footer_text)}</i>",
                    ParagraphStyle(
                        "Footer", parent=body_style, fontSize=8, textColor=colors.grey, alignment=1
                    ),
                )
            )

        doc.build(story, onFirstPage=self._add_page_number, onLaterPages=self._add_page_number)
        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"✅ Generated order PDF ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def _items_table(self) -> Table:
        if self.budget:
            table_data = [["Descripción", "Cant", "Precio", "Subtotal"]]
            for item in self.budget.items or []:
                table_data.append(
                    [
                        str(item.get("description", ""))[:60],
                        str(item.get("qty", 1)),
                        _money(item.get("price")),
                        _money(item.get("subtotal")),
                    ]
                )
            col_widths = [3.3 * inch, 0.7 * inch, 1.1 * inch, 1.2 * inch]
        else:
            table_data = [["Descripción", "Mano de obra", "Repuestos", "Subtotal"]]
            for item in self.order.items:
                table_data.append(
                    [
                        item.description[:60],
                        _money(item.labor_price),
                        _money(item.parts_price),
                        _money(item.subtotal),
                    ]
                )
            col_widths = [2.9 * inch, 1.2 * inch, 1.1 * inch, 1.1 * inch]

        table = Table(table_data, colWidths=col_widths, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 10),
                    ("FONT", (0, 1), (-1, -1), "Helvetica", 9),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, self.light_gray]),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        return table

    def _totals_lines(self) -> list[str]:
        if self.budget:
            lines = [f"Subtotal: {_money(self.budget.subtotal)}"]
            if self.budget.tax:
                lines.append(f"IVA: {_money(self.budget.tax)}")
            lines.append(f"<b>TOTAL: {_money(self.budget.total)}</b>")
            return lines
        return [f"<b>TOTAL: {_money(self.order.total)}</b>"]

    def _add_page_number(self, canvas_obj, doc):
        canvas_obj.setFont("Helvetica", 9)
        canvas_obj.setFillColor(colors.grey)
        canvas_obj.drawRightString(
            self.page_width - self.margin, self.margin / 2, f"Página {canvas_obj.getPageNumber()}"
        )


def generate_order_pdf(db: Session, order: Order) -> bytes:
    return OrderPDFGenerator(order, db).generate()
