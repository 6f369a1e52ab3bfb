"""
Order lifecycle automation
Delivery side effects and status-triggered client messages
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..email_service import EmailDeliveryError, send_email
from ..models import MessageTemplate, Order, WorkshopConfig
from ..templating import build_order_context, render_html, render_template, whatsapp_link
from .pdf_service import generate_order_pdf
from .reminders import schedule_reminder

logger = logging.getLogger(__name__)

ORDER_STATUSES = ["pending", "quoted", "approved", "in_progress", "ready", "delivered", "cancelled"]
PAYMENT_STATUSES = ["unpaid", "partial", "paid"]

EMAIL_SUBJECTS = {
    "pending": "Nueva Orden #{order_id} - Confirmación",
    "quoted": "Presupuesto Disponible - Orden #{order_id}",
}


def payable_total(order: Order, workshop_config: Optional[WorkshopConfig]) -> float:
    """Amount charged on delivery: labor plus parts weighted by the parts profit percentage"""
    include_parts = True
    parts_factor = 1.0
    if workshop_config:
        if workshop_config.income_include_parts is not None:
            include_parts = bool(workshop_config.income_include_parts)
        if workshop_config.parts_profit_percentage is not None:
            parts_factor = workshop_config.parts_profit_percentage / 100.0

    total = 0.0
    for item in order.items:
        total += item.labor_price or 0
        if include_parts:
            total += (item.parts_price or 0) * parts_factor
    return round(total, 2)


def apply_delivery(
    order: Order,
    workshop_config: Optional[WorkshopConfig],
    reminder_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Side effects of moving an order to delivered. Does not commit.

    Stamps delivered_at once, schedules the follow-up reminder and marks an
    unpaid order as paid with its payable total. Returns the reminder date.
    """
    if not order.delivered_at:
        order.delivered_at = now or datetime.utcnow()

    if reminder_days is not None:
        order.reminder_days = reminder_days
    reminder_at = schedule_reminder(order, workshop_config)

    if not order.payment_status or order.payment_status == "unpaid":
        order.payment_status = "paid"
        order.payment_amount = payable_total(order, workshop_config)

    return reminder_at


def find_status_template(db: Session, status: str) -> Optional[MessageTemplate]:
    return db.query(MessageTemplate).filter(MessageTemplate.trigger_status == status).first()


def email_template_to_client(
    db: Session,
    order: Order,
    slug: str,
    template: MessageTemplate,
    subject: str,
    user_name: Optional[str] = None,
    attach_pdf: Optional[bool] = None,
) -> bool:
    """
    Render a template for an order and email it to the client.

    Returns False when there is nothing to send (no email, SMTP off).
    Raises EmailDeliveryError on SMTP failure.
    """
    client = order.client
    if not client or not client.email:
        logger.info(f"ℹ️ Order {order.id} client has no email, message not sent")
        return False

    workshop_config = db.query(WorkshopConfig).first()
    context = build_order_context(db, order, slug, user_name=user_name)

    include_pdf = template.include_pdf if attach_pdf is None else attach_pdf
    attachments = []
    if include_pdf:
        attachments.append({"filename": f"orden_{order.id}.pdf", "content": generate_order_pdf(db, order)})

    return send_email(
        workshop_config,
        client.email,
        subject,
        render_template(template.content, context),
        attachments=attachments,
        html_body=render_html(template.content, context),
    )


def trigger_status_automation(
    db: Session, order: Order, slug: str, status: str, user_name: Optional[str] = None
) -> bool:
    """Send the template bound to a status, if any. Failures are logged only."""
    template = find_status_template(db, status)
    if not template:
        return False
    if not template.send_email:
        return False

    subject = EMAIL_SUBJECTS.get(status, "Actualización de tu Orden #{order_id} - {status}").format(
        order_id=order.id, status=status
    )
    try:
        sent = email_template_to_client(db, order, slug, template, subject, user_name=user_name)
    except EmailDeliveryError as e:
        logger.error(f"❌ Automation email for order {order.id} ({status}) failed: {e}")
        return False
    except Exception as e:
        logger.error(f"❌ Automation error for order {order.id} ({status}): {e}")
        return False

    if sent:
        logger.info(f"📧 Automation email sent for order {order.id} ({status})")
    return sent


def manual_template_message(
    db: Session, order: Order, slug: str, template: MessageTemplate, user_name: Optional[str] = None
) -> dict:
    """Rendered text plus a WhatsApp link for a template chosen by hand"""
    context = build_order_context(db, order, slug, user_name=user_name)
    message = render_template(template.content, context)
    phone = order.client.phone if order.client else None
    return {"message": message, "whatsapp_link": whatsapp_link(phone, message)}
