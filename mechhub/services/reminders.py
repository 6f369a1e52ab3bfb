"""
Follow-up reminders for delivered orders

Each delivered order can carry one reminder that moves through
pending -> sent | skipped. The sweep picks every order the due predicate
accepts, so a reminder missed by a stopped worker is sent on the next tick.
Rows are claimed with a conditional UPDATE before the email goes out, so
overlapping sweeps never send the same reminder twice.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..email_service import EmailDeliveryError, is_smtp_configured, send_email
from ..models import MessageTemplate, Order, WorkshopConfig
from ..models_super import Workshop
from ..templating import build_order_context, render_html, render_template
from ..tenancy import TenantRegistry
from .audit import log_activity
from .pdf_service import generate_order_pdf

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_TIME = time(9, 0)
FOLLOW_UP_NAME_HINTS = ("follow", "seguimiento", "recordatorio")


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    SKIPPED = "skipped"


VALID_REMINDER_TRANSITIONS = {
    ReminderStatus.PENDING: {ReminderStatus.SENT, ReminderStatus.SKIPPED},
    ReminderStatus.SENT: set(),  # Terminal state
    ReminderStatus.SKIPPED: set(),  # Terminal state
}


class InvalidReminderTransition(Exception):
    def __init__(self, current: str, new: str):
        super().__init__(f"Cannot move reminder from '{current}' to '{new}'")
        self.current = current
        self.new = new


class ReminderAlreadyClaimed(InvalidReminderTransition):
    """Another sweep moved the reminder out of pending first"""


class ReminderTemplateMissing(Exception):
    """The workshop has no follow-up template"""


@dataclass
class ReminderResult:
    status: ReminderStatus
    reason: Optional[str] = None


@dataclass
class TenantSweepSummary:
    slug: str
    status: str = "ok"  # ok, disabled, no_template, error
    due: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "slug": self.slug,
            "status": self.status,
            "due": self.due,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": self.errors,
        }


def transition_reminder(order: Order, new_status: ReminderStatus, now: Optional[datetime] = None) -> None:
    """Apply a state machine transition, raising InvalidReminderTransition otherwise"""
    new_status = ReminderStatus(new_status)
    try:
        current = ReminderStatus(order.reminder_status or ReminderStatus.PENDING)
    except ValueError as e:
        raise InvalidReminderTransition(order.reminder_status, new_status.value) from e

    if new_status not in VALID_REMINDER_TRANSITIONS[current]:
        raise InvalidReminderTransition(current.value, new_status.value)

    order.reminder_status = new_status.value
    if new_status == ReminderStatus.SENT:
        order.reminder_sent_at = now or datetime.utcnow()


def claim_reminder(db: Session, order: Order, new_status: ReminderStatus, now: Optional[datetime] = None) -> bool:
    """
    Move a pending reminder out of pending with a conditional UPDATE and commit.

    Only one of several concurrent sweeps can win the row; the others get
    False back. The order is refreshed either way.
    """
    new_status = ReminderStatus(new_status)
    values = {Order.reminder_status: new_status.value}
    if new_status == ReminderStatus.SENT:
        values[Order.reminder_sent_at] = now or datetime.utcnow()

    claimed = (
        db.query(Order)
        .filter(Order.id == order.id, Order.reminder_status == ReminderStatus.PENDING.value)
        .update(values, synchronize_session=False)
    )
    db.commit()
    db.refresh(order)
    return claimed == 1


def release_reminder(db: Session, order: Order) -> None:
    """Give a claimed reminder back to pending after a failed delivery"""
    db.rollback()
    db.query(Order).filter(
        Order.id == order.id, Order.reminder_status == ReminderStatus.SENT.value
    ).update(
        {Order.reminder_status: ReminderStatus.PENDING.value, Order.reminder_sent_at: None},
        synchronize_session=False,
    )
    db.commit()
    db.refresh(order)


def reset_reminder(order: Order, reminder_at: Optional[datetime], reminder_days: Optional[int] = None) -> None:
    """Manual reschedule: back to pending with a new date"""
    order.reminder_at = reminder_at
    if reminder_days is not None:
        order.reminder_days = reminder_days
    order.reminder_status = ReminderStatus.PENDING.value
    order.reminder_sent_at = None


def parse_reminder_time(value: Optional[str]) -> time:
    if not value:
        return DEFAULT_REMINDER_TIME
    try:
        hours, minutes = value.strip().split(":")[:2]
        return time(int(hours), int(minutes))
    except ValueError:
        logger.warning(f"⚠️ Invalid reminder_time '{value}', using 09:00")
        return DEFAULT_REMINDER_TIME


def workshop_zone(tz_name: Optional[str]) -> tzinfo:
    if not tz_name or tz_name == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"⚠️ Unknown timezone '{tz_name}', using UTC")
        return timezone.utc


def compute_reminder_at(
    delivered_at: datetime,
    reminder_days: int,
    reminder_time: Optional[str] = None,
    tz_name: Optional[str] = None,
) -> datetime:
    """
    Delivery date + reminder_days at the workshop's reminder time.

    delivered_at and the result are naive UTC. The day count and the
    reminder time are taken in the workshop's own timezone.
    """
    zone = workshop_zone(tz_name)
    local_delivery = delivered_at.replace(tzinfo=timezone.utc).astimezone(zone)
    day = local_delivery.date() + timedelta(days=int(reminder_days))
    local_reminder = datetime.combine(day, parse_reminder_time(reminder_time), tzinfo=zone)
    return local_reminder.astimezone(timezone.utc).replace(tzinfo=None)


def workshop_reminder_at(
    delivered_at: datetime, reminder_days: int, workshop_config: Optional[WorkshopConfig]
) -> datetime:
    if not workshop_config:
        return compute_reminder_at(delivered_at, reminder_days)
    return compute_reminder_at(delivered_at, reminder_days, workshop_config.reminder_time, workshop_config.timezone)


def schedule_reminder(order: Order, workshop_config: Optional[WorkshopConfig]) -> Optional[datetime]:
    """
    Set reminder_at for a delivered order from its reminder_days.

    A reminder that already left pending is kept as is; only a manual
    reschedule (reset_reminder) brings it back.
    """
    current = order.reminder_status or ReminderStatus.PENDING.value
    if current != ReminderStatus.PENDING.value:
        return None

    if not order.reminder_days or not order.delivered_at:
        order.reminder_at = None
        return None

    order.reminder_at = workshop_reminder_at(order.delivered_at, order.reminder_days, workshop_config)
    order.reminder_status = ReminderStatus.PENDING.value
    return order.reminder_at


def is_reminder_due(order: Order, now: datetime) -> bool:
    """In-memory twin of due_orders_query; keep both in step"""
    return (
        order.status == "delivered"
        and order.reminder_status == ReminderStatus.PENDING.value
        and order.reminder_at is not None
        and order.reminder_at <= now
    )


def due_orders_query(db: Session, now: datetime):
    """SQL form of is_reminder_due; keep both in step"""
    return (
        db.query(Order)
        .filter(
            Order.status == "delivered",
            Order.reminder_status == ReminderStatus.PENDING.value,
            Order.reminder_at.isnot(None),
            Order.reminder_at <= now,
        )
        .order_by(Order.reminder_at.asc(), Order.id.asc())
    )


def find_followup_template(db: Session) -> Optional[MessageTemplate]:
    template = db.query(MessageTemplate).filter(MessageTemplate.trigger_status == "reminder").first()
    if template:
        return template
    return (
        db.query(MessageTemplate)
        .filter(or_(*[func.lower(MessageTemplate.name).contains(hint) for hint in FOLLOW_UP_NAME_HINTS]))
        .order_by(MessageTemplate.id.asc())
        .first()
    )


def reminder_attachments(db: Session, order: Order, slug: str, template: MessageTemplate) -> list[dict]:
    """The order history PDF when the template asks for it. A failed render only drops the attachment."""
    if not template.include_pdf:
        return []
    try:
        content = generate_order_pdf(db, order)
    except Exception as e:
        logger.error(f"❌ PDF for order #{order.id} in {slug} failed, sending reminder without it: {e}")
        return []
    return [{"filename": f"historial_{order.id}.pdf", "content": content}]


def send_order_reminder(
    db: Session,
    order: Order,
    slug: str,
    workshop_config: Optional[WorkshopConfig],
    template: Optional[MessageTemplate] = None,
    now: Optional[datetime] = None,
) -> ReminderResult:
    """
    Send the follow-up message of one order and move its reminder out of pending.

    The reminder is claimed in the database before the SMTP call, so two
    sweeps never email the same client. Raises ReminderTemplateMissing
    without a follow-up template, InvalidReminderTransition when the
    reminder is not pending (ReminderAlreadyClaimed when another sweep won
    it) and EmailDeliveryError on SMTP failure (the reminder goes back to
    pending).
    """
    template = template or find_followup_template(db)
    if not template:
        raise ReminderTemplateMissing("No follow-up template configured")

    current = order.reminder_status
    if current != ReminderStatus.PENDING.value:
        raise InvalidReminderTransition(current, ReminderStatus.SENT.value)

    client = order.client
    skip_reason = None
    if not template.send_email:
        skip_reason = "Template has email delivery disabled"
    elif not client or not client.email:
        skip_reason = "Client has no email address"
    elif not is_smtp_configured(workshop_config):
        skip_reason = "SMTP not configured"

    if skip_reason:
        if not claim_reminder(db, order, ReminderStatus.SKIPPED, now):
            raise ReminderAlreadyClaimed(order.reminder_status, ReminderStatus.SKIPPED.value)
        logger.info(f"⏭️ Reminder for order {order.id} in {slug} skipped: {skip_reason}")
        return ReminderResult(ReminderStatus.SKIPPED, skip_reason)

    user = order.modified_by
    user_name = " ".join(filter(None, [user.first_name, user.last_name])) if user else None
    context = build_order_context(db, order, slug, user_name=user_name or "Taller")
    attachments = reminder_attachments(db, order, slug, template)
    workshop_name = context.get("workshop") or "Nuestro Taller"
    text = render_template(template.content, context)
    html_body = render_html(template.content, context)
    recipient = client.email

    if not claim_reminder(db, order, ReminderStatus.SENT, now):
        raise ReminderAlreadyClaimed(order.reminder_status, ReminderStatus.SENT.value)

    try:
        sent = send_email(
            workshop_config,
            recipient,
            f"Recordatorio: Seguimiento de tu vehículo - {workshop_name}",
            text,
            attachments=attachments,
            html_body=html_body,
        )
    except Exception:
        release_reminder(db, order)
        raise

    if not sent:
        order.reminder_status = ReminderStatus.SKIPPED.value
        order.reminder_sent_at = None
        db.commit()
        return ReminderResult(ReminderStatus.SKIPPED, "SMTP not configured")

    logger.info(f"✅ Sent reminder for order #{order.id} in {slug}")
    return ReminderResult(ReminderStatus.SENT)


def process_tenant_reminders(
    registry: TenantRegistry, slug: str, now: Optional[datetime] = None
) -> TenantSweepSummary:
    """Send every due reminder of one workshop"""
    now = now or datetime.utcnow()
    summary = TenantSweepSummary(slug=slug)

    with registry.session(slug) as db:
        workshop_config = db.query(WorkshopConfig).first()
        if not workshop_config or not workshop_config.reminder_enabled:
            summary.status = "disabled"
            return summary

        template = find_followup_template(db)
        if not template:
            logger.info(f"ℹ️ No follow-up template for {slug}, skipping automatic reminders")
            summary.status = "no_template"
            return summary

        due = due_orders_query(db, now).all()
        summary.due = len(due)
        if not due:
            return summary

        logger.info(f"📧 Processing {len(due)} reminders for {slug}")
        for order in due:
            order_id = order.id
            try:
                db.refresh(order)
                if not is_reminder_due(order, now):
                    logger.info(f"ℹ️ Reminder for order #{order_id} in {slug} already handled")
                    continue
                result = send_order_reminder(db, order, slug, workshop_config, template, now)
                if result.status == ReminderStatus.SENT:
                    summary.sent += 1
                    log_activity(db, None, "REMINDER_SENT", "order", order_id)
                else:
                    summary.skipped += 1
                    log_activity(db, None, "REMINDER_SKIPPED", "order", order_id, {"reason": result.reason})
            except ReminderAlreadyClaimed:
                db.rollback()
                logger.info(f"ℹ️ Reminder for order #{order_id} in {slug} claimed by another sweep")
            except EmailDeliveryError as e:
                db.rollback()
                summary.failed += 1
                summary.errors.append(f"order {order_id}: {e}")
                logger.error(f"❌ Failed to send reminder for order #{order_id} in {slug}: {e}")
                log_activity(db, None, "REMINDER_FAILED", "order", order_id, {"error": str(e)})
            except Exception as e:
                db.rollback()
                summary.failed += 1
                summary.errors.append(f"order {order_id}: {e}")
                logger.error(f"❌ Error processing reminder for order #{order_id} in {slug}: {e}")
                log_activity(db, None, "REMINDER_FAILED", "order", order_id, {"error": str(e)})

    return summary


def _inactive_slugs(registry: TenantRegistry) -> set[str]:
    with registry.super_session() as super_db:
        return {w.slug for w in super_db.query(Workshop).filter(Workshop.status == "inactive").all()}


def sweep_all_tenants(registry: TenantRegistry, now: Optional[datetime] = None) -> list[dict]:
    """Run the reminder pass over every tenant database. One tenant failing never stops the others."""
    now = now or datetime.utcnow()
    logger.info(f"🔄 Starting reminder sweep: {now.isoformat()}")

    inactive = _inactive_slugs(registry)
    results = []
    for slug in registry.list_slugs():
        if slug in inactive:
            continue
        try:
            summary = process_tenant_reminders(registry, slug, now)
        except Exception as e:
            logger.error(f"❌ Error processing tenant {slug}: {e}")
            summary = TenantSweepSummary(slug=slug, status="error", errors=[str(e)])
        results.append(summary.as_dict())

    sent = sum(r["sent"] for r in results)
    logger.info(f"✅ Reminder sweep finished: {len(results)} tenants, {sent} sent")
    return results
