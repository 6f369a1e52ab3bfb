import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_permission
from ..email_service import EmailDeliveryError, is_smtp_configured
from ..models import Budget, Client, MessageTemplate, Order, OrderHistory, OrderItem, Vehicle, WorkshopConfig
from ..schemas import (
    BudgetCreate,
    ManualTemplateSend,
    OrderCreate,
    OrderItemIn,
    OrderItemsAdd,
    OrderItemUpdate,
    OrderStatusUpdate,
    PaymentUpdate,
    ReminderReschedule,
    ReminderStatusUpdate,
)
from ..services.audit import log_activity
from ..services.interval_learner import recalculate_intervals
from ..services.order_automation import (
    apply_delivery,
    email_template_to_client,
    find_status_template,
    manual_template_message,
    trigger_status_automation,
)
from ..services.reminders import (
    InvalidReminderTransition,
    ReminderStatus,
    ReminderTemplateMissing,
    reset_reminder,
    send_order_reminder,
    transition_reminder,
    workshop_reminder_at,
)
from ..services.service_catalog import ensure_service
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/orders", tags=["Orders"])


def get_order_or_404(db: Session, order_id: int) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def get_item_or_404(db: Session, item_id: int) -> OrderItem:
    item = db.query(OrderItem).filter(OrderItem.id == item_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def add_order_items(db: Session, order: Order, items: list[OrderItemIn], user_id: Optional[int]) -> None:
    for item in items:
        service_id = ensure_service(db, item.description, item.labor_price, item.service_id, user_id)
        db.add(
            OrderItem(
                order_id=order.id,
                service_id=service_id,
                description=item.description.strip(),
                labor_price=item.labor_price,
                parts_price=item.parts_price,
                subtotal=(item.labor_price or 0) + (item.parts_price or 0),
            )
        )


def add_history(db: Session, order: Order, status: str, notes: Optional[str], user: CurrentUser) -> None:
    db.add(OrderHistory(order_id=order.id, status=status, notes=notes, user_id=user.db_user_id))


def touch(order: Order, user: CurrentUser) -> None:
    order.modified_by_id = user.db_user_id
    order.updated_at = datetime.utcnow()


def serialize_budget(budget: Optional[Budget]) -> Optional[dict]:
    if not budget:
        return None
    return {
        "id": budget.id,
        "items": budget.items or [],
        "subtotal": budget.subtotal,
        "tax": budget.tax,
        "total": budget.total,
        "created_at": budget.created_at,
    }


def serialize_item(item: OrderItem) -> dict:
    return {
        "id": item.id,
        "service_id": item.service_id,
        "description": item.description,
        "labor_price": item.labor_price,
        "parts_price": item.parts_price,
        "subtotal": item.subtotal,
    }


def serialize_order_summary(order: Order) -> dict:
    client = order.client
    vehicle = order.vehicle
    return {
        "id": order.id,
        "client_id": order.client_id,
        "vehicle_id": order.vehicle_id,
        "client_name": client.full_name if client else None,
        "plate": vehicle.plate if vehicle else None,
        "model": vehicle.model if vehicle else None,
        "description": order.description,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_amount": order.payment_amount,
        "order_total": order.total,
        "appointment_date": order.appointment_date,
        "delivered_at": order.delivered_at,
        "reminder_at": order.reminder_at,
        "reminder_status": order.reminder_status,
        "share_token": order.share_token,
        "created_at": order.created_at,
    }


# ============================================================================
# ITEMS (declared before /{order_id} routes)
# ============================================================================


@router.put("/items/{item_id}")
async def update_item(
    item_id: int,
    data: OrderItemUpdate,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    item = get_item_or_404(db, item_id)
    item.description = data.description.strip()
    item.labor_price = data.labor_price
    item.parts_price = data.parts_price
    item.subtotal = data.labor_price + data.parts_price
    touch(item.order, current_user)
    db.commit()
    return serialize_item(item)


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: int,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    item = get_item_or_404(db, item_id)
    order = item.order
    db.delete(item)
    touch(order, current_user)
    db.commit()
    return {"message": "Item deleted"}


@router.post("/send-manual-template")
def send_manual_template(
    data: ManualTemplateSend,
    slug: str,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    """Render a chosen template for an order; returns a WhatsApp link and optionally emails it"""
    order = get_order_or_404(db, data.order_id)
    template = db.query(MessageTemplate).filter(MessageTemplate.id == data.template_id).first()
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")

    result = manual_template_message(db, order, slug, template, user_name=current_user.username)
    result["email_sent"] = False
    if data.send_email:
        try:
            result["email_sent"] = email_template_to_client(
                db, order, slug, template, template.name, user_name=current_user.username
            )
        except EmailDeliveryError as e:
            raise HTTPException(status_code=502, detail=f"Email delivery failed: {e}") from e
    return result


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("")
async def list_orders(
    status: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == status)
    return [serialize_order_summary(o) for o in query.order_by(Order.created_at.desc(), Order.id.desc()).all()]


@router.post("", status_code=201)
def create_order(
    data: OrderCreate,
    slug: str,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    """Create a work order with its items; fires the 'pending' template"""
    client = db.query(Client).filter(Client.id == data.client_id).first()
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    vehicle = db.query(Vehicle).filter(Vehicle.id == data.vehicle_id).first()
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    if vehicle.client_id != client.id:
        raise HTTPException(status_code=400, detail="Vehicle does not belong to this client")

    order = Order(
        client_id=client.id,
        vehicle_id=vehicle.id,
        description=data.description or "",
        appointment_date=data.appointment_date,
        created_by_id=current_user.db_user_id,
        modified_by_id=current_user.db_user_id,
    )
    db.add(order)
    db.flush()

    add_order_items(db, order, data.items, current_user.db_user_id)
    add_history(db, order, "pending", "Orden de trabajo creada", current_user)
    db.commit()
    db.refresh(order)

    logger.info(f"✅ Created order {order.id} for vehicle {vehicle.plate}")
    log_activity(db, current_user, "CREATE_ORDER", "order", order.id, {"plate": vehicle.plate}, request)

    trigger_status_automation(db, order, slug, "pending", user_name=current_user.username)
    if order.appointment_date:
        trigger_status_automation(db, order, slug, "appointment", user_name=current_user.username)

    return {"id": order.id, "share_token": order.share_token, "message": "Order created successfully"}


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    """Order detail with items, history and latest budget"""
    order = get_order_or_404(db, order_id)
    client = order.client
    vehicle = order.vehicle
    history = (
        db.query(OrderHistory)
        .filter(OrderHistory.order_id == order.id)
        .order_by(OrderHistory.created_at.desc(), OrderHistory.id.desc())
        .all()
    )
    return {
        **serialize_order_summary(order),
        "client_phone": client.phone if client else None,
        "client_email": client.email if client else None,
        "brand": vehicle.brand if vehicle else None,
        "year": vehicle.year if vehicle else None,
        "km": vehicle.km if vehicle else None,
        "created_by_name": order.created_by.username if order.created_by else None,
        "reminder_days": order.reminder_days,
        "reminder_sent_at": order.reminder_sent_at,
        "items": [serialize_item(i) for i in order.items],
        "history": [
            {
                "id": h.id,
                "status": h.status,
                "notes": h.notes,
                "user_name": h.user.username if h.user else None,
                "created_at": h.created_at,
            }
            for h in history
        ],
        "budget": serialize_budget(order.budgets[-1] if order.budgets else None),
    }


@router.post("/{order_id}/items")
async def add_items(
    order_id: int,
    data: OrderItemsAdd,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    order = get_order_or_404(db, order_id)
    add_order_items(db, order, data.items, current_user.db_user_id)
    touch(order, current_user)
    db.commit()
    db.refresh(order)
    return {"message": "Items added", "items": [serialize_item(i) for i in order.items]}


@router.put("/{order_id}/status")
def update_status(
    order_id: int,
    data: OrderStatusUpdate,
    slug: str,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    """
    Change the order status.

    Delivery stamps delivered_at, schedules the follow-up reminder,
    settles an unpaid order and refreshes the vehicle's service intervals.
    """
    order = get_order_or_404(db, order_id)
    previous = order.status
    newly_delivered = data.status == "delivered" and previous != "delivered"

    order.status = data.status
    touch(order, current_user)

    notes = data.notes or f"Cambio de estado a {data.status}"
    if newly_delivered:
        workshop_config = db.query(WorkshopConfig).first()
        reminder_at = apply_delivery(order, workshop_config, data.reminder_days)
        if reminder_at:
            notes += f" (Recordatorio programado para el {reminder_at.strftime('%d/%m/%Y')})"

    add_history(db, order, data.status, notes, current_user)
    db.commit()
    db.refresh(order)

    logger.info(f"🔄 Order {order.id}: {previous} -> {order.status}")
    log_activity(
        db, current_user, "UPDATE_ORDER_STATUS", "order", order.id, {"from": previous, "to": order.status}, request
    )

    if newly_delivered:
        recalculate_intervals(db, order.vehicle_id)

    if previous != order.status:
        trigger_status_automation(db, order, slug, order.status, user_name=current_user.username)

    return {
        "message": "Status updated",
        "status": order.status,
        "delivered_at": order.delivered_at,
        "reminder_at": order.reminder_at,
        "payment_status": order.payment_status,
        "payment_amount": order.payment_amount,
    }


@router.put("/{order_id}/payment")
async def update_payment(
    order_id: int,
    data: PaymentUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    order = get_order_or_404(db, order_id)
    order.payment_status = data.payment_status
    order.payment_amount = data.payment_amount
    touch(order, current_user)
    add_history(db, order, f"payment:{data.payment_status}", f"Monto cobrado: ${data.payment_amount}", current_user)
    db.commit()

    log_activity(
        db,
        current_user,
        "UPDATE_PAYMENT",
        "order",
        order.id,
        {"payment_status": data.payment_status, "payment_amount": data.payment_amount},
        request,
    )
    return {"message": "Payment updated", "payment_status": order.payment_status, "payment_amount": order.payment_amount}


@router.post("/{order_id}/budget", status_code=201)
def create_budget(
    order_id: int,
    data: BudgetCreate,
    slug: str,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    """Store a budget and move the order to quoted"""
    order = get_order_or_404(db, order_id)
    workshop_config = db.query(WorkshopConfig).first()

    items = []
    for item in data.items:
        subtotal = item.subtotal if item.subtotal is not None else round(item.qty * item.price, 2)
        items.append({"description": item.description, "qty": item.qty, "price": item.price, "subtotal": subtotal})

    subtotal = data.subtotal if data.subtotal is not None else round(sum(i["subtotal"] for i in items), 2)
    if data.tax is not None:
        tax = data.tax
    else:
        tax_percentage = workshop_config.tax_percentage if workshop_config and workshop_config.tax_percentage else 0
        tax = round(subtotal * tax_percentage / 100, 2)
    total = data.total if data.total is not None else round(subtotal + tax, 2)

    budget = Budget(order_id=order.id, items=items, subtotal=subtotal, tax=tax, total=total)
    db.add(budget)
    previous = order.status
    order.status = "quoted"
    touch(order, current_user)
    add_history(db, order, "quoted", f"Presupuesto generado por un total de ${total}", current_user)
    db.commit()
    db.refresh(budget)

    if previous != "quoted":
        trigger_status_automation(db, order, slug, "quoted", user_name=current_user.username)

    return {"id": budget.id, "subtotal": subtotal, "tax": tax, "total": total}


@router.post("/{order_id}/send-email")
def send_order_email(
    order_id: int,
    slug: str,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("orders")),
    db: Session = Depends(get_tenant_db),
):
    """Email the client the template of the current status with the order PDF"""
    order = get_order_or_404(db, order_id)
    if not order.client or not order.client.email:
        raise HTTPException(status_code=400, detail="Client has no email address")

    template = find_status_template(db, order.status)
    if not template:
        raise HTTPException(status_code=404, detail=f"No template configured for status '{order.status}'")
    if not is_smtp_configured(db.query(WorkshopConfig).first()):
        raise HTTPException(status_code=400, detail="SMTP is not configured")

    try:
        email_template_to_client(
            db,
            order,
            slug,
            template,
            f"Actualización de tu Orden #{order.id}",
            user_name=current_user.username,
            attach_pdf=True,
        )
    except EmailDeliveryError as e:
        raise HTTPException(status_code=502, detail=f"Email delivery failed: {e}") from e

    log_activity(db, current_user, "SEND_ORDER_EMAIL", "order", order.id, {"template": template.name}, request)
    return {"message": "Email sent"}


# ============================================================================
# REMINDER
# ============================================================================


@router.put("/{order_id}/reminder-status")
async def update_reminder_status(
    order_id: int,
    data: ReminderStatusUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("reminders")),
    db: Session = Depends(get_tenant_db),
):
    """Mark a pending reminder as handled by hand (sent by phone, or dismissed)"""
    order = get_order_or_404(db, order_id)
    try:
        transition_reminder(order, ReminderStatus(data.status))
    except InvalidReminderTransition as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    db.commit()

    log_activity(db, current_user, "UPDATE_REMINDER_STATUS", "order", order.id, {"status": data.status}, request)
    return {"id": order.id, "reminder_status": order.reminder_status, "reminder_sent_at": order.reminder_sent_at}


@router.put("/{order_id}/reminder")
async def reschedule_reminder(
    order_id: int,
    data: ReminderReschedule,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("reminders")),
    db: Session = Depends(get_tenant_db),
):
    """Set a new reminder date and put the reminder back to pending"""
    order = get_order_or_404(db, order_id)
    if data.reminder_at is not None:
        reminder_at = data.reminder_at.replace(tzinfo=None)
    elif data.reminder_days is not None:
        if not order.delivered_at:
            raise HTTPException(status_code=400, detail="Order has not been delivered yet")
        workshop_config = db.query(WorkshopConfig).first()
        reminder_at = workshop_reminder_at(order.delivered_at, data.reminder_days, workshop_config)
    else:
        raise HTTPException(status_code=400, detail="Provide reminder_at or reminder_days")

    reset_reminder(order, reminder_at, data.reminder_days)
    touch(order, current_user)
    db.commit()

    log_activity(
        db, current_user, "RESCHEDULE_REMINDER", "order", order.id, {"reminder_at": reminder_at.isoformat()}, request
    )
    return {"id": order.id, "reminder_at": order.reminder_at, "reminder_status": order.reminder_status}


@router.post("/{order_id}/reminder/send")
def send_reminder_now(
    order_id: int,
    slug: str,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("reminders")),
    db: Session = Depends(get_tenant_db),
):
    order = get_order_or_404(db, order_id)
    workshop_config = db.query(WorkshopConfig).first()
    try:
        result = send_order_reminder(db, order, slug, workshop_config)
    except ReminderTemplateMissing as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except InvalidReminderTransition as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except EmailDeliveryError as e:
        db.rollback()
        log_activity(db, current_user, "REMINDER_FAILED", "order", order_id, {"error": str(e)}, request)
        raise HTTPException(status_code=502, detail=f"Email delivery failed: {e}") from e

    action = "REMINDER_SENT" if result.status == ReminderStatus.SENT else "REMINDER_SKIPPED"
    log_activity(db, current_user, action, "order", order.id, {"reason": result.reason}, request)
    return {"id": order.id, "reminder_status": result.status.value, "reason": result.reason}
