import logging
import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user, require_permission
from ..models import Client, Order, OrderItem, Vehicle, WorkshopConfig
from ..services.order_automation import payable_total
from ..services.pdf_service import generate_order_pdf
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/reports", tags=["Reports"])

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
COLLECTED_PAYMENT_STATUSES = ("paid", "partial")


@router.get("/dashboard")
async def dashboard(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_tenant_db),
):
    """Summary numbers for the workshop dashboard"""
    month_expr = func.strftime("%Y-%m", Order.updated_at)
    income_rows = (
        db.query(month_expr.label("month"), func.sum(Order.payment_amount).label("total"))
        .filter(Order.payment_status.in_(COLLECTED_PAYMENT_STATUSES))
        .group_by("month")
        .order_by(month_expr.desc())
        .limit(12)
        .all()
    )
    income_by_month = [{"month": r.month, "total": r.total or 0} for r in income_rows]
    if not income_by_month:
        income_by_month.append({"month": datetime.utcnow().strftime("%Y-%m"), "total": 0})

    status_rows = db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()

    workshop_config = db.query(WorkshopConfig).first()
    ready_orders = db.query(Order).filter(Order.status == "ready").all()
    ready_to_deliver_total = sum(payable_total(o, workshop_config) for o in ready_orders)

    service_count = func.count(OrderItem.id)
    service_rows = (
        db.query(OrderItem.description, service_count.label("count"))
        .group_by(OrderItem.description)
        .order_by(service_count.desc())
        .limit(5)
        .all()
    )

    vehicle_month = func.strftime("%Y-%m", Vehicle.created_at)
    vehicle_rows = (
        db.query(vehicle_month.label("month"), func.count(Vehicle.id).label("count"))
        .group_by("month")
        .order_by(vehicle_month.desc())
        .limit(12)
        .all()
    )

    new_clients = (
        db.query(func.count(Client.id))
        .filter(func.strftime("%Y-%m", Client.created_at) == datetime.utcnow().strftime("%Y-%m"))
        .scalar()
    )

    return {
        "income_by_month": income_by_month,
        "orders_by_status": [{"status": s, "count": c} for s, c in status_rows],
        "common_services": [{"description": r.description, "count": r.count} for r in service_rows],
        "vehicles_by_month": [{"month": r.month, "count": r.count} for r in vehicle_rows],
        "new_clients_this_month": new_clients or 0,
        "ready_to_deliver_total": ready_to_deliver_total,
    }


@router.get("/income-daily")
async def income_daily(
    month: Optional[str] = Query(None, description="YYYY-MM"),
    current_user: CurrentUser = Depends(require_permission("income")),
    db: Session = Depends(get_tenant_db),
):
    if month and not MONTH_PATTERN.match(month):
        raise HTTPException(status_code=400, detail="month must be YYYY-MM")
    current_month = month or datetime.utcnow().strftime("%Y-%m")

    day_expr = func.strftime("%d", Order.updated_at)
    rows = (
        db.query(day_expr.label("day"), func.sum(Order.payment_amount).label("total"))
        .filter(
            Order.payment_status.in_(COLLECTED_PAYMENT_STATUSES),
            func.strftime("%Y-%m", Order.updated_at) == current_month,
        )
        .group_by("day")
        .order_by(day_expr.asc())
        .all()
    )
    return [{"day": r.day, "total": r.total or 0} for r in rows]


@router.get("/order-pdf/{order_id}")
def order_pdf(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_tenant_db),
):
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    pdf_bytes = generate_order_pdf(db, order)
    logger.info(f"📄 Generated PDF for order {order_id} ({len(pdf_bytes)} bytes)")
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="orden_{order_id}.pdf"'},
    )
