import logging
from datetime import datetime, time, timedelta
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_permission
from ..models import Order
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/reminders", tags=["Reminders"])


@router.get("")
async def list_reminders(
    tab: Literal["today", "upcoming", "sent", "skipped"] = Query("today"),
    current_user: CurrentUser = Depends(require_permission("reminders")),
    db: Session = Depends(get_tenant_db),
):
    """
    Reminders of delivered orders.

    today: pending and due by the end of today (overdue included)
    upcoming: pending and due after today
    sent / skipped: already handled, most recent first
    """
    end_of_today = datetime.combine(datetime.utcnow().date() + timedelta(days=1), time.min)

    query = db.query(Order).filter(Order.status == "delivered", Order.reminder_at.isnot(None))
    if tab == "today":
        query = query.filter(Order.reminder_status == "pending", Order.reminder_at < end_of_today)
        query = query.order_by(Order.reminder_at.asc())
    elif tab == "upcoming":
        query = query.filter(Order.reminder_status == "pending", Order.reminder_at >= end_of_today)
        query = query.order_by(Order.reminder_at.asc())
    else:
        query = query.filter(Order.reminder_status == tab)
        query = query.order_by(Order.reminder_at.desc())

    return [
        {
            "order_id": o.id,
            "client_id": o.client_id,
            "client_name": o.client.full_name if o.client else None,
            "nickname": o.client.nickname if o.client else None,
            "phone": o.client.phone if o.client else None,
            "email": o.client.email if o.client else None,
            "vehicle": o.vehicle.display_name if o.vehicle else None,
            "plate": o.vehicle.plate if o.vehicle else None,
            "services": ", ".join(i.description for i in o.items),
            "delivered_at": o.delivered_at,
            "reminder_at": o.reminder_at,
            "reminder_days": o.reminder_days,
            "reminder_status": o.reminder_status,
            "reminder_sent_at": o.reminder_sent_at,
        }
        for o in query.all()
    ]
