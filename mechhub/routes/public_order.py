"""
Client-facing order view, addressed by the order's share token (no login)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..models import Order, ServiceInterval, WorkshopConfig
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/public", tags=["Public"])

HEALTH_MIN_CONFIDENCE = 50
HEALTH_LIMIT = 5


@router.get("/order/{token}")
async def public_order(token: str, db: Session = Depends(get_tenant_db)):
    order = db.query(Order).filter(Order.share_token == token).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    workshop_config = db.query(WorkshopConfig).first()
    vehicle = order.vehicle
    budget = order.budgets[-1] if order.budgets else None

    # Payment entries stay internal
    history = sorted(
        (h for h in order.history if not h.status.startswith("payment:")),
        key=lambda h: (h.created_at, h.id),
    )

    health = []
    if vehicle:
        intervals = (
            db.query(ServiceInterval)
            .filter(
                ServiceInterval.vehicle_id == vehicle.id,
                ServiceInterval.confidence >= HEALTH_MIN_CONFIDENCE,
            )
            .order_by(ServiceInterval.predicted_next_date.asc())
            .limit(HEALTH_LIMIT)
            .all()
        )
        health = [
            {
                "service": i.service_description,
                "last_done_at": i.last_done_at,
                "predicted_next_date": i.predicted_next_date,
                "predicted_next_km": i.predicted_next_km,
                "confidence": i.confidence,
            }
            for i in intervals
        ]

    return {
        "id": order.id,
        "status": order.status,
        "description": order.description,
        "created_at": order.created_at,
        "delivered_at": order.delivered_at,
        "appointment_date": order.appointment_date,
        "client_name": order.client.first_name if order.client else None,
        "vehicle": {
            "brand": vehicle.brand,
            "model": vehicle.model,
            "plate": vehicle.plate,
            "km": vehicle.km,
        }
        if vehicle
        else None,
        "items": [
            {"description": i.description, "subtotal": i.subtotal}
            for i in order.items
        ],
        "total": order.total,
        "history": [{"status": h.status, "notes": h.notes, "created_at": h.created_at} for h in history],
        "budget": {
            "items": budget.items or [],
            "subtotal": budget.subtotal,
            "tax": budget.tax,
            "total": budget.total,
            "created_at": budget.created_at,
        }
        if budget
        else None,
        "workshop": {
            "name": workshop_config.workshop_name if workshop_config else None,
            "address": workshop_config.address if workshop_config else None,
            "phone": workshop_config.phone if workshop_config else None,
            "email": workshop_config.email if workshop_config else None,
            "whatsapp": workshop_config.whatsapp if workshop_config else None,
            "instagram": workshop_config.instagram if workshop_config else None,
            "business_hours": workshop_config.business_hours if workshop_config else None,
            "logo_path": workshop_config.logo_path if workshop_config else None,
            "language": workshop_config.client_portal_language if workshop_config else "es",
        },
        "vehicle_health": health,
    }
