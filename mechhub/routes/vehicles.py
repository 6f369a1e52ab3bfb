import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_permission
from ..models import Client, Order, ServiceInterval, Vehicle, VehicleKmHistory
from ..schemas import (
    KmHistoryResponse,
    KmUpdate,
    ServiceIntervalResponse,
    VehicleCreate,
    VehicleResponse,
    VehicleUpdate,
)
from ..services.audit import log_activity
from ..services.interval_learner import recalculate_intervals
from ..services.vehicle_service import create_vehicle, ensure_plate_available, record_km
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/vehicles", tags=["Vehicles"])


def get_vehicle_or_404(db: Session, vehicle_id: int) -> Vehicle:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return vehicle


def _vehicle_row(vehicle: Vehicle) -> dict:
    client = vehicle.client
    return {
        **VehicleResponse.model_validate(vehicle).model_dump(),
        "client_name": client.full_name if client else None,
    }


@router.get("")
async def list_vehicles(
    client_id: Optional[int] = Query(None),
    current_user: CurrentUser = Depends(require_permission("vehicles")),
    db: Session = Depends(get_tenant_db),
):
    """All vehicles, or those of one client"""
    query = db.query(Vehicle)
    if client_id is not None:
        query = query.filter(Vehicle.client_id == client_id)
    return [_vehicle_row(v) for v in query.order_by(Vehicle.plate.asc()).all()]


@router.get("/{vehicle_id}")
async def get_vehicle(
    vehicle_id: int,
    current_user: CurrentUser = Depends(require_permission("vehicles")),
    db: Session = Depends(get_tenant_db),
):
    vehicle = get_vehicle_or_404(db, vehicle_id)
    orders = (
        db.query(Order)
        .filter(Order.vehicle_id == vehicle.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    client = vehicle.client
    return {
        **_vehicle_row(vehicle),
        "client": {
            "id": client.id,
            "name": client.full_name,
            "phone": client.phone,
            "email": client.email,
        }
        if client
        else None,
        "orders": [
            {
                "id": o.id,
                "status": o.status,
                "description": o.description,
                "total": o.total,
                "items": [i.description for i in o.items],
                "created_at": o.created_at,
                "delivered_at": o.delivered_at,
            }
            for o in orders
        ],
    }


@router.post("", status_code=201, response_model=VehicleResponse)
async def create_vehicle_route(
    data: VehicleCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("vehicles")),
    db: Session = Depends(get_tenant_db),
):
    if not db.query(Client).filter(Client.id == data.client_id).first():
        raise HTTPException(status_code=404, detail="Client not found")

    vehicle = create_vehicle(db, data.client_id, data.model_dump(exclude={"client_id"}))
    db.commit()
    db.refresh(vehicle)

    log_activity(db, current_user, "CREATE_VEHICLE", "vehicle", vehicle.id, {"plate": vehicle.plate}, request)
    return vehicle


@router.put("/{vehicle_id}", response_model=VehicleResponse)
async def update_vehicle(
    vehicle_id: int,
    data: VehicleUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("vehicles")),
    db: Session = Depends(get_tenant_db),
):
    vehicle = get_vehicle_or_404(db, vehicle_id)
    updates = data.model_dump(exclude_unset=True)

    if updates.get("plate") and updates["plate"] != vehicle.plate:
        ensure_plate_available(db, updates["plate"], exclude_id=vehicle.id)
    if "client_id" in updates and not db.query(Client).filter(Client.id == updates["client_id"]).first():
        raise HTTPException(status_code=404, detail="Client not found")

    for key, value in updates.items():
        if value is None and key in ("plate", "brand", "model", "client_id"):
            continue
        setattr(vehicle, key, value)

    db.commit()
    db.refresh(vehicle)
    log_activity(db, current_user, "UPDATE_VEHICLE", "vehicle", vehicle.id, updates, request)
    return vehicle


@router.put("/{vehicle_id}/km")
async def update_km(
    vehicle_id: int,
    data: KmUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("vehicles")),
    db: Session = Depends(get_tenant_db),
):
    """Record an odometer reading. Lower readings need force=true."""
    vehicle = get_vehicle_or_404(db, vehicle_id)
    previous = vehicle.km
    record_km(db, vehicle, data.km, data.notes, force=data.force)
    db.commit()

    log_activity(
        db, current_user, "UPDATE_KM", "vehicle", vehicle.id, {"from": previous, "to": data.km}, request
    )
    return {"id": vehicle.id, "km": vehicle.km}


@router.get("/{vehicle_id}/km-history", response_model=list[KmHistoryResponse])
async def km_history(
    vehicle_id: int,
    current_user: CurrentUser = Depends(require_permission("vehicles")),
    db: Session = Depends(get_tenant_db),
):
    get_vehicle_or_404(db, vehicle_id)
    return (
        db.query(VehicleKmHistory)
        .filter(VehicleKmHistory.vehicle_id == vehicle_id)
        .order_by(VehicleKmHistory.recorded_at.desc(), VehicleKmHistory.id.desc())
        .all()
    )


@router.get("/{vehicle_id}/intervals", response_model=list[ServiceIntervalResponse])
async def list_intervals(
    vehicle_id: int,
    current_user: CurrentUser = Depends(require_permission("vehicles")),
    db: Session = Depends(get_tenant_db),
):
    """Learned service intervals, most confident first"""
    get_vehicle_or_404(db, vehicle_id)
    return (
        db.query(ServiceInterval)
        .filter(ServiceInterval.vehicle_id == vehicle_id)
        .order_by(ServiceInterval.confidence.desc(), ServiceInterval.predicted_next_date.asc())
        .all()
    )


@router.post("/{vehicle_id}/intervals/recalculate", response_model=list[ServiceIntervalResponse])
async def recalculate_vehicle_intervals(
    vehicle_id: int,
    current_user: CurrentUser = Depends(require_permission("vehicles")),
    db: Session = Depends(get_tenant_db),
):
    get_vehicle_or_404(db, vehicle_id)
    recalculate_intervals(db, vehicle_id)
    return (
        db.query(ServiceInterval)
        .filter(ServiceInterval.vehicle_id == vehicle_id)
        .order_by(ServiceInterval.confidence.desc(), ServiceInterval.predicted_next_date.asc())
        .all()
    )
