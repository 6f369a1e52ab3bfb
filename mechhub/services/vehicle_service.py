import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ..models import Vehicle, VehicleKmHistory

logger = logging.getLogger(__name__)


def ensure_plate_available(db: Session, plate: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(Vehicle).filter(Vehicle.plate == plate)
    if exclude_id is not None:
        query = query.filter(Vehicle.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail=f"A vehicle with plate {plate} already exists")


def create_vehicle(db: Session, client_id: int, data: dict) -> Vehicle:
    """Add a vehicle (not committed). An initial km above zero opens the odometer log."""
    ensure_plate_available(db, data["plate"])
    vehicle = Vehicle(client_id=client_id, **data)
    db.add(vehicle)
    db.flush()

    if vehicle.km and vehicle.km > 0:
        db.add(VehicleKmHistory(vehicle_id=vehicle.id, km=vehicle.km, notes="Kilometraje inicial"))
    return vehicle


def record_km(
    db: Session,
    vehicle: Vehicle,
    km: int,
    notes: Optional[str] = None,
    force: bool = False,
    recorded_at: Optional[datetime] = None,
) -> VehicleKmHistory:
    """Update the odometer and log the reading (not committed)"""
    if vehicle.km is not None and km < vehicle.km and not force:
        raise HTTPException(
            status_code=400,
            detail=f"New km ({km}) is lower than the current reading ({vehicle.km})",
        )

    vehicle.km = km
    entry = VehicleKmHistory(
        vehicle_id=vehicle.id,
        km=km,
        notes=notes,
        recorded_at=recorded_at or datetime.utcnow(),
    )
    db.add(entry)
    logger.info(f"🚗 Vehicle {vehicle.plate} odometer set to {km}")
    return entry
