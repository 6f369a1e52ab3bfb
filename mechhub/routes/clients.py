import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_permission
from ..models import Client, Order
from ..schemas import ClientCreate, ClientResponse, ClientUpdate, VehicleResponse
from ..services.audit import log_activity
from ..services.vehicle_service import create_vehicle
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/clients", tags=["Clients"])


def get_client_or_404(db: Session, client_id: int) -> Client:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@router.get("", response_model=list[ClientResponse])
async def list_clients(
    search: Optional[str] = Query(None),
    current_user: CurrentUser = Depends(require_permission("clients")),
    db: Session = Depends(get_tenant_db),
):
    query = db.query(Client)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Client.first_name.ilike(term),
                Client.last_name.ilike(term),
                Client.nickname.ilike(term),
                Client.phone.ilike(term),
                Client.email.ilike(term),
            )
        )
    return query.order_by(Client.last_name.asc(), Client.first_name.asc()).all()


@router.get("/{client_id}")
async def get_client(
    client_id: int,
    current_user: CurrentUser = Depends(require_permission("clients")),
    db: Session = Depends(get_tenant_db),
):
    """Client with vehicles and order summary"""
    client = get_client_or_404(db, client_id)
    orders = (
        db.query(Order)
        .filter(Order.client_id == client.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return {
        **ClientResponse.model_validate(client).model_dump(),
        "vehicles": [VehicleResponse.model_validate(v).model_dump() for v in client.vehicles],
        "orders": [
            {
                "id": o.id,
                "vehicle_id": o.vehicle_id,
                "status": o.status,
                "payment_status": o.payment_status,
                "total": o.total,
                "created_at": o.created_at,
            }
            for o in orders
        ],
    }


@router.post("", status_code=201)
async def create_client(
    data: ClientCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("clients")),
    db: Session = Depends(get_tenant_db),
):
    """Create a client, optionally with its first vehicle"""
    client = Client(**data.model_dump(exclude={"vehicle"}))
    db.add(client)
    db.flush()

    vehicle = None
    if data.vehicle:
        vehicle = create_vehicle(db, client.id, data.vehicle.model_dump())

    db.commit()
    db.refresh(client)
    logger.info(f"✅ Created client {client.id} ({client.full_name})")

    log_activity(
        db,
        current_user,
        "CREATE_CLIENT",
        "client",
        client.id,
        {"name": client.full_name, "vehicle": vehicle.plate if vehicle else None},
        request,
    )
    return {
        **ClientResponse.model_validate(client).model_dump(),
        "vehicle_id": vehicle.id if vehicle else None,
    }


@router.put("/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: int,
    data: ClientUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("clients")),
    db: Session = Depends(get_tenant_db),
):
    client = get_client_or_404(db, client_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        if key in ("first_name", "last_name") and not value:
            raise HTTPException(status_code=400, detail=f"{key} cannot be empty")
        setattr(client, key, value)

    db.commit()
    db.refresh(client)
    log_activity(db, current_user, "UPDATE_CLIENT", "client", client.id, None, request)
    return client


@router.delete("/{client_id}")
async def delete_client(
    client_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("clients")),
    db: Session = Depends(get_tenant_db),
):
    """Delete a client with its vehicles and orders"""
    client = get_client_or_404(db, client_id)
    name = client.full_name
    db.delete(client)
    db.commit()

    logger.info(f"🗑️ Deleted client {client_id} ({name})")
    log_activity(db, current_user, "DELETE_CLIENT", "client", client_id, {"name": name}, request)
    return {"message": "Client deleted"}
