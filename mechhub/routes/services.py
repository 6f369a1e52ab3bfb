import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user, require_admin
from ..models import ServiceCatalog, ServicePriceHistory
from ..schemas import ServiceCreate, ServiceResponse, ServiceUpdate
from ..services.audit import log_activity
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/services", tags=["Service Catalog"])


def get_service_or_404(db: Session, service_id: int) -> ServiceCatalog:
    service = db.query(ServiceCatalog).filter(ServiceCatalog.id == service_id).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


def ensure_name_available(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(ServiceCatalog).filter(func.lower(ServiceCatalog.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.filter(ServiceCatalog.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail="A service with this name already exists")


@router.get("", response_model=list[ServiceResponse])
async def list_services(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_tenant_db),
):
    return db.query(ServiceCatalog).order_by(ServiceCatalog.name.asc()).all()


@router.post("", status_code=201, response_model=ServiceResponse)
async def create_service(
    data: ServiceCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_tenant_db),
):
    ensure_name_available(db, data.name)
    service = ServiceCatalog(name=data.name.strip(), base_price=data.base_price)
    db.add(service)
    db.flush()
    db.add(
        ServicePriceHistory(
            service_id=service.id, old_price=None, new_price=data.base_price, changed_by_id=current_user.db_user_id
        )
    )
    db.commit()
    db.refresh(service)

    log_activity(db, current_user, "CREATE_SERVICE", "service", service.id, {"name": service.name}, request)
    return service


@router.put("/{service_id}", response_model=ServiceResponse)
async def update_service(
    service_id: int,
    data: ServiceUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_tenant_db),
):
    service = get_service_or_404(db, service_id)
    if data.name:
        ensure_name_available(db, data.name, exclude_id=service.id)
        service.name = data.name.strip()
    if data.base_price is not None and data.base_price != service.base_price:
        db.add(
            ServicePriceHistory(
                service_id=service.id,
                old_price=service.base_price,
                new_price=data.base_price,
                changed_by_id=current_user.db_user_id,
            )
        )
        service.base_price = data.base_price

    db.commit()
    db.refresh(service)
    log_activity(db, current_user, "UPDATE_SERVICE", "service", service.id, data.model_dump(exclude_unset=True), request)
    return service


@router.delete("/{service_id}")
async def delete_service(
    service_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_tenant_db),
):
    service = get_service_or_404(db, service_id)
    name = service.name
    db.delete(service)
    db.commit()

    log_activity(db, current_user, "DELETE_SERVICE", "service", service_id, {"name": name}, request)
    return {"message": "Service deleted"}


@router.get("/{service_id}/price-history")
async def price_history(
    service_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_tenant_db),
):
    get_service_or_404(db, service_id)
    rows = (
        db.query(ServicePriceHistory)
        .filter(ServicePriceHistory.service_id == service_id)
        .order_by(ServicePriceHistory.changed_at.desc(), ServicePriceHistory.id.desc())
        .all()
    )
    return [
        {
            "id": r.id,
            "old_price": r.old_price,
            "new_price": r.new_price,
            "changed_by_id": r.changed_by_id,
            "changed_at": r.changed_at,
        }
        for r in rows
    ]
