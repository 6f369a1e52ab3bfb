import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import ServiceCatalog, ServicePriceHistory

logger = logging.getLogger(__name__)


def ensure_service(
    db: Session,
    description: Optional[str],
    labor_price: Optional[float],
    service_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Optional[int]:
    """
    Resolve an order line to a catalog service.

    Matches by id, then by case-insensitive name, creating the service when
    neither exists. A labor price different from the catalog price updates the
    catalog and records the change in the price history. Does not commit.
    """
    if not description or not description.strip():
        return service_id

    name = description.strip()
    labor = float(labor_price or 0)

    service = None
    if service_id:
        service = db.query(ServiceCatalog).filter(ServiceCatalog.id == service_id).first()
    if not service:
        service = (
            db.query(ServiceCatalog)
            .filter(func.lower(ServiceCatalog.name) == name.lower())
            .first()
        )

    if not service:
        service = ServiceCatalog(name=name, base_price=labor)
        db.add(service)
        db.flush()
        db.add(
            ServicePriceHistory(
                service_id=service.id, old_price=None, new_price=labor, changed_by_id=user_id
            )
        )
        logger.info(f"➕ New catalog service: {name} ({labor})")
        return service.id

    old_price = float(service.base_price or 0)
    if old_price != labor:
        service.base_price = labor
        db.add(
            ServicePriceHistory(
                service_id=service.id, old_price=old_price, new_price=labor, changed_by_id=user_id
            )
        )
        logger.info(f"💲 Price change for {service.name}: {old_price} -> {labor}")
    return service.id
