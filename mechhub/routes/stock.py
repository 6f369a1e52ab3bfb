import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_permission
from ..models import StockItem, StockMovement, Supplier
from ..schemas import StockItemCreate, StockItemUpdate, StockMovementCreate
from ..services.audit import log_activity
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/stock", tags=["Stock"])

INCREASING_MOVEMENTS = {"in", "adjustment", "transfer_in"}


def get_item_or_404(db: Session, item_id: int) -> StockItem:
    item = db.query(StockItem).filter(StockItem.id == item_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def ensure_supplier(db: Session, supplier_id: Optional[int]) -> None:
    if supplier_id is not None and not db.query(Supplier).filter(Supplier.id == supplier_id).first():
        raise HTTPException(status_code=404, detail="Supplier not found")


def serialize_item(item: StockItem) -> dict:
    return {
        "id": item.id,
        "sku": item.sku,
        "name": item.name,
        "category": item.category,
        "quantity": item.quantity,
        "min_quantity": item.min_quantity,
        "cost_price": item.cost_price,
        "sale_price": item.sale_price,
        "supplier_id": item.supplier_id,
        "supplier_name": item.supplier.name if item.supplier else None,
        "location": item.location,
        "notes": item.notes,
        "low_stock": item.quantity <= item.min_quantity,
        "updated_at": item.updated_at,
    }


def apply_movement(item: StockItem, movement_type: str, quantity: float) -> float:
    """New quantity after a movement: in/adjustment/transfer_in add, out/transfer_out subtract"""
    if movement_type in INCREASING_MOVEMENTS:
        return item.quantity + quantity
    return item.quantity - quantity


@router.get("")
async def list_stock(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    low_stock: bool = Query(False),
    current_user: CurrentUser = Depends(require_permission("stock")),
    db: Session = Depends(get_tenant_db),
):
    query = db.query(StockItem)
    if search:
        term = f"%{search}%"
        query = query.filter(or_(StockItem.name.ilike(term), StockItem.sku.ilike(term)))
    if category:
        query = query.filter(StockItem.category == category)
    if low_stock:
        query = query.filter(StockItem.quantity <= StockItem.min_quantity)
    return [serialize_item(i) for i in query.order_by(StockItem.name.asc()).all()]


@router.post("", status_code=201)
async def create_stock_item(
    data: StockItemCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("stock.edit")),
    db: Session = Depends(get_tenant_db),
):
    ensure_supplier(db, data.supplier_id)
    item = StockItem(**data.model_dump())
    db.add(item)
    db.flush()

    if data.quantity > 0:
        db.add(
            StockMovement(
                item_id=item.id,
                type="adjustment",
                quantity=data.quantity,
                notes="Stock inicial",
                user_id=current_user.db_user_id,
            )
        )
    db.commit()
    db.refresh(item)

    log_activity(db, current_user, "CREATE_STOCK_ITEM", "stock", item.id, {"name": item.name, "sku": item.sku}, request)
    return serialize_item(item)


@router.put("/{item_id}")
async def update_stock_item(
    item_id: int,
    data: StockItemUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("stock.edit")),
    db: Session = Depends(get_tenant_db),
):
    """Update item details. Quantity only changes through movements."""
    item = get_item_or_404(db, item_id)
    updates = data.model_dump(exclude_unset=True)
    if "supplier_id" in updates:
        ensure_supplier(db, updates["supplier_id"])

    for key, value in updates.items():
        if value is None and key in ("name", "min_quantity"):
            continue
        setattr(item, key, value)
    item.updated_at = datetime.utcnow()

    db.commit()
    db.refresh(item)
    log_activity(db, current_user, "UPDATE_STOCK_ITEM", "stock", item.id, updates, request)
    return serialize_item(item)


@router.delete("/{item_id}")
async def delete_stock_item(
    item_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("stock.edit")),
    db: Session = Depends(get_tenant_db),
):
    item = get_item_or_404(db, item_id)
    name = item.name
    db.delete(item)
    db.commit()

    log_activity(db, current_user, "DELETE_STOCK_ITEM", "stock", item_id, {"name": name}, request)
    return {"message": "Item deleted"}


@router.post("/movement")
async def record_movement(
    data: StockMovementCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("stock.edit")),
    db: Session = Depends(get_tenant_db),
):
    """Apply a stock movement; item quantity and movement row commit together"""
    item = get_item_or_404(db, data.item_id)
    new_quantity = apply_movement(item, data.type, data.quantity)

    item.quantity = new_quantity
    item.updated_at = datetime.utcnow()
    db.add(
        StockMovement(
            item_id=item.id,
            type=data.type,
            quantity=data.quantity,
            notes=data.notes,
            order_id=data.order_id,
            user_id=current_user.db_user_id,
        )
    )
    db.commit()

    log_activity(
        db,
        current_user,
        "STOCK_MOVEMENT",
        "stock",
        item.id,
        {"type": data.type, "quantity": data.quantity, "new_quantity": new_quantity},
        request,
    )
    return {"item_id": item.id, "new_quantity": new_quantity}


@router.get("/{item_id}/movements")
async def list_movements(
    item_id: int,
    current_user: CurrentUser = Depends(require_permission("stock")),
    db: Session = Depends(get_tenant_db),
):
    get_item_or_404(db, item_id)
    rows = (
        db.query(StockMovement)
        .filter(StockMovement.item_id == item_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .all()
    )
    return [
        {
            "id": m.id,
            "type": m.type,
            "quantity": m.quantity,
            "notes": m.notes,
            "order_id": m.order_id,
            "user_id": m.user_id,
            "created_at": m.created_at,
        }
        for m in rows
    ]
