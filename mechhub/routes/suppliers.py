import html
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_permission
from ..email_service import EmailDeliveryError, send_email
from ..models import MessageTemplate, Order, PartInquiry, Supplier, WorkshopConfig
from ..schemas import PartInquiryCreate, SupplierCreate, SupplierResponse
from ..services.audit import log_activity
from ..templating import render_html, render_template
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/suppliers", tags=["Suppliers"])


def get_supplier_or_404(db: Session, supplier_id: int) -> Supplier:
    supplier = db.query(Supplier).filter(Supplier.id == supplier_id).first()
    if not supplier:
        raise HTTPException(status_code=404, detail="Supplier not found")
    return supplier


def inquiry_contact_line(workshop_config) -> str:
    if not workshop_config:
        return "Email: --- | Tel: --- | Dir: ---"
    phone = workshop_config.whatsapp or workshop_config.phone or "---"
    return f"Email: {workshop_config.email or '---'} | Tel: {phone} | Dir: {workshop_config.address or '---'}"


def default_inquiry_html(supplier_name: str, workshop_name: str, vehicle_info: str, part: str, contact: str, user_name: str) -> str:
    e = html.escape
    return (
        "<h3>Consulta de Presupuesto de Repuesto</h3>"
        f"<p>Hola <strong>{e(supplier_name)}</strong>,</p>"
        f"<p>Desde <strong>{e(workshop_name)}</strong> queremos consultarte por el presupuesto del siguiente repuesto:</p>"
        '<div style="background: #f4f4f4; padding: 20px; border-radius: 10px; margin: 20px 0;">'
        f"<p><strong>Vehículo:</strong> {e(vehicle_info)}</p>"
        f"<p><strong>Repuesto y Detalles:</strong><br/>{e(part).replace(chr(10), '<br/>')}</p>"
        "</div>"
        f"<p>{e(contact)}</p>"
        f"<p>Saludos, {e(user_name)}</p>"
    )


@router.get("", response_model=list[SupplierResponse])
async def list_suppliers(
    current_user: CurrentUser = Depends(require_permission("suppliers")),
    db: Session = Depends(get_tenant_db),
):
    return db.query(Supplier).order_by(Supplier.name.asc()).all()


@router.post("", status_code=201, response_model=SupplierResponse)
async def create_supplier(
    data: SupplierCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("suppliers")),
    db: Session = Depends(get_tenant_db),
):
    supplier = Supplier(**data.model_dump())
    db.add(supplier)
    db.commit()
    db.refresh(supplier)

    log_activity(db, current_user, "CREATE_SUPPLIER", "supplier", supplier.id, {"name": supplier.name}, request)
    return supplier


@router.put("/{supplier_id}", response_model=SupplierResponse)
async def update_supplier(
    supplier_id: int,
    data: SupplierCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("suppliers")),
    db: Session = Depends(get_tenant_db),
):
    supplier = get_supplier_or_404(db, supplier_id)
    for key, value in data.model_dump().items():
        setattr(supplier, key, value)
    db.commit()
    db.refresh(supplier)

    log_activity(db, current_user, "UPDATE_SUPPLIER", "supplier", supplier.id, {"name": supplier.name}, request)
    return supplier


@router.delete("/{supplier_id}")
async def delete_supplier(
    supplier_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("suppliers")),
    db: Session = Depends(get_tenant_db),
):
    supplier = get_supplier_or_404(db, supplier_id)
    name = supplier.name
    db.delete(supplier)
    db.commit()

    log_activity(db, current_user, "DELETE_SUPPLIER", "supplier", supplier_id, {"name": name}, request)
    return {"message": "Supplier deleted"}


@router.post("/inquiry")
def send_part_inquiry(
    data: PartInquiryCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("suppliers")),
    db: Session = Depends(get_tenant_db),
):
    """Record a part inquiry and email every selected supplier that has an address"""
    suppliers = db.query(Supplier).filter(Supplier.id.in_(data.supplier_ids)).all()
    if not suppliers:
        raise HTTPException(status_code=404, detail="No suppliers found")

    vehicle_info = data.vehicle_info
    if data.order_id is not None:
        order = db.query(Order).filter(Order.id == data.order_id).first()
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        if not vehicle_info and order.vehicle:
            vehicle_info = f"{order.vehicle.display_name} ({order.vehicle.plate})"
    if not vehicle_info:
        raise HTTPException(status_code=400, detail="vehicle_info is required without an order")

    inquiry = PartInquiry(
        order_id=data.order_id,
        supplier_names=[s.name for s in suppliers],
        part_description=data.part_description,
        vehicle_info=vehicle_info,
    )
    db.add(inquiry)
    db.commit()
    db.refresh(inquiry)

    workshop_config = db.query(WorkshopConfig).first()
    workshop_name = (workshop_config.workshop_name if workshop_config else None) or "Nuestro Taller"
    contact = inquiry_contact_line(workshop_config)
    template = db.query(MessageTemplate).filter(MessageTemplate.trigger_status == "supplier_inquiry").first()
    subject = f"Consulta de Repuesto - {workshop_name}" + (f" (Orden #{data.order_id})" if data.order_id else "")

    results = []
    for supplier in suppliers:
        if not supplier.email:
            results.append({"supplier": supplier.name, "status": "no_email"})
            continue

        values = {
            "supplier": supplier.name,
            "part": data.part_description,
            "vehicle": vehicle_info,
            "workshop": workshop_name,
            "contact_data": contact,
            "user": current_user.username or "Taller",
            "order_id": data.order_id or "---",
        }
        if template:
            text = render_template(template.content, values)
            body = render_html(template.content, values)
        else:
            text = f"Consulta de repuesto para {vehicle_info}:\n{data.part_description}\n\n{contact}"
            body = default_inquiry_html(
                supplier.name, workshop_name, vehicle_info, data.part_description, contact, values["user"]
            )

        try:
            sent = send_email(workshop_config, supplier.email, subject, text, html_body=body)
            results.append({"supplier": supplier.name, "status": "sent" if sent else "smtp_not_configured"})
        except EmailDeliveryError as e:
            logger.error(f"❌ Inquiry email to {supplier.name} failed: {e}")
            results.append({"supplier": supplier.name, "status": "failed", "error": str(e)})

    log_activity(
        db,
        current_user,
        "PART_INQUIRY",
        "part_inquiry",
        inquiry.id,
        {"suppliers": inquiry.supplier_names, "part": data.part_description},
        request,
    )
    return {
        "id": inquiry.id,
        "results": results,
        "failed": [r for r in results if r["status"] == "failed"],
    }


@router.get("/inquiries/order/{order_id}")
async def order_inquiries(
    order_id: int,
    current_user: CurrentUser = Depends(require_permission("suppliers")),
    db: Session = Depends(get_tenant_db),
):
    rows = (
        db.query(PartInquiry)
        .filter(PartInquiry.order_id == order_id)
        .order_by(PartInquiry.created_at.desc(), PartInquiry.id.desc())
        .all()
    )
    return [
        {
            "id": r.id,
            "order_id": r.order_id,
            "supplier_names": r.supplier_names or [],
            "part_description": r.part_description,
            "vehicle_info": r.vehicle_info,
            "created_at": r.created_at,
        }
        for r in rows
    ]
