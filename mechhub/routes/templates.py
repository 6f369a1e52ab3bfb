import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user, require_permission
from ..models import MessageTemplate, Order
from ..schemas import TemplateCreate, TemplatePreview, TemplateResponse, TemplateUpdate
from ..services.audit import log_activity
from ..templating import build_order_context, render_html, render_template, whatsapp_link
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/templates", tags=["Templates"])


def get_template_or_404(db: Session, template_id: int) -> MessageTemplate:
    template = db.query(MessageTemplate).filter(MessageTemplate.id == template_id).first()
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


def ensure_unique(
    db: Session, name: Optional[str], trigger_status: Optional[str], exclude_id: Optional[int] = None
) -> None:
    """One template per name and at most one per automatic trigger"""
    if name:
        query = db.query(MessageTemplate).filter(MessageTemplate.name == name)
        if exclude_id is not None:
            query = query.filter(MessageTemplate.id != exclude_id)
        if query.first():
            raise HTTPException(status_code=409, detail="A template with this name already exists")
    if trigger_status:
        query = db.query(MessageTemplate).filter(MessageTemplate.trigger_status == trigger_status)
        if exclude_id is not None:
            query = query.filter(MessageTemplate.id != exclude_id)
        if query.first():
            raise HTTPException(status_code=409, detail="A template with this automatic trigger already exists")


@router.get("", response_model=list[TemplateResponse])
async def list_templates(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_tenant_db),
):
    return db.query(MessageTemplate).order_by(MessageTemplate.id.asc()).all()


@router.post("", status_code=201, response_model=TemplateResponse)
async def create_template(
    data: TemplateCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("settings")),
    db: Session = Depends(get_tenant_db),
):
    ensure_unique(db, data.name, data.trigger_status)
    template = MessageTemplate(**data.model_dump())
    db.add(template)
    db.commit()
    db.refresh(template)

    log_activity(db, current_user, "CREATE_TEMPLATE", "template", template.id, {"name": template.name}, request)
    return template


@router.put("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: int,
    data: TemplateUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("settings")),
    db: Session = Depends(get_tenant_db),
):
    template = get_template_or_404(db, template_id)
    updates = data.model_dump(exclude_unset=True)
    ensure_unique(db, updates.get("name"), updates.get("trigger_status"), exclude_id=template.id)

    for key, value in updates.items():
        if value is None and key in ("name", "content", "include_pdf", "send_whatsapp", "send_email"):
            continue
        setattr(template, key, value)

    db.commit()
    db.refresh(template)
    log_activity(db, current_user, "UPDATE_TEMPLATE", "template", template.id, {"name": template.name}, request)
    return template


@router.delete("/{template_id}")
async def delete_template(
    template_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("settings")),
    db: Session = Depends(get_tenant_db),
):
    template = get_template_or_404(db, template_id)
    name = template.name
    db.delete(template)
    db.commit()

    log_activity(db, current_user, "DELETE_TEMPLATE", "template", template_id, {"name": name}, request)
    return {"message": "Template deleted"}


@router.post("/{template_id}/preview")
async def preview_template(
    template_id: int,
    data: TemplatePreview,
    slug: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_tenant_db),
):
    """Render a template against a real order"""
    template = get_template_or_404(db, template_id)
    order = db.query(Order).filter(Order.id == data.order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    context = build_order_context(db, order, slug, user_name=current_user.username)
    text = render_template(template.content, context)
    return {
        "text": text,
        "html": render_html(template.content, context),
        "whatsapp_link": whatsapp_link(order.client.phone if order.client else None, text),
    }
