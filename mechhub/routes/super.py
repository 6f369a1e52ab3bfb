"""
Super admin control plane

Workshop registry and lifecycle, per-workshop logs, global settings and
the manual reminder sweep.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_super_admin
from ..models import Client, Order, SystemLog, User, Vehicle
from ..models_super import GlobalSetting, SystemAuditLog, Workshop
from ..schemas import AdminPasswordReset, WorkshopCreate, WorkshopUpdate
from ..services.audit import log_system_activity
from ..services.reminders import sweep_all_tenants
from ..tenancy import (
    DEFAULT_ADMIN_USERNAME,
    TenantRegistry,
    generate_api_token,
    get_registry,
    get_super_db,
    pwd_context,
    validate_slug,
)
from .logs import audit_page, recent_system_logs

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/super", tags=["Super Admin"])

CLOSED_ORDER_STATUSES = ("delivered", "cancelled")


def tenant_counters(registry: TenantRegistry, slug: str) -> dict:
    counters = {"active_orders": 0, "clients": 0, "errors": 0}
    if not registry.exists(slug):
        return counters
    try:
        with registry.session(slug) as db:
            counters["active_orders"] = db.query(Order).filter(~Order.status.in_(CLOSED_ORDER_STATUSES)).count()
            counters["clients"] = db.query(Client).count()
            counters["errors"] = db.query(SystemLog).filter(SystemLog.level == "error").count()
    except SQLAlchemyError as e:
        logger.error(f"❌ Could not read counters for {slug}: {e}")
    return counters


def serialize_workshop(workshop: Workshop) -> dict:
    return {
        "id": workshop.id,
        "slug": workshop.slug,
        "name": workshop.name,
        "status": workshop.status,
        "environment": workshop.environment,
        "enabled_modules": workshop.enabled_modules or [],
        "logo_path": workshop.logo_path,
        "created_at": workshop.created_at,
    }


def get_workshop_or_404(super_db: Session, slug: str) -> Workshop:
    workshop = super_db.query(Workshop).filter(Workshop.slug == slug).first()
    if not workshop:
        raise HTTPException(status_code=404, detail="Workshop not found")
    return workshop


@router.get("/workshops")
async def list_workshops(
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
    registry: TenantRegistry = Depends(get_registry),
):
    workshops = super_db.query(Workshop).order_by(Workshop.id.asc()).all()
    return [{**serialize_workshop(w), **tenant_counters(registry, w.slug)} for w in workshops]


@router.post("/workshops", status_code=201)
async def create_workshop(
    data: WorkshopCreate,
    request: Request,
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
    registry: TenantRegistry = Depends(get_registry),
):
    try:
        validate_slug(data.slug)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if super_db.query(Workshop).filter(Workshop.slug == data.slug).first() or registry.exists(data.slug):
        raise HTTPException(status_code=409, detail="A workshop with this slug already exists")

    workshop = registry.create_tenant(data.slug, data.name)
    log_system_activity(super_db, current_user, "CREATE_WORKSHOP", "workshop", data.slug, {"name": data.name}, request)
    return serialize_workshop(workshop)


@router.patch("/workshops/{slug}")
async def update_workshop(
    slug: str,
    data: WorkshopUpdate,
    request: Request,
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
):
    workshop = get_workshop_or_404(super_db, slug)
    updates = data.model_dump(exclude_none=True)
    for key, value in updates.items():
        setattr(workshop, key, value)
    super_db.commit()
    super_db.refresh(workshop)

    if "status" in updates:
        logger.info(f"🔁 Workshop {slug} is now {workshop.status}")
    log_system_activity(super_db, current_user, "UPDATE_WORKSHOP", "workshop", slug, updates, request)
    return serialize_workshop(workshop)


@router.delete("/workshops/{slug}")
def delete_workshop(
    slug: str,
    request: Request,
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
    registry: TenantRegistry = Depends(get_registry),
):
    """Remove a workshop from the control plane and delete its database folder"""
    workshop = get_workshop_or_404(super_db, slug)
    name = workshop.name
    super_db.expunge(workshop)

    registry.delete_tenant(slug)
    log_system_activity(super_db, current_user, "DELETE_WORKSHOP", "workshop", slug, {"name": name}, request)
    logger.warning(f"🗑️ Workshop {slug} deleted by {current_user.username}")
    return {"success": True, "slug": slug}


@router.post("/workshops/{slug}/token")
async def rotate_api_token(
    slug: str,
    request: Request,
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
):
    workshop = get_workshop_or_404(super_db, slug)
    workshop.api_token = generate_api_token()
    super_db.commit()

    log_system_activity(super_db, current_user, "ROTATE_API_TOKEN", "workshop", slug, None, request)
    return {"api_token": workshop.api_token}


@router.post("/workshops/{slug}/admin-password")
def reset_admin_password(
    slug: str,
    data: AdminPasswordReset,
    request: Request,
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
    registry: TenantRegistry = Depends(get_registry),
):
    """Set a new password for the workshop's built-in admin user"""
    get_workshop_or_404(super_db, slug)
    with registry.session(slug) as db:
        admin = db.query(User).filter(User.username == DEFAULT_ADMIN_USERNAME).first()
        if not admin:
            raise HTTPException(status_code=404, detail="Admin user not found in this workshop")
        admin.password = pwd_context.hash(data.password)
        db.commit()

    log_system_activity(super_db, current_user, "RESET_ADMIN_PASSWORD", "workshop", slug, None, request)
    return {"message": "Admin password updated"}


@router.get("/workshops/{slug}/logs")
def workshop_system_logs(
    slug: str,
    limit: int = Query(100, ge=1, le=1000),
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
    registry: TenantRegistry = Depends(get_registry),
):
    get_workshop_or_404(super_db, slug)
    with registry.session(slug) as db:
        return recent_system_logs(db, limit)


@router.get("/workshops/{slug}/audit")
def workshop_audit(
    slug: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    action: str = Query(None),
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
    registry: TenantRegistry = Depends(get_registry),
):
    get_workshop_or_404(super_db, slug)
    with registry.session(slug) as db:
        return audit_page(db, page, limit, action)


@router.get("/stats")
def global_stats(
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
    registry: TenantRegistry = Depends(get_registry),
):
    """Totals across every registered workshop. Unreadable tenants count as empty."""
    workshops = super_db.query(Workshop).all()
    stats = {
        "total_workshops": len(workshops),
        "active_workshops": sum(1 for w in workshops if w.status == "active"),
        "total_orders": 0,
        "total_clients": 0,
        "total_vehicles": 0,
    }
    for workshop in workshops:
        if not registry.exists(workshop.slug):
            continue
        try:
            with registry.session(workshop.slug) as db:
                stats["total_orders"] += db.query(Order).count()
                stats["total_clients"] += db.query(Client).count()
                stats["total_vehicles"] += db.query(Vehicle).count()
        except SQLAlchemyError as e:
            logger.error(f"❌ Could not read stats for {workshop.slug}: {e}")
    return stats


@router.post("/trigger-reminders")
def trigger_reminders(
    request: Request,
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
    registry: TenantRegistry = Depends(get_registry),
):
    """Run the follow-up reminder sweep now instead of waiting for the worker"""
    summaries = sweep_all_tenants(registry)
    log_system_activity(
        super_db,
        current_user,
        "TRIGGER_REMINDERS",
        "reminders",
        None,
        {"tenants": len(summaries), "sent": sum(s["sent"] for s in summaries)},
        request,
    )
    return {"tenants": summaries}


@router.get("/audit")
async def system_audit(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
):
    query = super_db.query(SystemAuditLog)
    total = query.count()
    rows = (
        query.order_by(SystemAuditLog.created_at.desc(), SystemAuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [
            {
                "id": r.id,
                "user_name": r.user_name,
                "action": r.action,
                "entity_type": r.entity_type,
                "entity_id": r.entity_id,
                "details": r.details,
                "ip_address": r.ip_address,
                "created_at": r.created_at,
            }
            for r in rows
        ],
        "total": total,
    }


@router.get("/settings")
async def get_settings(
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
):
    return {s.key: s.value for s in super_db.query(GlobalSetting).all()}


@router.put("/settings")
async def update_settings(
    data: dict[str, str],
    request: Request,
    current_user: CurrentUser = Depends(get_super_admin),
    super_db: Session = Depends(get_super_db),
):
    for key, value in data.items():
        setting = super_db.query(GlobalSetting).filter(GlobalSetting.key == key).first()
        if setting:
            setting.value = value
        else:
            super_db.add(GlobalSetting(key=key, value=value))
    super_db.commit()

    log_system_activity(super_db, current_user, "UPDATE_GLOBAL_SETTINGS", "settings", None, sorted(data), request)
    return {s.key: s.value for s in super_db.query(GlobalSetting).all()}
