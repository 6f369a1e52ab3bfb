import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_admin
from ..models import AuditLog, SystemLog
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/logs", tags=["Logs"])


def serialize_system_log(r: SystemLog) -> dict:
    return {
        "id": r.id,
        "level": r.level,
        "message": r.message,
        "stack_trace": r.stack_trace,
        "path": r.path,
        "method": r.method,
        "user_id": r.user_id,
        "created_at": r.created_at,
    }


def serialize_audit_log(r: AuditLog) -> dict:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "user_name": r.user_name,
        "action": r.action,
        "entity_type": r.entity_type,
        "entity_id": r.entity_id,
        "details": r.details,
        "ip_address": r.ip_address,
        "created_at": r.created_at,
    }


def recent_system_logs(db: Session, limit: int) -> list[dict]:
    rows = db.query(SystemLog).order_by(SystemLog.created_at.desc(), SystemLog.id.desc()).limit(limit).all()
    return [serialize_system_log(r) for r in rows]


def audit_page(db: Session, page: int, limit: int, action: str = None) -> dict:
    """One page of the tenant audit trail, newest first"""
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)

    total = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"items": [serialize_audit_log(r) for r in rows], "total": total, "page": page, "limit": limit}


@router.get("")
async def system_logs(
    limit: int = Query(100, ge=1, le=1000),
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_tenant_db),
):
    return recent_system_logs(db, limit)


@router.get("/audit")
async def audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    action: str = Query(None),
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_tenant_db),
):
    return audit_page(db, page, limit, action)
