"""
Audit trail for business actions (tenant) and control plane actions (super.db)
"""

import json
import logging
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import CurrentUser
from ..models import AuditLog
from ..models_super import SystemAuditLog

logger = logging.getLogger(__name__)


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _serialize_details(details: Any) -> Optional[str]:
    if details is None or isinstance(details, str):
        return details
    return json.dumps(details, default=str, ensure_ascii=False)


def log_activity(
    db: Session,
    user: Optional[CurrentUser],
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Any = None,
    details: Any = None,
    request: Optional[Request] = None,
) -> None:
    """Record an action in the tenant audit log. Failures are logged, never raised."""
    user_name = (user.username or "System") if user else "System"
    try:
        db.add(
            AuditLog(
                # Superusers have no row in the tenant users table
                user_id=user.db_user_id if user else None,
                user_name=user_name,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                details=_serialize_details(details),
                ip_address=client_ip(request),
            )
        )
        db.commit()
        logger.debug(f"📝 Audit: {action} by {user_name}")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error logging tenant activity {action}: {e}")


def log_system_activity(
    super_db: Session,
    user: Optional[CurrentUser],
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Any = None,
    details: Any = None,
    request: Optional[Request] = None,
) -> None:
    """Record a control plane action in super.db"""
    user_name = user.username if user else "System"
    try:
        super_db.add(
            SystemAuditLog(
                user_id=user.id if user else None,
                user_name=user_name,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                details=_serialize_details(details),
                ip_address=client_ip(request),
            )
        )
        super_db.commit()
        logger.info(f"📝 System audit: {action} by {user_name}")
    except SQLAlchemyError as e:
        super_db.rollback()
        logger.error(f"❌ Error logging system activity {action}: {e}")
