import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user, require_admin
from ..email_service import decrypt_password, encrypt_password, test_smtp_connection
from ..models import WorkshopConfig
from ..schemas import SmtpTestRequest, WorkshopConfigUpdate
from ..services.audit import log_activity
from ..tenancy import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/config", tags=["Workshop Config"])

PUBLIC_FIELDS = (
    "workshop_name",
    "logo_path",
    "footer_text",
    "address",
    "phone",
    "email",
    "whatsapp",
    "instagram",
    "business_hours",
    "tax_percentage",
    "income_include_parts",
    "parts_profit_percentage",
    "smtp_host",
    "smtp_port",
    "smtp_user",
    "smtp_use_tls",
    "reminder_enabled",
    "reminder_time",
    "timezone",
    "messages_enabled",
    "client_portal_language",
    "theme_id",
    "enabled_modules",
)

# A null in the payload keeps these
REQUIRED_FIELDS = ("workshop_name", "tax_percentage", "parts_profit_percentage", "reminder_time", "timezone")


def get_config_or_404(db: Session) -> WorkshopConfig:
    workshop_config = db.query(WorkshopConfig).first()
    if not workshop_config:
        raise HTTPException(status_code=404, detail="Workshop config not found")
    return workshop_config


def serialize_config(workshop_config: WorkshopConfig) -> dict:
    """Config as returned to the dashboard; the SMTP password never leaves the server"""
    data = {name: getattr(workshop_config, name) for name in PUBLIC_FIELDS}
    data["smtp_password_set"] = bool(workshop_config.smtp_password)
    return data


@router.get("")
async def get_config(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_tenant_db),
):
    return serialize_config(get_config_or_404(db))


@router.put("")
async def update_config(
    data: WorkshopConfigUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_tenant_db),
):
    workshop_config = get_config_or_404(db)
    updates = data.model_dump(exclude_unset=True)

    password = updates.pop("smtp_password", None)
    if password:
        workshop_config.smtp_password = encrypt_password(password)

    for key, value in updates.items():
        if value is None and key in REQUIRED_FIELDS:
            continue
        setattr(workshop_config, key, value)

    db.commit()
    db.refresh(workshop_config)

    changed = sorted(updates) + (["smtp_password"] if password else [])
    log_activity(db, current_user, "UPDATE_CONFIG", "config", workshop_config.id, {"fields": changed}, request)
    logger.info(f"⚙️ Workshop config updated: {', '.join(changed) or 'no changes'}")
    return serialize_config(workshop_config)


@router.post("/smtp/test")
async def smtp_test(
    data: SmtpTestRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_tenant_db),
):
    """Try the given SMTP settings; without a password the stored one is used"""
    password = data.password
    if not password:
        workshop_config = db.query(WorkshopConfig).first()
        password = decrypt_password(workshop_config.smtp_password if workshop_config else None)
    if not password:
        raise HTTPException(status_code=400, detail="SMTP password is required")

    success, message = await run_in_threadpool(
        test_smtp_connection, data.host, data.port, data.user, password, data.use_tls, data.send_to
    )
    return {"success": success, "message": message}
