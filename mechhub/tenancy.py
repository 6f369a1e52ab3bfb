"""
Tenant registry

Every workshop lives in its own SQLite file under DATA_DIR/tenants/<slug>/db.sqlite.
The registry owns one engine + sessionmaker per slug (created lazily, schema and
defaults ensured on first open) and the control plane engine for super.db.
"""

import logging
import re
import secrets
import shutil
import threading
from functools import lru_cache
from pathlib import Path
from typing import Optional

from fastapi import Depends, HTTPException
from passlib.context import CryptContext
from sqlalchemy.orm import Session, sessionmaker

from . import config
from .database import SuperBase, TenantBase, create_session_factory, create_sqlite_engine
from .models import MessageTemplate, Role, User, WorkshopConfig
from .models_super import DEFAULT_ENABLED_MODULES, Workshop

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")

DEFAULT_ROLES = {
    "Admin": [
        "dashboard",
        "clients",
        "vehicles",
        "orders",
        "income",
        "reports",
        "settings",
        "users",
        "roles",
        "reminders",
        "appointments",
        "suppliers",
        "stock",
    ],
    "Technician": ["dashboard", "clients", "vehicles", "orders", "reminders", "appointments"],
}

# (name, content, trigger_status, include_pdf)
DEFAULT_TEMPLATES = [
    (
        "vehicle_reception",
        "Hola [apodo], te damos la bienvenida a [taller]. Ya registramos el ingreso de tu "
        "[vehiculo]. Podés seguir el progreso aquí: [link]. Orden: #[orden_id].",
        "pending",
        False,
    ),
    (
        "budget_review",
        "Hola [apodo], el presupuesto para tu [vehiculo] ya está disponible. "
        "Podés verlo adjunto o en el portal.",
        "quoted",
        True,
    ),
    (
        "vehicle_ready",
        "¡Buenas noticias [apodo]! Tu [vehiculo] ya está listo para retirar.",
        "ready",
        False,
    ),
    (
        "delivery_thanks",
        "Gracias por confiar en [taller]. Registramos la entrega de tu [vehiculo] con [km] km.",
        "delivered",
        True,
    ),
    (
        "follow_up",
        "Hola [apodo], ya pasó un tiempo desde el último servicio de tu [vehiculo] en [taller]. "
        "¿Querés agendar una revisión? Historial: [link]",
        "reminder",
        False,
    ),
    (
        "appointment_assigned",
        "Hola [apodo], tu turno para el [vehiculo] en [taller] fue agendado para el [turno_fecha].",
        "appointment",
        False,
    ),
]

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin123"  # noqa: S105 - first-login password, changed from the dashboard


def validate_slug(slug: str) -> str:
    if not slug or not SLUG_PATTERN.match(slug):
        raise ValueError("Slug must be lowercase letters, numbers and hyphens only")
    return slug


def generate_api_token() -> str:
    return secrets.token_hex(32)


def seed_tenant(db: Session, slug: str, name: Optional[str] = None) -> None:
    """Ensure roles, the config row, default templates and the admin user exist"""
    for role_name, permissions in DEFAULT_ROLES.items():
        role = db.query(Role).filter(Role.name == role_name).first()
        if role:
            role.permissions = permissions
        else:
            db.add(Role(name=role_name, permissions=permissions))
    db.flush()

    if db.query(WorkshopConfig).count() == 0:
        db.add(
            WorkshopConfig(
                workshop_name=name or slug,
                footer_text="Powered by MechHub",
                business_hours={
                    "mon_fri": "09:00 - 18:00",
                    "sat": "09:00 - 13:00",
                    "sun": "Closed",
                },
                enabled_modules=list(DEFAULT_ENABLED_MODULES),
            )
        )

    if db.query(MessageTemplate).count() == 0:
        for tpl_name, content, trigger, include_pdf in DEFAULT_TEMPLATES:
            db.add(
                MessageTemplate(
                    name=tpl_name,
                    content=content,
                    trigger_status=trigger,
                    include_pdf=include_pdf,
                    send_email=True,
                )
            )

    admin_role = db.query(Role).filter(Role.name == "Admin").first()
    admin_exists = db.query(User).filter(User.username == DEFAULT_ADMIN_USERNAME).first()
    if not admin_exists and admin_role:
        db.add(
            User(
                username=DEFAULT_ADMIN_USERNAME,
                password=pwd_context.hash(DEFAULT_ADMIN_PASSWORD),
                role_id=admin_role.id,
                role="admin",
            )
        )

    db.commit()


class TenantRegistry:
    """Arena of per-tenant engines keyed by slug"""

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()
        self._engines = {}
        self._factories: dict[str, sessionmaker] = {}
        self._super_engine = None
        self._super_factory: Optional[sessionmaker] = None

    @property
    def tenants_dir(self) -> Path:
        return self.data_dir / "tenants"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    def tenant_dir(self, slug: str) -> Path:
        return self.tenants_dir / validate_slug(slug)

    def db_path(self, slug: str) -> Path:
        return self.tenant_dir(slug) / "db.sqlite"

    def exists(self, slug: str) -> bool:
        try:
            return self.db_path(slug).exists()
        except ValueError:
            return False

    # Control plane

    def super_session(self) -> Session:
        with self._lock:
            if self._super_factory is None:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                self._super_engine = create_sqlite_engine(str(self.data_dir / "super.db"))
                SuperBase.metadata.create_all(bind=self._super_engine, checkfirst=True)
                self._super_factory = create_session_factory(self._super_engine)
                logger.info(f"✅ Control plane database ready at {self.data_dir / 'super.db'}")
        return self._super_factory()

    # Tenants

    def _open(self, slug: str, name: Optional[str] = None) -> sessionmaker:
        with self._lock:
            factory = self._factories.get(slug)
            if factory is not None:
                return factory

            tenant_dir = self.tenant_dir(slug)
            tenant_dir.mkdir(parents=True, exist_ok=True)
            engine = create_sqlite_engine(str(self.db_path(slug)))
            TenantBase.metadata.create_all(bind=engine, checkfirst=True)
            factory = create_session_factory(engine)

            db = factory()
            try:
                seed_tenant(db, slug, name)
            except Exception:
                db.rollback()
                engine.dispose()
                raise
            finally:
                db.close()

            self._engines[slug] = engine
            self._factories[slug] = factory
            logger.info(f"🔧 Opened tenant database: {slug}")
            return factory

    def session(self, slug: str) -> Session:
        """New session for a tenant DB, creating and seeding it on first use"""
        return self._open(validate_slug(slug))()

    def create_tenant(self, slug: str, name: Optional[str] = None) -> Workshop:
        """Register a workshop in the control plane and scaffold its database"""
        validate_slug(slug)
        super_db = self.super_session()
        try:
            workshop = super_db.query(Workshop).filter(Workshop.slug == slug).first()
            if not workshop:
                workshop = Workshop(
                    slug=slug,
                    name=name or slug,
                    api_token=generate_api_token(),
                    enabled_modules=list(DEFAULT_ENABLED_MODULES),
                )
                super_db.add(workshop)
                super_db.commit()
                super_db.refresh(workshop)
            super_db.expunge(workshop)
        finally:
            super_db.close()

        self._open(slug, name or slug)
        logger.info(f"✅ Created tenant: {slug}")
        return workshop

    def list_slugs(self) -> list[str]:
        if not self.tenants_dir.exists():
            return []
        return sorted(
            entry.name
            for entry in self.tenants_dir.iterdir()
            if entry.is_dir() and (entry / "db.sqlite").exists()
        )

    def close(self, slug: str) -> None:
        with self._lock:
            engine = self._engines.pop(slug, None)
            self._factories.pop(slug, None)
            if engine is not None:
                engine.dispose()

    def close_all(self) -> None:
        with self._lock:
            for slug in list(self._engines):
                self.close(slug)
            if self._super_engine is not None:
                self._super_engine.dispose()
                self._super_engine = None
                self._super_factory = None

    def delete_tenant(self, slug: str) -> None:
        """Drop a tenant's folder and control plane row"""
        validate_slug(slug)
        self.close(slug)
        shutil.rmtree(self.tenant_dir(slug), ignore_errors=True)

        super_db = self.super_session()
        try:
            super_db.query(Workshop).filter(Workshop.slug == slug).delete()
            super_db.commit()
        finally:
            super_db.close()
        logger.info(f"🗑️ Deleted tenant: {slug}")

    def bootstrap(self) -> None:
        """Create the default workshop on an empty install, else open every registered tenant"""
        super_db = self.super_session()
        try:
            slugs = [w.slug for w in super_db.query(Workshop).order_by(Workshop.id).all()]
        finally:
            super_db.close()

        if not slugs:
            logger.info(f"📦 No workshops registered, creating default '{config.DEFAULT_WORKSHOP_SLUG}'")
            self.create_tenant(config.DEFAULT_WORKSHOP_SLUG, config.DEFAULT_WORKSHOP_NAME)
            return

        for slug in slugs:
            try:
                self._open(validate_slug(slug))
            except Exception as e:
                logger.error(f"❌ Failed to open tenant {slug}: {e}")


# FastAPI dependencies


@lru_cache
def get_registry() -> TenantRegistry:
    return TenantRegistry(config.DATA_DIR)


def get_super_db(registry: TenantRegistry = Depends(get_registry)):
    db = registry.super_session()
    try:
        yield db
    finally:
        db.close()


def get_workshop(slug: str, super_db: Session = Depends(get_super_db)) -> Workshop:
    """Resolve the path slug to an active workshop"""
    if not SLUG_PATTERN.match(slug):
        raise HTTPException(status_code=404, detail="Workshop not found")

    workshop = super_db.query(Workshop).filter(Workshop.slug == slug).first()
    if not workshop:
        raise HTTPException(status_code=404, detail="Workshop not found")
    if workshop.status == "inactive":
        raise HTTPException(status_code=403, detail="Workshop is inactive")
    return workshop


def get_tenant_db(
    slug: str,
    workshop: Workshop = Depends(get_workshop),
    registry: TenantRegistry = Depends(get_registry),
):
    db = registry.session(workshop.slug)
    try:
        yield db
    finally:
        db.close()
