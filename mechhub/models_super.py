"""
Control plane models stored in super.db
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from .database import SuperBase

DEFAULT_ENABLED_MODULES = [
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
]


class SuperUser(SuperBase):
    __tablename__ = "super_users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False)
    password = Column(String(255), nullable=False)
    last_activity = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Workshop(SuperBase):
    """A registered tenant. The slug names its folder under DATA_DIR/tenants"""

    __tablename__ = "workshops"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active, inactive
    api_token = Column(String(64), unique=True, nullable=True)
    logo_path = Column(String(500), nullable=True)
    environment = Column(String(10), default="prod", nullable=False)  # prod, dev
    enabled_modules = Column(JSON, default=lambda: list(DEFAULT_ENABLED_MODULES))
    created_at = Column(DateTime, server_default=func.now())


class GlobalSetting(SuperBase):
    __tablename__ = "global_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)


class SystemAuditLog(SuperBase):
    __tablename__ = "system_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True)
    user_name = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(50), nullable=True)
    details = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
