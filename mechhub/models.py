"""
Per-workshop models. Every tenant SQLite file holds one copy of these tables.
"""

import secrets
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import TenantBase


def generate_share_token():
    """Generate an unguessable token for the public order tracking page"""
    return secrets.token_urlsafe(16)


class Role(TenantBase):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    permissions = Column(JSON, default=list, nullable=False)

    users = relationship("User", back_populates="role_ref")


class User(TenantBase):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False)
    password = Column(String(255), nullable=False)  # bcrypt hash
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    language = Column(String(5), default="es")
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True)
    role = Column(String(50), nullable=True)  # admin, technician, client
    last_activity = Column(DateTime, nullable=True)

    role_ref = relationship("Role", back_populates="users")


class WorkshopConfig(TenantBase):
    """Single-row settings table for the workshop"""

    __tablename__ = "config"

    id = Column(Integer, primary_key=True, index=True)
    workshop_name = Column(String(255), nullable=False)
    logo_path = Column(String(500), nullable=True)
    footer_text = Column(Text, nullable=True)
    address = Column(String(500), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    whatsapp = Column(String(50), nullable=True)
    instagram = Column(String(255), nullable=True)
    business_hours = Column(JSON, nullable=True)
    # Invoicing
    tax_percentage = Column(Float, default=21.0)
    income_include_parts = Column(Boolean, default=True)
    parts_profit_percentage = Column(Float, default=100.0)
    # Outgoing mail (password encrypted with Fernet when SMTP_ENCRYPTION_KEY is set)
    smtp_host = Column(String(255), nullable=True)
    smtp_port = Column(Integer, nullable=True)
    smtp_user = Column(String(255), nullable=True)
    smtp_password = Column(Text, nullable=True)
    smtp_use_tls = Column(Boolean, default=True)
    # Follow-up reminders
    reminder_enabled = Column(Boolean, default=True)
    reminder_time = Column(String(5), default="09:00")  # HH:MM, workshop local time
    timezone = Column(String(64), default="UTC")  # IANA name, e.g. America/Argentina/Buenos_Aires
    messages_enabled = Column(Boolean, default=True)
    client_portal_language = Column(String(5), default="es")
    theme_id = Column(String(50), default="default")
    enabled_modules = Column(JSON, default=list)


class Client(TenantBase):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    nickname = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    address = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    vehicles = relationship("Vehicle", back_populates="client", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="client", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Vehicle(TenantBase):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    plate = Column(String(20), unique=True, nullable=False, index=True)
    brand = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    version = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    km = Column(Integer, nullable=True)
    status = Column(String(20), default="active")  # active, inactive
    created_at = Column(DateTime, server_default=func.now())

    client = relationship("Client", back_populates="vehicles")
    orders = relationship("Order", back_populates="vehicle", cascade="all, delete-orphan")
    km_history = relationship(
        "VehicleKmHistory", back_populates="vehicle", cascade="all, delete-orphan"
    )
    service_intervals = relationship(
        "ServiceInterval", back_populates="vehicle", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.model}".strip()


class VehicleKmHistory(TenantBase):
    """Odometer log - the interval learner reads km-at-delivery from here"""

    __tablename__ = "vehicle_km_history"

    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    km = Column(Integer, nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, nullable=True)

    vehicle = relationship("Vehicle", back_populates="km_history")


class ServiceCatalog(TenantBase):
    __tablename__ = "service_catalog"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    base_price = Column(Float, default=0)
    created_at = Column(DateTime, server_default=func.now())

    price_history = relationship(
        "ServicePriceHistory", back_populates="service", cascade="all, delete-orphan"
    )


class ServicePriceHistory(TenantBase):
    __tablename__ = "service_price_history"

    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(
        Integer, ForeignKey("service_catalog.id", ondelete="CASCADE"), nullable=False
    )
    old_price = Column(Float, nullable=True)
    new_price = Column(Float, nullable=False)
    changed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at = Column(DateTime, server_default=func.now())

    service = relationship("ServiceCatalog", back_populates="price_history")


class Order(TenantBase):
    """Work order tracked from intake to delivery"""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    description = Column(Text, nullable=True)
    # pending, quoted, approved, in_progress, ready, delivered, cancelled
    status = Column(String(50), default="pending", nullable=False)
    payment_status = Column(String(20), default="unpaid", nullable=False)  # unpaid, partial, paid
    payment_amount = Column(Float, default=0)
    share_token = Column(String(64), unique=True, index=True, default=generate_share_token)
    appointment_date = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    # Follow-up reminder: pending -> sent | skipped
    reminder_days = Column(Integer, nullable=True)
    reminder_at = Column(DateTime, nullable=True)
    reminder_status = Column(String(20), default="pending", nullable=False)
    reminder_sent_at = Column(DateTime, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    modified_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="orders")
    vehicle = relationship("Vehicle", back_populates="orders")
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    history = relationship("OrderHistory", back_populates="order", cascade="all, delete-orphan")
    budgets = relationship(
        "Budget", back_populates="order", cascade="all, delete-orphan", order_by="Budget.id"
    )
    modified_by = relationship("User", foreign_keys=[modified_by_id])
    created_by = relationship("User", foreign_keys=[created_by_id])

    @property
    def total(self) -> float:
        return sum(item.subtotal or 0 for item in self.items)


class OrderItem(TenantBase):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    service_id = Column(
        Integer, ForeignKey("service_catalog.id", ondelete="SET NULL"), nullable=True
    )
    description = Column(String(500), nullable=False)
    labor_price = Column(Float, default=0)
    parts_price = Column(Float, default=0)
    subtotal = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")


class Budget(TenantBase):
    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    items = Column(JSON, default=list, nullable=False)
    subtotal = Column(Float, nullable=False)
    tax = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    order = relationship("Order", back_populates="budgets")


class MessageTemplate(TenantBase):
    """Client communication template with [token] / {token} placeholders"""

    __tablename__ = "templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    content = Column(Text, nullable=False)
    # Order status that fires this template automatically, or "reminder" for follow-ups
    trigger_status = Column(String(50), nullable=True)
    include_pdf = Column(Boolean, default=False)
    send_whatsapp = Column(Boolean, default=False)
    send_email = Column(Boolean, default=True)


class OrderHistory(TenantBase):
    __tablename__ = "order_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(100), nullable=False)
    notes = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="history")
    user = relationship("User")


class ServiceInterval(TenantBase):
    """Learned maintenance interval for one (vehicle, service description) pair"""

    __tablename__ = "service_intervals"
    __table_args__ = (
        UniqueConstraint("vehicle_id", "service_description", name="uq_service_interval"),
    )

    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    service_description = Column(String(500), nullable=False)
    last_done_at = Column(DateTime, nullable=True)
    last_done_km = Column(Integer, nullable=True)
    avg_km_interval = Column(Integer, nullable=True)
    avg_day_interval = Column(Integer, nullable=True)
    predicted_next_date = Column(Date, nullable=True)
    predicted_next_km = Column(Integer, nullable=True)
    confidence = Column(Integer, default=0, nullable=False)  # 0-100
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    vehicle = relationship("Vehicle", back_populates="service_intervals")


class Supplier(TenantBase):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class PartInquiry(TenantBase):
    __tablename__ = "part_inquiries"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    supplier_names = Column(JSON, default=list, nullable=False)
    part_description = Column(Text, nullable=False)
    vehicle_info = Column(String(500), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class StockItem(TenantBase):
    __tablename__ = "stock_items"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(100), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)
    quantity = Column(Float, default=0, nullable=False)
    min_quantity = Column(Float, default=0, nullable=False)
    cost_price = Column(Float, default=0)
    sale_price = Column(Float, default=0)
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True)
    location = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    supplier = relationship("Supplier")
    movements = relationship(
        "StockMovement", back_populates="item", cascade="all, delete-orphan"
    )


class StockMovement(TenantBase):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, ForeignKey("stock_items.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(20), nullable=False)  # in, out, adjustment, transfer_in, transfer_out
    quantity = Column(Float, nullable=False)
    notes = Column(Text, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    item = relationship("StockItem", back_populates="movements")


class SystemLog(TenantBase):
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(String(20), default="info")
    message = Column(Text, nullable=False)
    stack_trace = Column(Text, nullable=True)
    path = Column(String(500), nullable=True)
    method = Column(String(10), nullable=True)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class AuditLog(TenantBase):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_name = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(50), nullable=True)
    details = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
