"""Pydantic models for request validation and responses"""

from datetime import date, datetime
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, EmailStr, Field, field_validator

OrderStatus = Literal["pending", "quoted", "approved", "in_progress", "ready", "delivered", "cancelled"]
PaymentStatus = Literal["unpaid", "partial", "paid"]
TriggerStatus = Literal[
    "pending",
    "quoted",
    "approved",
    "in_progress",
    "ready",
    "delivered",
    "cancelled",
    "reminder",
    "appointment",
    "supplier_inquiry",
]
MovementType = Literal["in", "out", "adjustment", "transfer_in", "transfer_out"]


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


# ============================================================================
# CLIENTS & VEHICLES
# ============================================================================


class VehicleBase(BaseModel):
    plate: str
    brand: str
    model: str
    version: Optional[str] = None
    year: Optional[int] = None
    km: Optional[int] = Field(None, ge=0)

    @field_validator("plate")
    @classmethod
    def normalize_plate(cls, v):
        v = (v or "").strip().upper()
        if not v:
            raise ValueError("Plate is required")
        return v


class VehicleInline(VehicleBase):
    """Vehicle created together with its owner"""


class VehicleCreate(VehicleBase):
    client_id: int
    status: Literal["active", "inactive"] = "active"


class VehicleUpdate(BaseModel):
    plate: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    version: Optional[str] = None
    year: Optional[int] = None
    status: Optional[Literal["active", "inactive"]] = None
    client_id: Optional[int] = None

    @field_validator("plate")
    @classmethod
    def normalize_plate(cls, v):
        return v.strip().upper() if v else v


class KmUpdate(BaseModel):
    km: int = Field(..., ge=0)
    notes: Optional[str] = None
    force: bool = False


class VehicleResponse(BaseModel):
    id: int
    client_id: int
    plate: str
    brand: str
    model: str
    version: Optional[str] = None
    year: Optional[int] = None
    km: Optional[int] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class KmHistoryResponse(BaseModel):
    id: int
    km: int
    recorded_at: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ServiceIntervalResponse(BaseModel):
    id: int
    service_description: str
    last_done_at: Optional[datetime] = None
    last_done_km: Optional[int] = None
    avg_km_interval: Optional[int] = None
    avg_day_interval: Optional[int] = None
    predicted_next_date: Optional[date] = None
    predicted_next_km: Optional[int] = None
    confidence: int

    class Config:
        from_attributes = True


class ClientCreate(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    nickname: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    vehicle: Optional[VehicleInline] = None

    @field_validator("email", mode="before")
    @classmethod
    def empty_email(cls, v):
        return _blank_to_none(v)


class ClientUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def empty_email(cls, v):
        return _blank_to_none(v)


class ClientResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    nickname: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================================
# ORDERS
# ============================================================================


class OrderItemIn(BaseModel):
    description: str = Field(..., min_length=1)
    labor_price: float = 0
    parts_price: float = 0
    service_id: Optional[int] = None


class OrderCreate(BaseModel):
    client_id: int
    vehicle_id: int
    description: Optional[str] = None
    appointment_date: Optional[datetime] = None
    items: list[OrderItemIn] = []


class OrderItemsAdd(BaseModel):
    items: list[OrderItemIn]


class OrderItemUpdate(BaseModel):
    description: str = Field(..., min_length=1)
    labor_price: float = 0
    parts_price: float = 0


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    reminder_days: Optional[int] = Field(None, ge=0)


class PaymentUpdate(BaseModel):
    payment_status: PaymentStatus
    payment_amount: float = Field(0, ge=0)


class BudgetItem(BaseModel):
    description: str
    qty: float = 1
    price: float = 0
    subtotal: Optional[float] = None


class BudgetCreate(BaseModel):
    items: list[BudgetItem]
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None


class ManualTemplateSend(BaseModel):
    order_id: int
    template_id: int
    send_email: bool = False


class ReminderStatusUpdate(BaseModel):
    status: Literal["sent", "skipped"]


class ReminderReschedule(BaseModel):
    reminder_at: Optional[datetime] = None
    reminder_days: Optional[int] = Field(None, ge=1)


# ============================================================================
# TEMPLATES & SERVICE CATALOG
# ============================================================================


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    trigger_status: Optional[TriggerStatus] = None
    include_pdf: bool = False
    send_whatsapp: bool = False
    send_email: bool = True

    @field_validator("trigger_status", mode="before")
    @classmethod
    def empty_trigger(cls, v):
        return _blank_to_none(v)


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    content: Optional[str] = None
    trigger_status: Optional[TriggerStatus] = None
    include_pdf: Optional[bool] = None
    send_whatsapp: Optional[bool] = None
    send_email: Optional[bool] = None

    @field_validator("trigger_status", mode="before")
    @classmethod
    def empty_trigger(cls, v):
        return _blank_to_none(v)


class TemplateResponse(BaseModel):
    id: int
    name: str
    content: str
    trigger_status: Optional[str] = None
    include_pdf: bool
    send_whatsapp: bool
    send_email: bool

    class Config:
        from_attributes = True


class TemplatePreview(BaseModel):
    order_id: int


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1)
    base_price: float = Field(0, ge=0)


class ServiceUpdate(BaseModel):
    name: Optional[str] = None
    base_price: Optional[float] = Field(None, ge=0)


class ServiceResponse(BaseModel):
    id: int
    name: str
    base_price: float
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================================
# SUPPLIERS & STOCK
# ============================================================================


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def empty_email(cls, v):
        return _blank_to_none(v)


class SupplierResponse(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class PartInquiryCreate(BaseModel):
    supplier_ids: list[int] = Field(..., min_length=1)
    part_description: str = Field(..., min_length=1)
    vehicle_info: Optional[str] = None
    order_id: Optional[int] = None


class StockItemCreate(BaseModel):
    name: str = Field(..., min_length=1)
    sku: Optional[str] = None
    category: Optional[str] = None
    quantity: float = Field(0, ge=0)
    min_quantity: float = Field(0, ge=0)
    cost_price: float = 0
    sale_price: float = 0
    supplier_id: Optional[int] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class StockItemUpdate(BaseModel):
    name: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    min_quantity: Optional[float] = Field(None, ge=0)
    cost_price: Optional[float] = None
    sale_price: Optional[float] = None
    supplier_id: Optional[int] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class StockMovementCreate(BaseModel):
    item_id: int
    type: MovementType
    quantity: float = Field(..., gt=0)
    notes: Optional[str] = None
    order_id: Optional[int] = None


# ============================================================================
# WORKSHOP CONFIG
# ============================================================================


class WorkshopConfigUpdate(BaseModel):
    workshop_name: Optional[str] = None
    footer_text: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    whatsapp: Optional[str] = None
    instagram: Optional[str] = None
    business_hours: Optional[dict] = None
    tax_percentage: Optional[float] = Field(None, ge=0, le=100)
    income_include_parts: Optional[bool] = None
    parts_profit_percentage: Optional[float] = Field(None, ge=0)
    reminder_enabled: Optional[bool] = None
    reminder_time: Optional[str] = Field(None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    timezone: Optional[str] = None
    messages_enabled: Optional[bool] = None
    client_portal_language: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = Field(None, gt=0, lt=65536)
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: Optional[bool] = None

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v):
        if v is None or v == "UTC":
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone '{v}'") from e
        return v


class SmtpTestRequest(BaseModel):
    host: str
    port: int = 587
    user: str
    password: Optional[str] = None  # Falls back to the stored password
    use_tls: bool = True
    send_to: Optional[EmailStr] = None


# ============================================================================
# SUPER ADMIN
# ============================================================================


class WorkshopCreate(BaseModel):
    slug: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class WorkshopUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None
    environment: Optional[Literal["prod", "dev"]] = None
    enabled_modules: Optional[list[str]] = None


class AdminPasswordReset(BaseModel):
    password: str = Field(..., min_length=6)


# ============================================================================
# USERS & ROLES
# ============================================================================


RESERVED_USERNAMES = ("admin", "superuser", "superadmin")


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6)
    role_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("username")
    @classmethod
    def not_reserved(cls, v):
        v = v.strip()
        if v.lower() in RESERVED_USERNAMES:
            raise ValueError("Username is reserved")
        return v


class UserUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=255)
    password: Optional[str] = Field(None, min_length=6)
    role_id: Optional[int] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("username")
    @classmethod
    def not_reserved(cls, v):
        if v is None:
            return v
        v = v.strip()
        if v.lower() in RESERVED_USERNAMES:
            raise ValueError("Username is reserved")
        return v


class UserResponse(BaseModel):
    id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role_id: Optional[int] = None
    role_name: Optional[str] = None


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    permissions: list[str] = []


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    permissions: Optional[list[str]] = None


class RoleResponse(BaseModel):
    id: int
    name: str
    permissions: list[str] = []

    class Config:
        from_attributes = True
