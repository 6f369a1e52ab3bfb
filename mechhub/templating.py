"""
Message template rendering

Templates are written by each workshop with [token] or {token} placeholders,
in Spanish or English. Substitution works on a plain value map; the alias
table below keeps both spellings of a token available.
"""

import html
import re
from typing import Any, Optional
from urllib.parse import quote

from sqlalchemy.orm import Session

from . import config
from .models import Order, WorkshopConfig

# English -> Spanish
TOKEN_ALIASES = {
    "nickname": "apodo",
    "workshop": "taller",
    "vehicle": "vehiculo",
    "client": "cliente",
    "services": "servicios",
    "appointment_date": "turno_fecha",
    "order_id": "orden_id",
    "contact_data": "datos_contacto_taller",
    "user": "usuario",
    "total_amount": "total",
    "supplier": "proveedor",
    "part": "repuesto",
    "link": "enlace",
}

LINK_TOKENS = {"link", "enlace"}

TOKEN_PATTERN = re.compile(r"[\[{]([A-Za-z0-9_]+)[\]}]")


def expand_aliases(values: dict[str, Any]) -> dict[str, Any]:
    """Return a lower-cased copy of values with the missing side of each alias pair filled in"""
    expanded = {str(key).lower(): value for key, value in values.items()}
    for english, spanish in TOKEN_ALIASES.items():
        if spanish in expanded and english not in expanded:
            expanded[english] = expanded[spanish]
        elif english in expanded and spanish not in expanded:
            expanded[spanish] = expanded[english]
    return expanded


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def render_template(content: Optional[str], values: dict[str, Any]) -> str:
    """Replace every known [token] / {token} (case-insensitive). Unknown tokens are kept."""
    if not content:
        return ""
    expanded = expand_aliases(values)

    def replace(match: re.Match) -> str:
        key = match.group(1).lower()
        if key not in expanded:
            return match.group(0)
        return _as_text(expanded[key])

    return TOKEN_PATTERN.sub(replace, content)


def render_html(content: Optional[str], values: dict[str, Any]) -> str:
    """Render a template as an HTML email body"""
    if not content:
        return ""
    expanded = expand_aliases(values)

    parts = []
    position = 0
    for match in TOKEN_PATTERN.finditer(content):
        parts.append(html.escape(content[position : match.start()], quote=True))
        key = match.group(1).lower()
        if key not in expanded:
            parts.append(html.escape(match.group(0), quote=True))
        elif key in LINK_TOKENS and expanded[key]:
            url = html.escape(_as_text(expanded[key]), quote=True)
            parts.append(f'<a href="{url}">{url}</a>')
        else:
            parts.append(html.escape(_as_text(expanded[key]), quote=True))
        position = match.end()
    parts.append(html.escape(content[position:], quote=True))

    body = "".join(parts).replace("\r\n", "\n").replace("\n", "<br>")
    return f'<div style="font-family: Arial, sans-serif; line-height: 1.6;">{body}</div>'


def order_link(slug: str, order: Order) -> str:
    return f"{config.SITE_URL}/{slug}/o/{order.share_token}"


def workshop_contact_data(workshop_config: Optional[WorkshopConfig]) -> str:
    if not workshop_config:
        return ""
    lines = []
    if workshop_config.address and workshop_config.address != "-":
        lines.append(f"Dirección: {workshop_config.address}")
    if workshop_config.phone and workshop_config.phone != "-":
        lines.append(f"Teléfono: {workshop_config.phone}")
    if workshop_config.email and workshop_config.email != "-":
        lines.append(f"Email: {workshop_config.email}")
    return "\n".join(lines)


def build_order_context(
    db: Session, order: Order, slug: str, user_name: Optional[str] = None
) -> dict[str, Any]:
    """Standard substitution map for messages about an order"""
    workshop_config = db.query(WorkshopConfig).first()
    client = order.client
    vehicle = order.vehicle

    nickname = None
    if client:
        nickname = client.nickname or client.first_name
    appointment = order.appointment_date.strftime("%d/%m/%Y %H:%M") if order.appointment_date else ""

    return expand_aliases(
        {
            "nickname": nickname or "Cliente",
            "client": client.full_name if client else "",
            "vehicle": vehicle.display_name if vehicle else "",
            "plate": vehicle.plate if vehicle else "",
            "km": vehicle.km if vehicle and vehicle.km is not None else "",
            "workshop": (workshop_config.workshop_name if workshop_config else None)
            or "Nuestro Taller",
            "order_id": order.id,
            "link": order_link(slug, order),
            "services": ", ".join(item.description for item in order.items),
            "total_amount": f"{order.total:.2f}",
            "appointment_date": appointment,
            "contact_data": workshop_contact_data(workshop_config),
            "user": user_name or "",
        }
    )


def whatsapp_link(phone: Optional[str], message: str) -> Optional[str]:
    """wa.me click-to-chat link, or None when the client has no usable phone"""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None
    return f"https://wa.me/{digits}?text={quote(message)}"
