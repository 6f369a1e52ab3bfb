"""Shared fixtures: an isolated DATA_DIR per test, a seeded 'demo' workshop, tokens and a fake SMTP server."""

import os
import smtplib
import tempfile
from datetime import datetime

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="mechhub-test-"))
os.environ["REMINDER_WORKER_ENABLED"] = "false"
os.environ["SMTP_ENCRYPTION_KEY"] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from mechhub.auth import create_access_token  # noqa: E402
from mechhub.main import app  # noqa: E402
from mechhub.models import Client, Order, OrderItem, Vehicle, WorkshopConfig  # noqa: E402
from mechhub.tenancy import TenantRegistry, get_registry  # noqa: E402

SLUG = "demo"


class FakeSMTP:
    """Stands in for smtplib.SMTP; records every message"""

    sent = []
    fail = False
    fail_for = set()

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout

    def starttls(self, context=None):
        pass

    def login(self, user, password):
        self.user = user
        self.password = password

    def sendmail(self, sender, recipients, message):
        if FakeSMTP.fail or FakeSMTP.fail_for.intersection(recipients):
            raise smtplib.SMTPServerDisconnected("Connection unexpectedly closed")
        FakeSMTP.sent.append({"from": sender, "to": list(recipients), "message": message, "password": self.password})

    def quit(self):
        pass


@pytest.fixture
def registry(tmp_path):
    registry = TenantRegistry(tmp_path)
    app.dependency_overrides[get_registry] = lambda: registry
    registry.create_tenant(SLUG, "Taller Demo")
    yield registry
    app.dependency_overrides.clear()
    registry.close_all()


@pytest.fixture
def client(registry):
    return TestClient(app)


@pytest.fixture
def db(registry):
    session = registry.session(SLUG)
    yield session
    session.close()


def make_token(slug=SLUG, role="admin", permissions=None, user_id=1, username="admin", **extra):
    payload = {
        "sub": user_id,
        "username": username,
        "slug": slug,
        "role": role,
        "permissions": permissions or [],
    }
    payload.update(extra)
    return create_access_token(payload)


@pytest.fixture
def token_for():
    def _token_for(**kwargs):
        return {"Authorization": f"Bearer {make_token(**kwargs)}"}

    return _token_for


@pytest.fixture
def admin_headers(token_for):
    return token_for()


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail = False
    FakeSMTP.fail_for = set()
    monkeypatch.setattr("mechhub.email_service.smtplib.SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def smtp_configured(db):
    workshop_config = db.query(WorkshopConfig).first()
    workshop_config.smtp_host = "smtp.taller.test"
    workshop_config.smtp_port = 587
    workshop_config.smtp_user = "taller@taller.test"
    workshop_config.smtp_password = "smtp-secret"
    workshop_config.smtp_use_tls = True
    db.commit()
    return workshop_config


@pytest.fixture
def make_order(db):
    """Create a client, vehicle and order directly in the demo tenant"""

    def _make_order(
        plate="AB123CD",
        email="juan@example.com",
        status="pending",
        items=(("Cambio de aceite", 100.0, 50.0),),
        delivered_at=None,
        reminder_at=None,
        reminder_status="pending",
        client=None,
        vehicle=None,
    ):
        if client is None:
            client = Client(first_name="Juan", last_name="Pérez", nickname="Juancho", phone="1122334455", email=email)
            db.add(client)
            db.flush()
        if vehicle is None:
            vehicle = Vehicle(client_id=client.id, plate=plate, brand="Ford", model="Fiesta", km=50000)
            db.add(vehicle)
            db.flush()

        order = Order(
            client_id=client.id,
            vehicle_id=vehicle.id,
            status=status,
            delivered_at=delivered_at,
            reminder_at=reminder_at,
            reminder_status=reminder_status,
            created_at=datetime.utcnow(),
        )
        db.add(order)
        db.flush()
        for description, labor, parts in items:
            db.add(
                OrderItem(
                    order_id=order.id,
                    description=description,
                    labor_price=labor,
                    parts_price=parts,
                    subtotal=labor + parts,
                )
            )
        db.commit()
        db.refresh(order)
        return order

    return _make_order
