"""Tests for the work order routes, delivery automation and reminder endpoints."""

from datetime import datetime, timedelta

import pytest

from mechhub.models import Order, ServiceCatalog, ServiceInterval, WorkshopConfig
from mechhub.services.reminders import sweep_all_tenants


@pytest.fixture
def new_order(client, admin_headers):
    created = client.post(
        "/api/demo/clients",
        json={
            "first_name": "Juan",
            "last_name": "Pérez",
            "email": "juan@example.com",
            "phone": "1122334455",
            "vehicle": {"plate": "AC456DE", "brand": "Toyota", "model": "Corolla", "km": 80000},
        },
        headers=admin_headers,
    ).json()
    response = client.post(
        "/api/demo/orders",
        json={
            "client_id": created["id"],
            "vehicle_id": created["vehicle_id"],
            "description": "Service de 80.000 km",
            "items": [
                {"description": "Cambio de aceite", "labor_price": 100, "parts_price": 50},
                {"description": "Filtro de aire", "labor_price": 20, "parts_price": 30},
            ],
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    return response.json()


class TestCreateOrder:
    """Tests for POST /orders."""

    def test_creates_items_history_and_catalog(self, client, db, admin_headers, new_order):
        data = client.get(f"/api/demo/orders/{new_order['id']}", headers=admin_headers).json()

        assert data["status"] == "pending"
        assert data["order_total"] == 200
        assert [i["description"] for i in data["items"]] == ["Cambio de aceite", "Filtro de aire"]
        assert data["history"][0]["status"] == "pending"
        assert new_order["share_token"]
        names = {s.name for s in db.query(ServiceCatalog).all()}
        assert {"Cambio de aceite", "Filtro de aire"} <= names

    def test_vehicle_of_other_client_is_400(self, client, admin_headers, make_order, new_order):
        other = make_order(plate="ZZ999ZZ")
        order = client.get(f"/api/demo/orders/{new_order['id']}", headers=admin_headers).json()
        response = client.post(
            "/api/demo/orders",
            json={"client_id": order["client_id"], "vehicle_id": other.vehicle_id, "items": []},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_unknown_client_is_404(self, client, admin_headers):
        response = client.post("/api/demo/orders", json={"client_id": 99, "vehicle_id": 99}, headers=admin_headers)
        assert response.status_code == 404

    def test_pending_template_is_emailed(self, fake_smtp, smtp_configured, new_order):
        assert len(fake_smtp.sent) == 1
        assert fake_smtp.sent[0]["to"] == ["juan@example.com"]

    def test_filter_by_status(self, client, admin_headers, new_order, make_order):
        make_order(plate="ZZ999ZZ", status="ready")
        rows = client.get("/api/demo/orders", params={"status": "ready"}, headers=admin_headers).json()
        assert [r["plate"] for r in rows] == ["ZZ999ZZ"]


class TestDelivery:
    """Tests for PUT /orders/{id}/status when the order is delivered."""

    def test_delivery_settles_payment_and_schedules_reminder(self, client, db, admin_headers, new_order):
        response = client.put(
            f"/api/demo/orders/{new_order['id']}/status",
            json={"status": "delivered", "reminder_days": 30},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["payment_status"] == "paid"
        assert data["payment_amount"] == 200
        delivered_at = datetime.fromisoformat(data["delivered_at"])
        reminder_at = datetime.fromisoformat(data["reminder_at"])
        assert reminder_at.date() == delivered_at.date() + timedelta(days=30)
        assert (reminder_at.hour, reminder_at.minute) == (9, 0)

        intervals = db.query(ServiceInterval).filter(ServiceInterval.vehicle_id == db.get(Order, new_order["id"]).vehicle_id)
        assert {i.service_description for i in intervals} == {"Cambio de aceite", "Filtro de aire"}

    def test_parts_settings_change_amount(self, client, db, admin_headers, new_order):
        workshop_config = db.query(WorkshopConfig).first()
        workshop_config.parts_profit_percentage = 50
        db.commit()

        data = client.put(
            f"/api/demo/orders/{new_order['id']}/status", json={"status": "delivered"}, headers=admin_headers
        ).json()
        assert data["payment_amount"] == 160
        assert data["reminder_at"] is None

    def test_paid_order_keeps_amount(self, client, admin_headers, new_order):
        url = f"/api/demo/orders/{new_order['id']}"
        client.put(f"{url}/payment", json={"payment_status": "partial", "payment_amount": 75}, headers=admin_headers)

        data = client.put(f"{url}/status", json={"status": "delivered"}, headers=admin_headers).json()
        assert data["payment_status"] == "partial"
        assert data["payment_amount"] == 75

    def test_delivered_template_has_pdf(self, client, admin_headers, fake_smtp, smtp_configured, new_order):
        client.put(f"/api/demo/orders/{new_order['id']}/status", json={"status": "delivered"}, headers=admin_headers)

        assert len(fake_smtp.sent) == 2
        assert f'filename="orden_{new_order["id"]}.pdf"' in fake_smtp.sent[1]["message"]

    def test_smtp_failure_does_not_break_status_change(self, client, admin_headers, fake_smtp, smtp_configured, new_order):
        fake_smtp.fail = True
        response = client.put(
            f"/api/demo/orders/{new_order['id']}/status", json={"status": "ready"}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_invalid_status_is_422(self, client, admin_headers, new_order):
        response = client.put(
            f"/api/demo/orders/{new_order['id']}/status", json={"status": "lost"}, headers=admin_headers
        )
        assert response.status_code == 422


class TestBudget:
    """Tests for POST /orders/{id}/budget."""

    def test_budget_computes_tax_and_quotes(self, client, admin_headers, new_order):
        response = client.post(
            f"/api/demo/orders/{new_order['id']}/budget",
            json={"items": [{"description": "Pastillas de freno", "qty": 2, "price": 50}]},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.json() == {"id": response.json()["id"], "subtotal": 100, "tax": 21, "total": 121}
        order = client.get(f"/api/demo/orders/{new_order['id']}", headers=admin_headers).json()
        assert order["status"] == "quoted"
        assert order["budget"]["total"] == 121


class TestReminderEndpoints:
    """Tests for the per-order reminder endpoints."""

    def _deliver(self, client, headers, order_id, days=30):
        client.put(
            f"/api/demo/orders/{order_id}/status",
            json={"status": "delivered", "reminder_days": days},
            headers=headers,
        )

    def test_mark_handled_once(self, client, admin_headers, new_order):
        self._deliver(client, admin_headers, new_order["id"])
        url = f"/api/demo/orders/{new_order['id']}/reminder-status"

        first = client.put(url, json={"status": "skipped"}, headers=admin_headers)
        assert first.status_code == 200
        assert first.json()["reminder_status"] == "skipped"
        assert client.put(url, json={"status": "sent"}, headers=admin_headers).status_code == 409

    def test_reschedule_resets_to_pending(self, client, admin_headers, new_order):
        self._deliver(client, admin_headers, new_order["id"])
        base = f"/api/demo/orders/{new_order['id']}"
        client.put(f"{base}/reminder-status", json={"status": "sent"}, headers=admin_headers)

        data = client.put(f"{base}/reminder", json={"reminder_at": "2030-01-15T10:30:00"}, headers=admin_headers).json()
        assert data["reminder_status"] == "pending"
        assert data["reminder_at"] == "2030-01-15T10:30:00"

    def test_reschedule_needs_a_date(self, client, admin_headers, new_order):
        response = client.put(f"/api/demo/orders/{new_order['id']}/reminder", json={}, headers=admin_headers)
        assert response.status_code == 400

    def test_redelivery_keeps_sent_reminder(
        self, client, db, registry, admin_headers, fake_smtp, smtp_configured, new_order
    ):
        base = f"/api/demo/orders/{new_order['id']}"
        self._deliver(client, admin_headers, new_order["id"])
        client.put(f"{base}/reminder", json={"reminder_at": "2024-01-15T09:00:00"}, headers=admin_headers)
        assert sweep_all_tenants(registry)[0]["sent"] == 1

        client.put(f"{base}/status", json={"status": "ready"}, headers=admin_headers)
        self._deliver(client, admin_headers, new_order["id"], days=60)

        db.expire_all()
        order = db.get(Order, new_order["id"])
        assert order.reminder_status == "sent"
        assert order.reminder_at == datetime(2024, 1, 15, 9, 0)
        assert sweep_all_tenants(registry)[0]["due"] == 0

    def test_redelivery_reschedules_pending_reminder(self, client, db, admin_headers, new_order):
        base = f"/api/demo/orders/{new_order['id']}"
        self._deliver(client, admin_headers, new_order["id"], days=30)
        client.put(f"{base}/status", json={"status": "ready"}, headers=admin_headers)
        self._deliver(client, admin_headers, new_order["id"], days=60)

        db.expire_all()
        order = db.get(Order, new_order["id"])
        assert order.reminder_status == "pending"
        assert (order.reminder_at.date() - order.delivered_at.date()).days == 60

    def test_send_now(self, client, admin_headers, fake_smtp, smtp_configured, new_order):
        self._deliver(client, admin_headers, new_order["id"])
        sent_before = len(fake_smtp.sent)

        response = client.post(f"/api/demo/orders/{new_order['id']}/reminder/send", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["reminder_status"] == "sent"
        assert len(fake_smtp.sent) == sent_before + 1

    def test_send_now_transport_failure_is_502(self, client, db, admin_headers, fake_smtp, smtp_configured, new_order):
        self._deliver(client, admin_headers, new_order["id"])
        fake_smtp.fail = True

        response = client.post(f"/api/demo/orders/{new_order['id']}/reminder/send", headers=admin_headers)

        assert response.status_code == 502
        db.expire_all()
        assert db.get(Order, new_order["id"]).reminder_status == "pending"

    def test_reminders_tab(self, client, admin_headers, make_order):
        make_order(plate="AA111AA", status="delivered", reminder_at=datetime.utcnow() - timedelta(days=3))
        make_order(plate="BB222BB", status="delivered", reminder_at=datetime.utcnow() + timedelta(days=3))

        today = client.get("/api/demo/reminders", params={"tab": "today"}, headers=admin_headers).json()
        upcoming = client.get("/api/demo/reminders", params={"tab": "upcoming"}, headers=admin_headers).json()
        assert [r["plate"] for r in today] == ["AA111AA"]
        assert [r["plate"] for r in upcoming] == ["BB222BB"]


class TestManualTemplate:
    """Tests for POST /orders/send-manual-template."""

    def test_returns_message_and_whatsapp_link(self, client, admin_headers, new_order):
        templates = client.get("/api/demo/templates", headers=admin_headers).json()
        ready = next(t for t in templates if t["trigger_status"] == "ready")

        data = client.post(
            "/api/demo/orders/send-manual-template",
            json={"order_id": new_order["id"], "template_id": ready["id"]},
            headers=admin_headers,
        ).json()

        assert "Toyota Corolla" in data["message"]
        assert data["whatsapp_link"].startswith("https://wa.me/1122334455?text=")
        assert data["email_sent"] is False
