"""Tests for suppliers and part inquiries."""

from mechhub.models import AuditLog, PartInquiry


def _supplier(client, headers, name, email=None):
    response = client.post("/api/demo/suppliers", json={"name": name, "email": email}, headers=headers)
    assert response.status_code == 201
    return response.json()


class TestSuppliers:
    """Tests for supplier CRUD."""

    def test_crud(self, client, admin_headers):
        created = _supplier(client, admin_headers, "Repuestos Sur", "ventas@repuestos-sur.com.ar")
        url = f"/api/demo/suppliers/{created['id']}"

        updated = client.put(url, json={"name": "Repuestos del Sur", "email": ""}, headers=admin_headers).json()
        assert updated["name"] == "Repuestos del Sur"
        assert updated["email"] is None

        assert client.delete(url, headers=admin_headers).status_code == 200
        assert client.get("/api/demo/suppliers", headers=admin_headers).json() == []

    def test_requires_permission(self, client, token_for):
        headers = token_for(role="technician", permissions=["orders"])
        assert client.get("/api/demo/suppliers", headers=headers).status_code == 403


class TestPartInquiry:
    """Tests for POST /suppliers/inquiry."""

    def test_emails_suppliers_with_address(self, client, db, admin_headers, make_order, fake_smtp, smtp_configured):
        order = make_order()
        with_email = _supplier(client, admin_headers, "Repuestos Sur", "ventas@repuestos-sur.com.ar")
        without_email = _supplier(client, admin_headers, "Casa Pérez")

        response = client.post(
            "/api/demo/suppliers/inquiry",
            json={
                "supplier_ids": [with_email["id"], without_email["id"]],
                "part_description": "Bomba de agua",
                "order_id": order.id,
            },
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        statuses = {r["supplier"]: r["status"] for r in data["results"]}
        assert statuses == {"Repuestos Sur": "sent", "Casa Pérez": "no_email"}
        assert data["failed"] == []

        assert len(fake_smtp.sent) == 1
        assert fake_smtp.sent[0]["to"] == ["ventas@repuestos-sur.com.ar"]
        assert f"Subject: Consulta de Repuesto - Taller Demo (Orden #{order.id})" in fake_smtp.sent[0]["message"]

        inquiry = db.get(PartInquiry, data["id"])
        assert inquiry.vehicle_info == "Ford Fiesta (AB123CD)"
        assert sorted(inquiry.supplier_names) == ["Casa Pérez", "Repuestos Sur"]
        assert db.query(AuditLog).filter(AuditLog.action == "PART_INQUIRY").count() == 1

    def test_failed_delivery_is_reported(self, client, admin_headers, fake_smtp, smtp_configured):
        fake_smtp.fail = True
        supplier = _supplier(client, admin_headers, "Repuestos Sur", "ventas@repuestos-sur.com.ar")

        data = client.post(
            "/api/demo/suppliers/inquiry",
            json={"supplier_ids": [supplier["id"]], "part_description": "Embrague", "vehicle_info": "VW Gol"},
            headers=admin_headers,
        ).json()

        assert data["results"][0]["status"] == "failed"
        assert len(data["failed"]) == 1

    def test_without_smtp_settings(self, client, admin_headers, fake_smtp):
        supplier = _supplier(client, admin_headers, "Repuestos Sur", "ventas@repuestos-sur.com.ar")

        data = client.post(
            "/api/demo/suppliers/inquiry",
            json={"supplier_ids": [supplier["id"]], "part_description": "Embrague", "vehicle_info": "VW Gol"},
            headers=admin_headers,
        ).json()

        assert data["results"][0]["status"] == "smtp_not_configured"
        assert fake_smtp.sent == []

    def test_vehicle_info_required_without_order(self, client, admin_headers):
        supplier = _supplier(client, admin_headers, "Repuestos Sur")
        response = client.post(
            "/api/demo/suppliers/inquiry",
            json={"supplier_ids": [supplier["id"]], "part_description": "Embrague"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_unknown_suppliers_is_404(self, client, admin_headers):
        response = client.post(
            "/api/demo/suppliers/inquiry",
            json={"supplier_ids": [7], "part_description": "Embrague", "vehicle_info": "VW Gol"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_inquiries_by_order(self, client, admin_headers, make_order):
        order = make_order()
        supplier = _supplier(client, admin_headers, "Repuestos Sur")
        client.post(
            "/api/demo/suppliers/inquiry",
            json={"supplier_ids": [supplier["id"]], "part_description": "Bomba de agua", "order_id": order.id},
            headers=admin_headers,
        )

        rows = client.get(f"/api/demo/suppliers/inquiries/order/{order.id}", headers=admin_headers).json()
        assert [r["part_description"] for r in rows] == ["Bomba de agua"]
        assert rows[0]["supplier_names"] == ["Repuestos Sur"]
