"""Tests for the stock inventory routes."""

import pytest

from mechhub.models import AuditLog, StockMovement


@pytest.fixture
def oil_filter(client, admin_headers):
    response = client.post(
        "/api/demo/stock",
        json={"name": "Filtro de aceite", "sku": "FA-100", "category": "filtros", "quantity": 10, "min_quantity": 4},
        headers=admin_headers,
    )
    assert response.status_code == 201
    return response.json()


class TestStockItems:
    """Tests for item CRUD."""

    def test_initial_quantity_records_adjustment(self, client, admin_headers, oil_filter):
        movements = client.get(f"/api/demo/stock/{oil_filter['id']}/movements", headers=admin_headers).json()

        assert len(movements) == 1
        assert movements[0]["type"] == "adjustment"
        assert movements[0]["quantity"] == 10
        assert movements[0]["notes"] == "Stock inicial"

    def test_empty_item_has_no_movements(self, db, client, admin_headers):
        item = client.post("/api/demo/stock", json={"name": "Lámpara H4"}, headers=admin_headers).json()
        assert db.query(StockMovement).filter(StockMovement.item_id == item["id"]).count() == 0
        assert item["low_stock"] is True

    def test_unknown_supplier_is_404(self, client, admin_headers):
        response = client.post("/api/demo/stock", json={"name": "Bujía", "supplier_id": 42}, headers=admin_headers)
        assert response.status_code == 404

    def test_update_keeps_quantity(self, client, admin_headers, oil_filter):
        data = client.put(
            f"/api/demo/stock/{oil_filter['id']}", json={"location": "Estante 3", "name": None}, headers=admin_headers
        ).json()

        assert data["location"] == "Estante 3"
        assert data["name"] == "Filtro de aceite"
        assert data["quantity"] == 10

    def test_search_and_category(self, client, admin_headers, oil_filter):
        client.post("/api/demo/stock", json={"name": "Pastillas", "category": "frenos"}, headers=admin_headers)

        by_sku = client.get("/api/demo/stock", params={"search": "fa-1"}, headers=admin_headers).json()
        by_category = client.get("/api/demo/stock", params={"category": "frenos"}, headers=admin_headers).json()
        assert [i["name"] for i in by_sku] == ["Filtro de aceite"]
        assert [i["name"] for i in by_category] == ["Pastillas"]

    def test_delete(self, client, admin_headers, oil_filter):
        url = f"/api/demo/stock/{oil_filter['id']}"
        assert client.delete(url, headers=admin_headers).status_code == 200
        assert client.get(f"{url}/movements", headers=admin_headers).status_code == 404


class TestMovements:
    """Tests for POST /stock/movement."""

    def _move(self, client, headers, item_id, movement_type, quantity):
        return client.post(
            "/api/demo/stock/movement",
            json={"item_id": item_id, "type": movement_type, "quantity": quantity},
            headers=headers,
        )

    def test_in_and_out(self, client, db, admin_headers, oil_filter):
        assert self._move(client, admin_headers, oil_filter["id"], "in", 5).json()["new_quantity"] == 15
        assert self._move(client, admin_headers, oil_filter["id"], "out", 12).json()["new_quantity"] == 3
        assert self._move(client, admin_headers, oil_filter["id"], "transfer_out", 1).json()["new_quantity"] == 2

        assert db.query(AuditLog).filter(AuditLog.action == "STOCK_MOVEMENT").count() == 3
        movements = client.get(f"/api/demo/stock/{oil_filter['id']}/movements", headers=admin_headers).json()
        assert len(movements) == 4

    def test_low_stock_filter(self, client, admin_headers, oil_filter):
        client.post("/api/demo/stock", json={"name": "Correa", "quantity": 9, "min_quantity": 2}, headers=admin_headers)
        self._move(client, admin_headers, oil_filter["id"], "out", 6)

        rows = client.get("/api/demo/stock", params={"low_stock": True}, headers=admin_headers).json()
        assert [r["name"] for r in rows] == ["Filtro de aceite"]
        assert rows[0]["low_stock"] is True

    def test_quantity_must_be_positive(self, client, admin_headers, oil_filter):
        assert self._move(client, admin_headers, oil_filter["id"], "in", 0).status_code == 422

    def test_unknown_item_is_404(self, client, admin_headers):
        assert self._move(client, admin_headers, 999, "in", 1).status_code == 404


class TestStockPermissions:
    """Reading and editing stock are separate permissions."""

    def test_read_only_user(self, client, token_for, oil_filter):
        headers = token_for(role="technician", permissions=["stock"])

        assert client.get("/api/demo/stock", headers=headers).status_code == 200
        response = client.post(
            "/api/demo/stock/movement", json={"item_id": oil_filter["id"], "type": "in", "quantity": 1}, headers=headers
        )
        assert response.status_code == 403

    def test_editor(self, client, token_for, oil_filter):
        headers = token_for(role="technician", permissions=["stock", "stock.edit"])
        response = client.post(
            "/api/demo/stock/movement", json={"item_id": oil_filter["id"], "type": "in", "quantity": 1}, headers=headers
        )
        assert response.status_code == 200
