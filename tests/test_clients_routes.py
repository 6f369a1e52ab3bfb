"""Tests for the client and vehicle routes."""

from mechhub.models import AuditLog, Vehicle, VehicleKmHistory

NEW_CLIENT = {
    "first_name": "Ana",
    "last_name": "Gómez",
    "phone": "11 5555 0000",
    "email": "",
    "vehicle": {"plate": "ab 123 cd", "brand": "Fiat", "model": "Cronos", "km": 12000},
}


class TestClients:
    """Tests for /api/{slug}/clients."""

    def test_create_with_vehicle(self, client, db, admin_headers):
        response = client.post("/api/demo/clients", json=NEW_CLIENT, headers=admin_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["email"] is None
        assert data["vehicle_id"] is not None

        vehicle = db.get(Vehicle, data["vehicle_id"])
        assert vehicle.plate == "AB 123 CD"
        history = db.query(VehicleKmHistory).filter(VehicleKmHistory.vehicle_id == vehicle.id).all()
        assert [h.km for h in history] == [12000]
        assert db.query(AuditLog).filter(AuditLog.action == "CREATE_CLIENT").count() == 1

    def test_search(self, client, admin_headers):
        client.post("/api/demo/clients", json={**NEW_CLIENT, "vehicle": None}, headers=admin_headers)
        client.post(
            "/api/demo/clients", json={"first_name": "Luis", "last_name": "Ruiz"}, headers=admin_headers
        )

        results = client.get("/api/demo/clients", params={"search": "gómez"}, headers=admin_headers).json()
        assert [c["first_name"] for c in results] == ["Ana"]

    def test_detail_includes_vehicles_and_orders(self, client, admin_headers, make_order):
        order = make_order()
        data = client.get(f"/api/demo/clients/{order.client_id}", headers=admin_headers).json()

        assert [v["plate"] for v in data["vehicles"]] == ["AB123CD"]
        assert data["orders"][0]["id"] == order.id
        assert data["orders"][0]["total"] == 150.0

    def test_update_and_delete(self, client, admin_headers, make_order):
        order = make_order()
        url = f"/api/demo/clients/{order.client_id}"

        updated = client.put(url, json={"nickname": "Juanchi"}, headers=admin_headers).json()
        assert updated["nickname"] == "Juanchi"

        assert client.delete(url, headers=admin_headers).status_code == 200
        assert client.get(url, headers=admin_headers).status_code == 404
        assert client.get(f"/api/demo/orders/{order.id}", headers=admin_headers).status_code == 404

    def test_invalid_email_is_422(self, client, admin_headers):
        response = client.post(
            "/api/demo/clients", json={"first_name": "A", "last_name": "B", "email": "nope"}, headers=admin_headers
        )
        assert response.status_code == 422


class TestVehicles:
    """Tests for /api/{slug}/vehicles."""

    def test_duplicate_plate_is_409(self, client, admin_headers, make_order):
        order = make_order(plate="AA111AA")
        payload = {"client_id": order.client_id, "plate": "aa111aa", "brand": "VW", "model": "Gol"}
        assert client.post("/api/demo/vehicles", json=payload, headers=admin_headers).status_code == 409

    def test_unknown_client_is_404(self, client, admin_headers):
        payload = {"client_id": 999, "plate": "ZZ999ZZ", "brand": "VW", "model": "Gol"}
        assert client.post("/api/demo/vehicles", json=payload, headers=admin_headers).status_code == 404

    def test_km_update_rejects_lower_reading(self, client, admin_headers, make_order):
        order = make_order()
        url = f"/api/demo/vehicles/{order.vehicle_id}/km"

        assert client.put(url, json={"km": 40000}, headers=admin_headers).status_code == 400
        forced = client.put(url, json={"km": 40000, "force": True}, headers=admin_headers)
        assert forced.status_code == 200
        assert forced.json()["km"] == 40000

    def test_km_history(self, client, admin_headers, make_order):
        order = make_order()
        client.put(f"/api/demo/vehicles/{order.vehicle_id}/km", json={"km": 51000}, headers=admin_headers)
        client.put(f"/api/demo/vehicles/{order.vehicle_id}/km", json={"km": 52000}, headers=admin_headers)

        history = client.get(f"/api/demo/vehicles/{order.vehicle_id}/km-history", headers=admin_headers).json()
        assert sorted(h["km"] for h in history) == [51000, 52000]

    def test_list_by_client(self, client, admin_headers, make_order):
        first = make_order(plate="AA111AA")
        make_order(plate="BB222BB")

        rows = client.get("/api/demo/vehicles", params={"client_id": first.client_id}, headers=admin_headers).json()
        assert [r["plate"] for r in rows] == ["AA111AA"]
        assert rows[0]["client_name"] == "Juan Pérez"
