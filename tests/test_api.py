import pytest
from fastapi.testclient import TestClient

from comande import views_orders
from comande.main import app


@pytest.fixture
def client(coordinator):
    # niente "with TestClient": lo startup userebbe il database di default
    app.dependency_overrides[views_orders.get_coordinator] = lambda: coordinator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, **body):
    return client.post("/api/orders", json={"restaurant_id": 1, **body})


def test_health(client):
    assert client.get("/health").text == "OK"


def test_create_and_get(client, line):
    r = _create(client, type="DINE_IN", table_id=1, guest_count=2, items=[line("Salsiccia")])
    assert r.status_code == 201
    order = r.json()["order"]
    assert order["status"] == "DRAFT"
    assert order["extension"]["table_id"] == 1
    assert order["items"][0]["item_name"] == "Salsiccia"

    r = client.get(f"/api/orders/{order['id']}")
    assert r.status_code == 200
    assert r.json()["order"]["order_number"] == order["order_number"]


def test_invalid_payload_is_422(client):
    r = _create(client, type="TAKEAWAY", items=[{"menu_item_id": 1, "quantity": 0, "unit_price": 1}])
    assert r.status_code == 422
    assert r.json()["ok"] is False
    assert r.json()["errors"]


def test_non_object_body_is_422(client):
    r = client.post("/api/orders", json=[1, 2])
    assert r.status_code == 422


def test_missing_order_is_404(client):
    assert client.get("/api/orders/999").status_code == 404
    assert client.patch("/api/orders/999", json={"notes": "x"}).status_code == 404
    assert client.delete("/api/orders/999").status_code == 404
    assert client.post("/api/orders/999/fire").status_code == 404
    assert client.post("/api/orders/999/settle").status_code == 404


def test_fire_validation_error_is_422(client, line, notifier):
    order = _create(client, type="DELIVERY", customer_phone="333", items=[line("Patatine")]).json()["order"]
    r = client.post(f"/api/orders/{order['id']}/fire")
    assert r.status_code == 422
    assert "delivery_address is required for firing DELIVERY" in r.json()["errors"]
    assert notifier.events == []


def test_fire_then_delete_is_409(client, line, notifier):
    order = _create(client, type="TAKEAWAY", items=[line("Panino porchetta")]).json()["order"]
    r = client.post(f"/api/orders/{order['id']}/fire")
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "CONFIRMED"
    assert notifier.names() == ["NEW_KITCHEN_ORDER", "db_change"]
    assert client.delete(f"/api/orders/{order['id']}").status_code == 409


def test_patch_and_delete(client, line):
    order = _create(client, type="DINE_IN", table_id=3, guest_count=4).json()["order"]
    r = client.patch(f"/api/orders/{order['id']}", json={"guest_count": 2, "authorized_by": 9})
    assert r.status_code == 200
    assert r.json()["order"]["extension"]["guest_count"] == 2

    r = client.delete(f"/api/orders/{order['id']}")
    assert r.status_code == 200
    assert r.json()["deleted"] == order["id"]


def test_settle(client, line):
    order = _create(client, type="TAKEAWAY", items=[line("Birra 0.4L", 2)]).json()["order"]
    r = client.post(f"/api/orders/{order['id']}/settle", json={"payment_method": "card"})
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "PAID"
    assert client.post(f"/api/orders/{order['id']}/settle").status_code == 409


def test_create_retries_on_unique_conflict(client, coordinator, monkeypatch):
    from sqlalchemy.exc import IntegrityError
    from comande.errors import TransactionError

    real = coordinator.create_order
    calls = {"n": 0}

    def flaky(data):
        calls["n"] += 1
        if calls["n"] == 1:
            try:
                raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: takeaway_order.token_date, takeaway_order.token_number"))
            except IntegrityError as e:
                raise TransactionError(str(e)) from e
        return real(data)

    monkeypatch.setattr(coordinator, "create_order", flaky)
    r = _create(client, type="TAKEAWAY")
    assert r.status_code == 201
    assert calls["n"] == 2


def test_other_transaction_errors_are_503(client, coordinator, monkeypatch):
    from comande.errors import TransactionError

    def broken(data):
        raise TransactionError("disk I/O error")

    monkeypatch.setattr(coordinator, "create_order", broken)
    assert _create(client, type="TAKEAWAY").status_code == 503


def test_unknown_table_is_404_without_retry(client, coordinator, monkeypatch, line):
    real = coordinator.create_order
    calls = {"n": 0}

    def counted(data):
        calls["n"] += 1
        return real(data)

    monkeypatch.setattr(coordinator, "create_order", counted)
    r = _create(client, type="DINE_IN", table_id=999, guest_count=2, items=[line("Salsiccia")])
    assert r.status_code == 404
    assert calls["n"] == 1


def test_foreign_key_failures_are_not_retried(client, coordinator, monkeypatch):
    real = coordinator.create_order
    calls = {"n": 0}

    def counted(data):
        calls["n"] += 1
        return real(data)

    monkeypatch.setattr(coordinator, "create_order", counted)
    # ristorante inesistente: FK rotta, non collisione di token
    assert _create(client, type="TAKEAWAY", restaurant_id=42).status_code == 503
    assert calls["n"] == 1


def test_takeaway_response_carries_token_display(client):
    order = _create(client, type="TAKEAWAY").json()["order"]
    assert order["extension"]["token_number"] == "T001"
    assert order["token_display"] == "T 0 0 1"


def test_confirm_via_patch_is_409(client):
    order = _create(client, type="DELIVERY").json()["order"]
    r = client.patch(f"/api/orders/{order['id']}", json={"status": "CONFIRMED"})
    assert r.status_code == 409
