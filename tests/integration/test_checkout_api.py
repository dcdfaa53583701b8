import pytest
from fastapi.testclient import TestClient

from conftest import CUSTOMER, ZERO_FEES, P1, P2
from storefront.app_setup.factory import create_app
from storefront.checkout.sessions import CheckoutSessionRegistry

CATALOG = {"P1": P1, "P2": P2}

@pytest.fixture
def app(monkeypatch, fake_stripe, fake_orders, notifier):
    monkeypatch.setattr("storefront.payments.catalog.get_product", lambda product_id: CATALOG.get(product_id))
    app = create_app()
    app.state.checkout_sessions = CheckoutSessionRegistry(policy=ZERO_FEES, notifier=notifier, verify_prices=False)
    return app

@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c

def _new_session(client) -> str:
    res = client.post("/api/v1/checkout/sessions")
    assert res.status_code == 201
    assert res.json()["state"] == "idle"
    return res.json()["session_id"]

def test_full_checkout_flow(client, fake_stripe, fake_orders, notifier):
    sid = _new_session(client)
    fake_stripe.next_ids.append("R1")

    res = client.post(f"/api/v1/checkout/sessions/{sid}/cart/items", json={"product_id": "P1", "quantity": 2})
    assert res.status_code == 200
    assert res.json()["cart"]["subtotal"] == 4000

    res = client.post(f"/api/v1/checkout/sessions/{sid}/begin")
    assert res.json()["state"] == "intent_ready"
    assert res.json()["intent"]["amount"] == 4000

    res = client.post(
        f"/api/v1/checkout/sessions/{sid}/submit",
        json={"customer": CUSTOMER, "payment": {"payment_method": "pm_card_visa"}},
    )
    body = res.json()
    assert res.status_code == 200
    assert body["state"] == "completed"
    assert body["order"]["payment_reference"] == "R1"
    assert body["cart"]["lines"] == []
    assert len(notifier.sent) == 1

    assert client.get(f"/api/v1/checkout/sessions/{sid}").json()["state"] == "completed"

def test_client_amount_is_ignored(client, fake_stripe):
    sid = _new_session(client)
    client.post(f"/api/v1/checkout/sessions/{sid}/cart/items", json={"product_id": "P2", "quantity": 1, "unit_price": 1})
    res = client.post(f"/api/v1/checkout/sessions/{sid}/begin")
    assert res.json()["intent"]["amount"] == 1500

def test_forbidden_transition_is_409(client):
    sid = _new_session(client)
    res = client.post(f"/api/v1/checkout/sessions/{sid}/resolve")
    assert res.status_code == 409
    assert res.json()["code"] == "invalid_transition"
    assert res.json()["detail"]

def test_cart_locked_after_ambiguous_payment(client, fake_stripe):
    sid = _new_session(client)
    client.post(f"/api/v1/checkout/sessions/{sid}/cart/items", json={"product_id": "P1"})
    client.post(f"/api/v1/checkout/sessions/{sid}/begin")
    fake_stripe.confirm_result = "processing"
    res = client.post(
        f"/api/v1/checkout/sessions/{sid}/submit",
        json={"customer": CUSTOMER, "payment": {"payment_method": "pm_card_visa"}},
    )
    assert res.json()["state"] == "payment_ambiguous"

    res = client.post(f"/api/v1/checkout/sessions/{sid}/cart/items", json={"product_id": "P2"})
    assert res.status_code == 409
    assert res.json()["code"] == "cart_locked"

    res = client.post(f"/api/v1/checkout/sessions/{sid}/cancel")
    assert res.status_code == 409

def test_order_failure_payload_exposes_reference(client, fake_stripe, fake_orders):
    from storefront.orders.repository import OrderStoreError

    sid = _new_session(client)
    fake_stripe.next_ids.append("R2")
    client.post(f"/api/v1/checkout/sessions/{sid}/cart/items", json={"product_id": "P1", "quantity": 2})
    client.post(f"/api/v1/checkout/sessions/{sid}/begin")
    fake_orders.fail("insert_order", OrderStoreError("invalid input syntax", "22P02"))

    res = client.post(
        f"/api/v1/checkout/sessions/{sid}/submit",
        json={"customer": CUSTOMER, "payment": {"payment_method": "pm_card_visa"}},
    )
    body = res.json()
    assert body["state"] == "order_failed"
    assert body["error"]["payment_reference"] == "R2"
    assert body["cart"]["item_count"] == 2

def test_cart_item_errors(client):
    sid = _new_session(client)
    assert client.post(f"/api/v1/checkout/sessions/{sid}/cart/items", json={"product_id": "NOPE"}).status_code == 404
    assert client.post(f"/api/v1/checkout/sessions/{sid}/cart/items", json={"product_id": "P1", "quantity": 0}).status_code == 400
    assert client.patch(f"/api/v1/checkout/sessions/{sid}/cart/items/P9-default-default", json={"quantity": 2}).status_code == 404

def test_cart_patch_and_delete(client):
    sid = _new_session(client)
    client.post(f"/api/v1/checkout/sessions/{sid}/cart/items", json={"product_id": "P1", "size": "M"})
    res = client.patch(f"/api/v1/checkout/sessions/{sid}/cart/items/P1-M-default", json={"quantity": 3})
    assert res.json()["cart"]["item_count"] == 3
    res = client.delete(f"/api/v1/checkout/sessions/{sid}/cart/items/P1-M-default")
    assert res.json()["cart"]["lines"] == []

def test_unknown_session_is_404(client):
    res = client.get("/api/v1/checkout/sessions/does-not-exist")
    assert res.status_code == 404
    assert res.json()["code"] == "session_not_found"

def test_health_endpoints(client):
    assert client.get("/health").json()["ok"] is True
    info = client.get("/health/supabase").json()
    assert set(info["tables"]) == {"orders", "order_items", "products", "tax_rates"}
    assert client.get("/health/rate-limit").json()["enabled"] is False

def test_session_creation_is_rate_limited(client, monkeypatch):
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")
    for _ in range(20):
        assert client.post("/api/v1/checkout/sessions").status_code == 201
    assert client.post("/api/v1/checkout/sessions").status_code == 429
