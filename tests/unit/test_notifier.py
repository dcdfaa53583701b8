import asyncio
from unittest.mock import MagicMock

from storefront.notifications.notifier import Notifier, build_order_summary, send_order_confirmation
from storefront.orders.models import Order

ROW = {
    "id": "ord-1",
    "payment_reference": "pi_R1",
    "customer_name": "Jane Doe",
    "customer_email": "jane@example.com",
    "shipping_address": {"address": "1 Main St", "city": "Austin", "state": "TX", "zipCode": "73301"},
    "subtotal_amount": 4000,
    "shipping_amount": 999,
    "tax_amount": 320,
    "total_amount": 5319,
    "currency": "usd",
    "status": "processing",
    "order_items": [{"product_id": "P1", "product_name": "Hoodie", "quantity": 2, "unit_price": 2000}],
}

def test_build_order_summary_matches_email_contract():
    payload = build_order_summary(Order.from_row(ROW))
    assert payload == {
        "orderNumber": "ord-1",
        "customerName": "Jane Doe",
        "customerEmail": "jane@example.com",
        "items": [{"name": "Hoodie", "quantity": 2, "price": 20.0}],
        "subtotal": 40.0,
        "shipping": 9.99,
        "tax": 3.2,
        "total": 53.19,
        "shippingAddress": {"address": "1 Main St", "city": "Austin", "state": "TX", "zipCode": "73301"},
    }

def test_notify_is_detached_and_drained():
    sent = []
    notifier = Notifier(enabled=True, sender=lambda payload, name: sent.append((name, payload)))

    async def scenario():
        notifier.notify(Order.from_row(ROW))
        assert notifier.pending == 1
        await notifier.drain()

    asyncio.run(scenario())
    assert sent[0][0] == "send-order-confirmation"
    assert sent[0][1]["orderNumber"] == "ord-1"

def test_notify_failure_is_logged_not_raised(caplog):
    def boom(payload, name):
        raise RuntimeError("smtp down")

    notifier = Notifier(enabled=True, sender=boom)

    async def scenario():
        notifier.notify(Order.from_row(ROW))
        await notifier.drain()

    asyncio.run(scenario())
    assert "notifications.notify failed" in caplog.text

def test_disabled_notifier_sends_nothing():
    sender = MagicMock()
    notifier = Notifier(enabled=False, sender=sender)

    async def scenario():
        notifier.notify(Order.from_row(ROW))
        await notifier.drain()

    asyncio.run(scenario())
    sender.assert_not_called()

def test_send_order_confirmation_invokes_edge_function(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: client)
    send_order_confirmation({"orderNumber": "ord-1"}, "send-order-confirmation")
    client.functions.invoke.assert_called_once_with(
        "send-order-confirmation", invoke_options={"body": {"orderNumber": "ord-1"}}
    )
