from unittest.mock import MagicMock

import stripe

from storefront.payments import stripe_client

def test_require_stripe_disables_sdk_retries(monkeypatch):
    monkeypatch.setattr("storefront.config.STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(stripe, "max_network_retries", 2)
    mod = stripe_client.require_stripe()
    assert mod is stripe
    assert stripe.api_key == "sk_test_123"
    assert stripe.max_network_retries == 0

def test_create_payment_intent_params(monkeypatch):
    create = MagicMock(return_value={"id": "pi_1", "client_secret": "s", "amount": 4000})
    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    monkeypatch.setattr(stripe_client, "require_stripe", lambda: stripe)

    intent = stripe_client.create_payment_intent(amount=4000, currency="usd", metadata={"k": "v"})
    assert intent["id"] == "pi_1"
    kwargs = create.call_args.kwargs
    assert kwargs["amount"] == 4000
    assert kwargs["automatic_payment_methods"] == {"enabled": True, "allow_redirects": "never"}
    assert "idempotency_key" not in kwargs

def test_confirm_payment_intent_passes_idempotency_key(monkeypatch):
    confirm = MagicMock(return_value={"id": "pi_1", "status": "succeeded"})
    monkeypatch.setattr(stripe.PaymentIntent, "confirm", confirm)
    monkeypatch.setattr(stripe_client, "require_stripe", lambda: stripe)

    stripe_client.confirm_payment_intent("pi_1", payment_method="pm_x", idempotency_key="confirm-pi_1-pm_x")
    confirm.assert_called_once_with("pi_1", payment_method="pm_x", idempotency_key="confirm-pi_1-pm_x")
