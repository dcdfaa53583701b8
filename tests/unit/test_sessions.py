import asyncio
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
import stripe

from conftest import CUSTOMER, ZERO_FEES, P1, P2
from storefront.cart.mirror import CartMirror
from storefront.checkout.errors import CartLockedError, InvalidTransitionError, SessionNotFoundError
from storefront.checkout.sessions import CheckoutSessionRegistry
from storefront.orders.repository import OrderStoreError

CARD = {"payment_method": "pm_card_visa"}

def run(coro):
    return asyncio.run(coro)

class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)

@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)

@pytest.fixture
def mirror(redis_client):
    return CartMirror(redis_client)

def make_registry(notifier, mirror=None, **kwargs):
    return CheckoutSessionRegistry(
        policy=ZERO_FEES,
        notifier=notifier,
        mirror=mirror,
        verify_prices=False,
        lookup_state_tax=False,
        **kwargs,
    )

def test_sessions_are_isolated():
    registry = CheckoutSessionRegistry()
    a = registry.create()
    b = registry.create()
    a.cart.add(P1)
    assert a.id != b.id
    assert b.cart.is_empty
    assert registry.get(a.id) is a
    assert len(registry) == 2

def test_unknown_session_raises():
    with pytest.raises(SessionNotFoundError):
        CheckoutSessionRegistry().get("missing")

def test_session_restored_from_mirror(mirror):
    first = CheckoutSessionRegistry(mirror=mirror)
    session = first.create()
    session.cart.add(P1, size="M", qty=2)

    # Nouveau process: registre vide, même Redis
    restored = CheckoutSessionRegistry(mirror=mirror).get(session.id)
    assert restored.orchestrator.state.value == "idle"
    assert restored.cart.snapshot().lines[0].line_id == "P1-M-default"
    assert restored.cart.item_count == 2

def test_ambiguous_session_stays_frozen_after_restart(mirror, fake_stripe, fake_orders, notifier):
    session = make_registry(notifier, mirror).create()
    session.cart.add(P1, qty=2)
    run(session.orchestrator.begin())
    fake_stripe.confirm_result = stripe.APIConnectionError("connection reset")
    assert run(session.orchestrator.submit(CUSTOMER, CARD))["state"] == "payment_ambiguous"

    restored = make_registry(notifier, mirror).get(session.id)
    assert restored.orchestrator.state.value == "payment_ambiguous"
    assert restored.cart.item_count == 2
    assert restored.view()["error"]["kind"] == "ambiguous"
    with pytest.raises(InvalidTransitionError):
        run(restored.orchestrator.begin())
    with pytest.raises(InvalidTransitionError):
        run(restored.orchestrator.submit(CUSTOMER, CARD))
    with pytest.raises(CartLockedError):
        run(restored.mutate_cart(lambda cart: cart.add(P2)))
    assert len(fake_stripe.confirm_calls) == 1

    # lecture du statut réel: le débit avait eu lieu
    fake_stripe.retrieve_status = "succeeded"
    view = run(restored.orchestrator.resolve_ambiguous())
    assert view["state"] == "completed"
    assert view["order"]["total_amount"] == 4000
    assert len(fake_orders.visible_orders()) == 1
    assert len(fake_stripe.confirm_calls) == 1

def test_confirmation_interrupted_by_restart_is_ambiguous(mirror, fake_stripe, notifier, monkeypatch):
    session = make_registry(notifier, mirror).create()
    session.cart.add(P1)
    run(session.orchestrator.begin())

    left_behind = {}

    def killed_during_confirm(intent_id, **kwargs):
        left_behind.update(mirror.load_checkpoint(session.id))
        raise stripe.APIConnectionError("worker killed")

    monkeypatch.setattr("storefront.payments.stripe_client.confirm_payment_intent", killed_during_confirm)
    run(session.orchestrator.submit(CUSTOMER, CARD))
    assert left_behind["state"] == "payment_pending"

    # Redis tel que laissé par le process arrêté pendant la confirmation
    mirror.save_checkpoint(session.id, left_behind)
    restored = make_registry(notifier, mirror).get(session.id)
    assert restored.orchestrator.state.value == "payment_ambiguous"
    assert restored.view()["error"]["code"] == "payment_interrupted"
    assert not restored.orchestrator.cart_mutable

def test_order_failed_session_stays_terminal_after_restart(mirror, fake_stripe, fake_orders, notifier):
    session = make_registry(notifier, mirror).create()
    session.cart.add(P1)
    fake_stripe.next_ids.append("R7")
    run(session.orchestrator.begin())
    fake_orders.fail("insert_order", OrderStoreError("new row violates check constraint", "23514"))
    assert run(session.orchestrator.submit(CUSTOMER, CARD))["state"] == "order_failed"

    restored = make_registry(notifier, mirror).get(session.id)
    view = restored.view()
    assert view["state"] == "order_failed"
    assert view["terminal"] is True
    assert view["error"]["payment_reference"] == "R7"
    with pytest.raises(InvalidTransitionError):
        run(restored.orchestrator.begin())
    assert len(fake_stripe.confirm_calls) == 1

def test_completed_session_restored_as_completed(mirror, fake_stripe, fake_orders, notifier):
    session = make_registry(notifier, mirror).create()
    session.cart.add(P1)
    run(session.orchestrator.begin())
    order_id = run(session.orchestrator.submit(CUSTOMER, CARD))["order"]["id"]

    restored = make_registry(notifier, mirror).get(session.id)
    assert restored.orchestrator.state.value == "completed"
    assert restored.view()["order"]["id"] == order_id
    assert restored.cart.is_empty

def test_declined_payment_clears_checkpoint(mirror, fake_stripe, notifier):
    session = make_registry(notifier, mirror).create()
    session.cart.add(P1)
    run(session.orchestrator.begin())
    fake_stripe.confirm_result = "requires_payment_method"
    assert run(session.orchestrator.submit(CUSTOMER, CARD))["state"] == "intent_ready"
    assert mirror.load_checkpoint(session.id) is None

    restored = make_registry(notifier, mirror).get(session.id)
    assert restored.orchestrator.state.value == "idle"

def test_unreadable_checkpoint_blocks_restore(redis_client, mirror, notifier):
    session = make_registry(notifier, mirror).create()
    session.cart.add(P1)
    redis_client.set(CartMirror.checkpoint_key(session.id), "{corrupted")

    registry = make_registry(notifier, mirror)
    with pytest.raises(SessionNotFoundError):
        registry.get(session.id)
    assert session.id not in registry

def test_completed_sessions_are_evicted_after_retention(fake_stripe, fake_orders, notifier):
    clock = FakeClock()
    registry = make_registry(notifier, clock=clock, terminal_retention_seconds=60, session_ttl_seconds=3600)
    done = registry.create()
    done.cart.add(P1)
    run(done.orchestrator.begin())
    assert run(done.orchestrator.submit(CUSTOMER, CARD))["state"] == "completed"

    for _ in range(1000):
        registry.create()
    assert done.id in registry

    clock.advance(61)
    registry.create()
    assert done.id not in registry
    assert len(registry) == 1001

def test_abandoned_sessions_expire_but_active_ones_stay(notifier):
    clock = FakeClock()
    registry = make_registry(notifier, clock=clock, session_ttl_seconds=600)
    stale = registry.create()
    active = registry.create()

    clock.advance(500)
    registry.get(active.id)
    clock.advance(200)
    assert registry.prune() == 1

    assert active.id in registry
    with pytest.raises(SessionNotFoundError):
        registry.get(stale.id)
