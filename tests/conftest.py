import os

# Pas de Redis ni de vraie clé en tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("STATE_TAX_LOOKUP", "false")

import copy
import itertools
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
from unittest.mock import MagicMock

from storefront.cart.models import CartLine, CartSnapshot, ProductRef
from storefront.cart.store import CartStore
from storefront.orders.repository import DuplicatePaymentReferenceError, OrderStoreError
from storefront.payments.pricing import PricingPolicy

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

ZERO_FEES = PricingPolicy(free_shipping_threshold=0, flat_shipping=0, tax_rate=Decimal("0"))

P1 = ProductRef(id="P1", name="Hoodie", unit_price=2000)
P2 = ProductRef(id="P2", name="Cap", unit_price=1500)

CUSTOMER = {
    "email": "jane@example.com",
    "first_name": "Jane",
    "last_name": "Doe",
    "phone": "555-0100",
    "shipping": {"address": "1 Main St", "city": "Austin", "state": "TX", "zip_code": "73301"},
}

def make_snapshot(*lines: CartLine) -> CartSnapshot:
    return CartStore(lines=lines).snapshot()

class FakeOrderStore:
    """Tables orders/order_items en mémoire, avec index unique sur payment_reference et pannes injectables."""

    def __init__(self):
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.items: List[Dict[str, Any]] = []
        self.incidents: List[Dict[str, Any]] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.calls: List[str] = []
        self._ids = itertools.count(1)

    def fail(self, op: str, *errors: Exception) -> None:
        self.failures.setdefault(op, []).extend(errors)

    def _step(self, op: str) -> None:
        self.calls.append(op)
        pending = self.failures.get(op)
        if pending:
            raise pending.pop(0)

    def _with_items(self, row: Dict[str, Any]) -> Dict[str, Any]:
        data = copy.deepcopy(row)
        data["order_items"] = [copy.deepcopy(i) for i in self.items if i["order_id"] == row["id"]]
        return data

    def fetch_order_by_payment_reference(self, payment_reference):
        self._step("fetch_order_by_payment_reference")
        for row in self.orders.values():
            if row["payment_reference"] == payment_reference:
                return self._with_items(row)
        return None

    def insert_order(self, row):
        self._step("insert_order")
        if any(o["payment_reference"] == row["payment_reference"] for o in self.orders.values()):
            raise DuplicatePaymentReferenceError("duplicate key value violates unique constraint", "23505")
        order_id = f"ord-{next(self._ids)}"
        stored = {**row, "id": order_id, "created_at": datetime.now(timezone.utc).isoformat()}
        self.orders[order_id] = stored
        return copy.deepcopy(stored)

    def insert_order_items(self, rows):
        self._step("insert_order_items")
        stored = [{**r, "id": f"item-{next(self._ids)}"} for r in rows]
        self.items.extend(stored)
        return copy.deepcopy(stored)

    def mark_order_committed(self, order_id):
        self._step("mark_order_committed")
        row = self.orders.get(order_id)
        if row is None or row["status"] != "pending":
            return None
        row.update({"status": "processing", "payment_status": "paid"})
        return copy.deepcopy(row)

    def delete_pending_order(self, order_id):
        self._step("delete_pending_order")
        row = self.orders.get(order_id)
        if row is not None and row["status"] == "pending":
            del self.orders[order_id]

    def insert_payment_incident(self, row):
        self.calls.append("insert_payment_incident")
        self.incidents.append(dict(row))
        return dict(row)

    def visible_orders(self) -> List[Dict[str, Any]]:
        return [self._with_items(o) for o in self.orders.values() if o["status"] != "pending"]

    def install(self, monkeypatch) -> "FakeOrderStore":
        for name in (
            "fetch_order_by_payment_reference",
            "insert_order",
            "insert_order_items",
            "mark_order_committed",
            "delete_pending_order",
            "insert_payment_incident",
        ):
            monkeypatch.setattr(f"storefront.orders.repository.{name}", getattr(self, name))
        return self

class FakeStripe:
    """PaymentIntents en mémoire; le statut de confirmation (ou l'exception) est programmable."""

    def __init__(self):
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.next_ids: List[str] = []
        self.create_errors: List[Exception] = []
        self.confirm_result: Any = "succeeded"
        self.retrieve_status: Optional[str] = None
        self.confirm_calls: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self._ids = itertools.count(1)

    def create_payment_intent(self, *, amount, currency, metadata, idempotency_key=None):
        if self.create_errors:
            raise self.create_errors.pop(0)
        intent_id = self.next_ids.pop(0) if self.next_ids else f"pi_{next(self._ids)}"
        intent = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret_test",
            "amount": amount,
            "currency": currency,
            "status": "requires_payment_method",
            "metadata": metadata,
        }
        self.intents[intent_id] = intent
        return dict(intent)

    def confirm_payment_intent(self, intent_id, *, payment_method, idempotency_key):
        self.confirm_calls.append({"intent_id": intent_id, "payment_method": payment_method, "idempotency_key": idempotency_key})
        if isinstance(self.confirm_result, Exception):
            raise self.confirm_result
        intent = self.intents[intent_id]
        intent["status"] = self.confirm_result
        if self.confirm_result == "requires_payment_method":
            intent["last_payment_error"] = {"code": "card_declined", "message": "Your card was declined."}
        return dict(intent)

    def retrieve_payment_intent(self, intent_id):
        intent = self.intents[intent_id]
        if self.retrieve_status:
            intent["status"] = self.retrieve_status
        return dict(intent)

    def cancel_payment_intent(self, intent_id):
        self.cancelled.append(intent_id)
        self.intents[intent_id]["status"] = "canceled"
        return dict(self.intents[intent_id])

    def install(self, monkeypatch) -> "FakeStripe":
        for name in ("create_payment_intent", "confirm_payment_intent", "retrieve_payment_intent", "cancel_payment_intent"):
            monkeypatch.setattr(f"storefront.payments.stripe_client.{name}", getattr(self, name))
        return self

class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, order):
        self.sent.append(order)

    async def drain(self):
        return None

@pytest.fixture
def fake_orders(monkeypatch) -> FakeOrderStore:
    return FakeOrderStore().install(monkeypatch)

@pytest.fixture
def fake_stripe(monkeypatch) -> FakeStripe:
    return FakeStripe().install(monkeypatch)

@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()

# Aucun accès réseau Supabase depuis les tests
@pytest.fixture(autouse=True)
def mock_supabase(monkeypatch):
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: MagicMock())
