"""
Order Recorder: transforme un paiement confirmé en commande durable (en-tête + lignes).

Protocole d'écriture (PostgREST n'offre pas de transaction multi-requêtes):
1) lecture par payment_reference (idempotence)
2) insertion de l'en-tête en 'pending' (l'index unique tranche les appels concurrents)
3) insertion groupée des lignes; en cas d'échec, suppression compensatoire de l'en-tête
4) bascule 'pending' -> 'processing' / 'paid' (seule forme visible du reste du système)
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from pydantic import ValidationError

from storefront.cart.models import CartSnapshot
from storefront.checkout.errors import (
    OrderIntegrityError,
    OrderRecordingInProgressError,
    OrderStoreUnavailableError,
    OrderValidationError,
    RecorderError,
)
from storefront.config import ORDER_PENDING_GRACE_SECONDS
from storefront.payments.pricing import CartTotals, PricingPolicy, default_policy
from . import repository
from .models import CustomerInfo, Order, ORDER_STATUS_PENDING, ORDER_STATUS_PROCESSING, PAYMENT_STATUS_PAID
from .repository import DuplicatePaymentReferenceError, OrderStoreError

logger = logging.getLogger(__name__)

def _is_validation_code(code: Optional[str]) -> bool:
    # Classes SQLSTATE 22 (données) / 23 (contraintes) et erreurs de schéma PostgREST: définitives
    if not code:
        return False
    return code.startswith("22") or code.startswith("23") or code.startswith("PGRST")

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

class OrderRecorder:
    def __init__(
        self,
        policy: Optional[PricingPolicy] = None,
        pending_grace_seconds: int = ORDER_PENDING_GRACE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.policy = policy or default_policy()
        self.pending_grace_seconds = pending_grace_seconds
        self._clock = clock

    def record(
        self,
        payment_reference: str,
        cart_snapshot: CartSnapshot,
        customer_info: Union[CustomerInfo, Dict[str, Any]],
        totals: Optional[CartTotals] = None,
    ) -> Order:
        """
        Enregistre la commande liée à payment_reference, au plus une fois.
        - totals: montants effectivement débités (taxe de l'état de livraison); recalculés sinon.
        - Un second appel avec la même référence retourne la commande existante.
        - Aucune commande partielle n'est jamais visible (en-tête sans lignes).
        - Lève une RecorderError typée (retryable ou non) en cas d'échec.
        """
        reference = (payment_reference or "").strip()
        if not reference:
            raise OrderValidationError("Référence de paiement manquante")
        customer = self._validate_customer(customer_info, reference)
        if cart_snapshot is None or cart_snapshot.is_empty:
            raise OrderValidationError("Panier vide: aucune ligne à enregistrer", payment_reference=reference)

        existing = self._fetch(reference)
        if existing is not None:
            return self._resolve_existing(existing, reference)

        if totals is None:
            totals = self.policy.totals(cart_snapshot)
        item_rows = self._item_rows(cart_snapshot)
        self._check_totals(item_rows, totals, reference)

        try:
            header = repository.insert_order(self._header_row(reference, customer, totals))
        except DuplicatePaymentReferenceError:
            logger.info("orders.recorder concurrent insert payment_reference=%s, resolving existing row", reference)
            existing = self._fetch(reference)
            if existing is None:
                raise OrderStoreUnavailableError(
                    "Conflit d'écriture non résolu, réessayez", payment_reference=reference
                )
            return self._resolve_existing(existing, reference)
        except OrderStoreError as exc:
            raise self._translate(exc, reference) from exc

        order_id = str(header["id"])
        for row in item_rows:
            row["order_id"] = order_id
        try:
            items = repository.insert_order_items(item_rows)
        except OrderStoreError as exc:
            self._rollback(order_id, reference)
            raise self._translate(exc, reference) from exc

        return self._finalize(header, items or item_rows, reference)

    # --- helpers ---

    def _validate_customer(self, customer_info: Any, reference: str) -> CustomerInfo:
        if isinstance(customer_info, CustomerInfo):
            return customer_info
        try:
            return CustomerInfo.model_validate(customer_info or {})
        except ValidationError as exc:
            detail = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
            raise OrderValidationError(
                "Informations client invalides", payment_reference=reference, detail=detail
            ) from exc

    def _fetch(self, reference: str) -> Optional[Dict[str, Any]]:
        try:
            return repository.fetch_order_by_payment_reference(reference)
        except OrderStoreError as exc:
            raise self._translate(exc, reference) from exc

    def _translate(self, exc: OrderStoreError, reference: str) -> RecorderError:
        if _is_validation_code(exc.code):
            return OrderValidationError(
                "Commande refusée par la base", payment_reference=reference, detail={"code": exc.code}
            )
        return OrderStoreUnavailableError(
            "Base de commandes indisponible, réessayez", payment_reference=reference
        )

    def _header_row(self, reference: str, customer: CustomerInfo, totals: CartTotals) -> Dict[str, Any]:
        return {
            "payment_reference": reference,
            "user_id": customer.user_id,
            "customer_name": customer.full_name,
            "customer_email": str(customer.email),
            "customer_phone": customer.phone,
            "shipping_address": customer.shipping.to_row(),
            "subtotal_amount": totals.subtotal,
            "shipping_amount": totals.shipping,
            "tax_amount": totals.tax,
            "total_amount": totals.total,
            "currency": totals.currency,
            "status": ORDER_STATUS_PENDING,
        }

    @staticmethod
    def _item_rows(snapshot: CartSnapshot) -> List[Dict[str, Any]]:
        return [
            {
                "product_id": line.product_id,
                "product_name": line.name,
                "size": line.size,
                "color": line.color,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
            }
            for line in snapshot.lines
        ]

    @staticmethod
    def _check_totals(item_rows: List[Dict[str, Any]], totals: CartTotals, reference: str) -> None:
        items_total = sum(r["quantity"] * r["unit_price"] for r in item_rows)
        if items_total != totals.subtotal or totals.subtotal + totals.shipping + totals.tax != totals.total:
            raise OrderValidationError(
                "Totaux incohérents", payment_reference=reference,
                detail={"items_total": items_total, **totals.to_dict()},
            )
        if any(r["quantity"] < 1 or r["unit_price"] < 0 for r in item_rows):
            raise OrderValidationError("Ligne de commande invalide", payment_reference=reference)

    def _rollback(self, order_id: str, reference: str) -> None:
        try:
            repository.delete_pending_order(order_id)
        except OrderStoreError as exc:
            logger.critical(
                "ALERT orders.recorder rollback failed order_id=%s payment_reference=%s: pending header left without items",
                order_id, reference,
            )
            raise OrderIntegrityError(
                "Commande partielle non annulée", payment_reference=reference
            ) from exc
        logger.warning("orders.recorder rolled back pending order_id=%s payment_reference=%s", order_id, reference)

    def _finalize(self, header: Dict[str, Any], items: List[Dict[str, Any]], reference: str) -> Order:
        order_id = str(header["id"])
        try:
            committed = repository.mark_order_committed(order_id)
        except OrderStoreError as exc:
            raise self._translate(exc, reference) from exc
        if committed is None:
            # Un appel concurrent a déjà validé la commande
            committed = {**header, "status": ORDER_STATUS_PROCESSING, "payment_status": PAYMENT_STATUS_PAID}
        committed.pop("order_items", None)
        order = Order.from_row(committed, items)
        logger.info("orders.recorder recorded order_id=%s payment_reference=%s total=%s", order.id, reference, order.total_amount)
        return order

    def _pending_age(self, order: Order) -> Optional[float]:
        if order.created_at is None:
            return None
        created = order.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (self._clock() - created).total_seconds()

    def _resolve_existing(self, row: Dict[str, Any], reference: str) -> Order:
        items = row.get("order_items") or []
        order = Order.from_row(row)
        if not order.is_pending:
            if not items:
                logger.critical(
                    "ALERT orders.recorder committed order without items order_id=%s payment_reference=%s",
                    order.id, reference,
                )
                raise OrderIntegrityError("Commande validée sans lignes", payment_reference=reference)
            logger.info("orders.recorder already recorded order_id=%s payment_reference=%s", order.id, reference)
            return order
        if items:
            return self._finalize(row, items, reference)
        age = self._pending_age(order)
        if age is not None and age < self.pending_grace_seconds:
            raise OrderRecordingInProgressError(
                "Enregistrement en cours, réessayez dans un instant", payment_reference=reference
            )
        logger.critical(
            "ALERT orders.recorder stale pending order without items order_id=%s payment_reference=%s age=%s",
            order.id, reference, age,
        )
        raise OrderIntegrityError("Commande en attente orpheline", payment_reference=reference)
