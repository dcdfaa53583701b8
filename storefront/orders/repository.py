"""
Accès aux données pour la feature 'orders' (tables orders, order_items, payment_incidents).
- Écritures via le client service-role (bypass RLS), comme un webhook.
- Les erreurs Supabase/PostgREST sont traduites en OrderStoreError (code SQLSTATE conservé).
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from postgrest.exceptions import APIError

import storefront.infra.supabase_client as supabase_client
from .models import ORDER_STATUS_PENDING, ORDER_STATUS_PROCESSING, PAYMENT_STATUS_PAID

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

class OrderStoreError(Exception):
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

class DuplicatePaymentReferenceError(OrderStoreError):
    """Violation de l'index unique orders.payment_reference."""

def _store_error(exc: Exception, action: str) -> OrderStoreError:
    if isinstance(exc, APIError):
        code = str(exc.code) if exc.code else None
        message = exc.message or str(exc)
    else:
        code = None
        message = str(exc) or exc.__class__.__name__
    if code == UNIQUE_VIOLATION:
        return DuplicatePaymentReferenceError(message, code)
    logger.warning("orders.repository.%s failed code=%s message=%s", action, code, message)
    return OrderStoreError(message, code)

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

# module storefront.orders.repository
def fetch_order_by_payment_reference(payment_reference: str) -> Optional[Dict[str, Any]]:
    """
    Lit la commande (et ses lignes embarquées) associée à une référence de paiement.
    - Retourne None si aucune commande.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .select("*, order_items(*)")
            .eq("payment_reference", payment_reference)
            .limit(1)
            .execute()
        )
    except Exception as exc:
        raise _store_error(exc, "fetch_order_by_payment_reference") from exc
    rows = res.data or []
    return rows[0] if rows else None

def insert_order(row: Dict[str, Any]) -> Dict[str, Any]:
    """Insère l'en-tête de commande (status 'pending'); lève DuplicatePaymentReferenceError si conflit."""
    try:
        res = supabase_client.get_service_supabase().table("orders").insert(row).execute()
    except Exception as exc:
        raise _store_error(exc, "insert_order") from exc
    rows = res.data or []
    if not rows:
        raise OrderStoreError("insert_order: aucune ligne retournée")
    return rows[0]

def insert_order_items(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Insère toutes les lignes en une seule requête (un seul statement côté Postgres)."""
    try:
        res = supabase_client.get_service_supabase().table("order_items").insert(rows).execute()
    except Exception as exc:
        raise _store_error(exc, "insert_order_items") from exc
    return res.data or []

def mark_order_committed(order_id: str) -> Optional[Dict[str, Any]]:
    """
    Rend la commande visible: pending -> processing, payment_status 'paid'.
    Retourne la ligne mise à jour (None si elle n'était plus 'pending').
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("orders")
            .update({
                "status": ORDER_STATUS_PROCESSING,
                "payment_status": PAYMENT_STATUS_PAID,
                "updated_at": _now_iso(),
            })
            .eq("id", order_id)
            .eq("status", ORDER_STATUS_PENDING)
            .execute()
        )
    except Exception as exc:
        raise _store_error(exc, "mark_order_committed") from exc
    rows = res.data or []
    return rows[0] if rows else None

def delete_pending_order(order_id: str) -> None:
    """Compensation: supprime un en-tête resté 'pending' (jamais une commande validée)."""
    try:
        (
            supabase_client.get_service_supabase()
            .table("orders")
            .delete()
            .eq("id", order_id)
            .eq("status", ORDER_STATUS_PENDING)
            .execute()
        )
    except Exception as exc:
        raise _store_error(exc, "delete_pending_order") from exc

def insert_payment_incident(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Trace (best-effort) un paiement encaissé sans commande enregistrée, pour rapprochement manuel.
    Retourne None en cas d'erreur (jamais d'exception).
    """
    try:
        res = supabase_client.get_service_supabase().table("payment_incidents").insert(row).execute()
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("orders.repository.insert_payment_incident failed payment_reference=%s", row.get("payment_reference"))
        return None
