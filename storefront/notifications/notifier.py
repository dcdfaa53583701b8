"""
Notifier: confirmation de commande par email, en best-effort.
- Envoi via la Edge Function Supabase 'send-order-confirmation' (client.functions.invoke).
- notify() planifie une tâche détachée et rend la main aussitôt; un échec est journalisé, jamais propagé.
"""
import asyncio
from typing import Any, Callable, Dict, Optional, Set
import logging

from starlette.concurrency import run_in_threadpool

import storefront.infra.supabase_client as supabase_client
from storefront.config import NOTIFICATIONS_ENABLED, ORDER_NOTIFICATION_FUNCTION
from storefront.orders.models import Order
from storefront.payments.pricing import to_major_units

logger = logging.getLogger(__name__)

def build_order_summary(order: Order) -> Dict[str, Any]:
    """Payload attendu par la fonction d'envoi (montants en unités majeures pour l'affichage)."""
    address = order.shipping_address or {}
    return {
        "orderNumber": order.id,
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "items": [
            {
                "name": item.product_name or item.product_id,
                "quantity": item.quantity,
                "price": to_major_units(item.unit_price),
            }
            for item in order.items
        ],
        "subtotal": to_major_units(order.subtotal_amount),
        "shipping": to_major_units(order.shipping_amount),
        "tax": to_major_units(order.tax_amount),
        "total": to_major_units(order.total_amount),
        "shippingAddress": {
            "address": address.get("address", ""),
            "city": address.get("city", ""),
            "state": address.get("state", ""),
            "zipCode": address.get("zipCode", ""),
        },
    }

def send_order_confirmation(payload: Dict[str, Any], function_name: str = ORDER_NOTIFICATION_FUNCTION) -> Any:
    """Appel bloquant de la Edge Function (à exécuter dans le threadpool)."""
    client = supabase_client.get_supabase()
    return client.functions.invoke(function_name, invoke_options={"body": payload})

class Notifier:
    def __init__(
        self,
        enabled: bool = NOTIFICATIONS_ENABLED,
        function_name: str = ORDER_NOTIFICATION_FUNCTION,
        sender: Optional[Callable[..., Any]] = None,
    ):
        self.enabled = enabled
        self.function_name = function_name
        self._sender = sender
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def notify(self, order: Order) -> None:
        """
        Planifie l'envoi de la confirmation pour une commande enregistrée.
        - Ne bloque pas et ne lève jamais: le checkout est déjà terminé côté utilisateur.
        """
        if not self.enabled:
            logger.info("notifications.notify disabled order_id=%s", order.id)
            return
        try:
            payload = build_order_summary(order)
            task = asyncio.get_running_loop().create_task(self._deliver(order.id, payload))
        except Exception:
            logger.exception("notifications.notify scheduling failed order_id=%s", order.id)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, order_id: str, payload: Dict[str, Any]) -> None:
        sender = self._sender or send_order_confirmation
        try:
            await run_in_threadpool(sender, payload, self.function_name)
            logger.info("notifications.notify sent order_id=%s to=%s", order_id, payload.get("customerEmail"))
        except Exception:
            logger.exception("notifications.notify failed order_id=%s", order_id)

    async def drain(self) -> None:
        """Attend les envois en cours (arrêt de l'application, tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
