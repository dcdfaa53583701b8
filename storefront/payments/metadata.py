"""
Sérialisation des métadonnées attachées au PaymentIntent Stripe.
Stripe limite chaque valeur à 500 caractères: le résumé panier est tronqué.
"""
import json
from typing import Dict, Optional

from storefront.cart.models import CartSnapshot

METADATA_VALUE_LIMIT = 500

# module storefront.payments.metadata
def make_intent_metadata(session_id: str, snapshot: CartSnapshot, customer_email: Optional[str] = None) -> Dict[str, str]:
    """
    - session_id: relie l'intent à la session de checkout (rapprochement manuel).
    - cart: JSON compact [{"id": product_id, "q": qty}] tronqué à 500 caractères.
    """
    cart_meta = [{"id": line.product_id, "q": line.quantity} for line in snapshot.lines]
    metadata = {
        "checkout_session_id": session_id,
        "item_count": str(snapshot.item_count),
        "cart": json.dumps(cart_meta, separators=(",", ":"))[:METADATA_VALUE_LIMIT],
    }
    if customer_email:
        metadata["customer_email"] = customer_email[:METADATA_VALUE_LIMIT]
    return metadata
