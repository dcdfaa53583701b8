"""
Adaptateur Stripe: centralise les appels PaymentIntent et la configuration Stripe.
Les erreurs du SDK remontent telles quelles; la traduction est faite par intents/confirmation.
"""
import stripe
from typing import Any, Dict, Optional

# module storefront.payments.stripe_client
def require_stripe() -> stripe:
    """
    Prépare et retourne le module stripe prêt à l’emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY si disponible.
    - Désactive les retries réseau du SDK: une confirmation ne doit jamais être rejouée à l'aveugle.
    """
    from storefront.config import STRIPE_SECRET_KEY
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    stripe.max_network_retries = 0
    return stripe

def create_payment_intent(
    *,
    amount: int,
    currency: str,
    metadata: Dict[str, str],
    idempotency_key: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crée un PaymentIntent pour un montant en unités mineures.
    Retour: dict intent (ex: {"id": "pi_...", "client_secret": "pi_..._secret_...", "amount": 4000}).
    """
    require_stripe()
    params: Dict[str, Any] = {
        "amount": int(amount),
        "currency": currency,
        "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
        "metadata": metadata,
    }
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    intent = stripe.PaymentIntent.create(**params)
    return dict(intent)

def confirm_payment_intent(intent_id: str, *, payment_method: str, idempotency_key: str) -> Dict[str, Any]:
    """
    Confirme un PaymentIntent avec un moyen de paiement tokenisé côté client (pm_...).
    Seul appel qui déplace réellement des fonds.
    """
    require_stripe()
    intent = stripe.PaymentIntent.confirm(
        intent_id,
        payment_method=payment_method,
        idempotency_key=idempotency_key,
    )
    return dict(intent)

def retrieve_payment_intent(intent_id: str) -> Dict[str, Any]:
    """Lecture seule du statut d'un PaymentIntent (résolution d'un résultat ambigu)."""
    require_stripe()
    return dict(stripe.PaymentIntent.retrieve(intent_id))

def cancel_payment_intent(intent_id: str) -> Dict[str, Any]:
    """Annule un PaymentIntent devenu obsolète (montant changé, checkout abandonné)."""
    require_stripe()
    return dict(stripe.PaymentIntent.cancel(intent_id))
