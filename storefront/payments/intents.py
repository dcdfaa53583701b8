"""
Intent Broker: obtient de la passerelle un handle d'autorisation pour un montant donné.
- Appelé à l'entrée dans le checkout (panier non vide) et à chaque changement de montant.
- Un échec est « retryable_safe »: aucun argent n'a bougé.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from storefront.config import CHECKOUT_CURRENCY, MIN_CHARGE_AMOUNT
from storefront.checkout.errors import IntentError, InvalidAmountError
from . import stripe_client

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class CheckoutIntent:
    intent_id: str
    client_secret: str
    amount: int
    currency: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "client_secret": self.client_secret,
            "amount": self.amount,
            "currency": self.currency,
        }

class IntentBroker:
    def __init__(self, currency: str = CHECKOUT_CURRENCY, min_amount: int = MIN_CHARGE_AMOUNT):
        self.currency = currency
        self.min_amount = min_amount

    def create_intent(self, amount_minor_units: int, metadata: Optional[Dict[str, str]] = None) -> CheckoutIntent:
        """
        Crée un intent Stripe pour amount_minor_units.
        - InvalidAmountError si le montant n'est pas un entier >= minimum passerelle.
        - IntentError pour toute erreur SDK/transport (message exploitable pour « Réessayer »).
        """
        if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int):
            raise InvalidAmountError(f"Montant non entier: {amount_minor_units!r}")
        if amount_minor_units < self.min_amount:
            raise InvalidAmountError(
                f"Montant invalide: minimum {self.min_amount} unités mineures",
                detail={"amount": amount_minor_units, "minimum": self.min_amount},
            )
        try:
            intent = stripe_client.create_payment_intent(
                amount=amount_minor_units,
                currency=self.currency,
                metadata=dict(metadata or {}),
            )
        except Exception as exc:
            logger.exception("payments.intents.create_intent failed amount=%s", amount_minor_units)
            raise IntentError("Impossible d'initialiser le paiement, veuillez réessayer") from exc

        intent_id = intent.get("id")
        client_secret = intent.get("client_secret")
        if not intent_id or not client_secret:
            logger.error("payments.intents réponse incomplète intent_id=%s", intent_id)
            raise IntentError("Réponse de la passerelle incomplète")
        amount = int(intent.get("amount") or amount_minor_units)
        if amount != amount_minor_units:
            raise IntentError("Montant de l'intent différent du montant demandé")
        logger.info("payments.intents created intent_id=%s amount=%s", intent_id, amount)
        return CheckoutIntent(
            intent_id=intent_id,
            client_secret=client_secret,
            amount=amount,
            currency=intent.get("currency") or self.currency,
        )

    def invalidate(self, intent: Optional[CheckoutIntent]) -> None:
        """Annule (best-effort) un intent supplanté. Les erreurs sont journalisées uniquement."""
        if intent is None:
            return
        try:
            stripe_client.cancel_payment_intent(intent.intent_id)
            logger.info("payments.intents cancelled intent_id=%s", intent.intent_id)
        except Exception:
            logger.warning("payments.intents cancel failed intent_id=%s", intent.intent_id, exc_info=True)
