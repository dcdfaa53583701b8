"""
Payment Confirmation Adapter: remet l'intent à la passerelle pour confirmation.
- Seule étape où de l'argent bouge réellement: un seul appel, jamais de relance automatique.
- Toute issue est traduite en PaymentOutcome (succeeded / failed / ambiguous), jamais en exception.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import stripe

from . import stripe_client
from .intents import CheckoutIntent

logger = logging.getLogger(__name__)

SUCCEEDED_STATUSES = {"succeeded", "requires_capture"}
FAILED_STATUSES = {"requires_payment_method", "canceled"}
# processing, requires_action, requires_confirmation, ... => ambigu

class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    AMBIGUOUS = "ambiguous"

@dataclass(frozen=True)
class PaymentOutcome:
    status: PaymentStatus
    payment_reference: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is PaymentStatus.SUCCEEDED

    @property
    def ambiguous(self) -> bool:
        return self.status is PaymentStatus.AMBIGUOUS

    @classmethod
    def success(cls, payment_reference: str) -> "PaymentOutcome":
        return cls(PaymentStatus.SUCCEEDED, payment_reference=payment_reference)

    @classmethod
    def failed(cls, code: str, message: str) -> "PaymentOutcome":
        return cls(PaymentStatus.FAILED, failure_code=code, failure_message=message)

    @classmethod
    def unknown(cls, code: str, message: str) -> "PaymentOutcome":
        return cls(PaymentStatus.AMBIGUOUS, failure_code=code, failure_message=message)

def outcome_from_intent(intent: Dict[str, Any]) -> PaymentOutcome:
    """Traduit le statut d'un PaymentIntent Stripe en PaymentOutcome."""
    status = str(intent.get("status") or "")
    intent_id = intent.get("id")
    if status in SUCCEEDED_STATUSES and intent_id:
        return PaymentOutcome.success(intent_id)
    if status in FAILED_STATUSES:
        last_error = intent.get("last_payment_error") or {}
        return PaymentOutcome.failed(
            last_error.get("code") or f"payment_{status}",
            last_error.get("message") or "Le paiement a été refusé",
        )
    return PaymentOutcome.unknown(f"payment_{status or 'unknown'}", "Statut du paiement indéterminé")

class PaymentConfirmationAdapter:
    def confirm(self, intent: CheckoutIntent, payment_details: Dict[str, Any]) -> PaymentOutcome:
        """
        Confirme l'intent avec le moyen de paiement fourni ({"payment_method": "pm_..."}).
        - Refus définitif (carte, requête invalide, rate limit): FAILED, l'utilisateur peut réessayer.
        - Réseau/5xx/statut intermédiaire/exception inconnue: AMBIGUOUS, ne pas resoumettre sans vérifier.
        """
        payment_method = str((payment_details or {}).get("payment_method") or "").strip()
        if not payment_method:
            return PaymentOutcome.failed("payment_method_missing", "Moyen de paiement manquant")
        try:
            intent_data = stripe_client.confirm_payment_intent(
                intent.intent_id,
                payment_method=payment_method,
                idempotency_key=f"confirm-{intent.intent_id}-{payment_method}",
            )
        except stripe.CardError as exc:
            logger.info("payments.confirmation declined intent_id=%s code=%s", intent.intent_id, exc.code)
            return PaymentOutcome.failed(exc.code or "card_declined", exc.user_message or "Carte refusée")
        except stripe.RateLimitError:
            logger.warning("payments.confirmation rate limited intent_id=%s", intent.intent_id)
            return PaymentOutcome.failed("rate_limited", "Trop de tentatives, veuillez réessayer")
        except stripe.InvalidRequestError as exc:
            if exc.code == "payment_intent_unexpected_state":
                logger.error("payments.confirmation unexpected state intent_id=%s", intent.intent_id)
                return PaymentOutcome.unknown("payment_intent_unexpected_state", "Statut du paiement indéterminé")
            logger.warning("payments.confirmation invalid request intent_id=%s code=%s", intent.intent_id, exc.code)
            return PaymentOutcome.failed(exc.code or "invalid_request", exc.user_message or "Paiement refusé")
        except Exception:
            # APIConnectionError, APIError (5xx), timeouts, erreurs inconnues: issue non déterminée
            logger.exception("payments.confirmation ambiguous intent_id=%s", intent.intent_id)
            return PaymentOutcome.unknown("confirmation_unknown", "Aucune réponse définitive de la passerelle")

        outcome = outcome_from_intent(intent_data)
        if outcome.succeeded and outcome.payment_reference != intent.intent_id:
            logger.error(
                "payments.confirmation reference mismatch intent_id=%s reference=%s",
                intent.intent_id, outcome.payment_reference,
            )
            return PaymentOutcome.unknown("reference_mismatch", "Référence de paiement inattendue")
        logger.info("payments.confirmation intent_id=%s status=%s", intent.intent_id, outcome.status.value)
        return outcome

    def lookup(self, intent: CheckoutIntent) -> PaymentOutcome:
        """Lecture seule du statut réel (résolution d'un résultat ambigu). Ne confirme jamais."""
        try:
            intent_data = stripe_client.retrieve_payment_intent(intent.intent_id)
        except Exception:
            logger.exception("payments.confirmation lookup failed intent_id=%s", intent.intent_id)
            return PaymentOutcome.unknown("lookup_failed", "Statut du paiement indisponible")
        return outcome_from_intent(intent_data)
