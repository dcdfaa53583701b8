"""
Taxonomie des erreurs du pipeline de checkout.

Chaque étape capture ses propres échecs et les traduit dans l'un des quatre genres ci-dessous
avant de les remettre à l'orchestrateur (jamais d'erreur de transport brute):
- retryable_safe: aucun argent n'a bougé (ou la relance est idempotente), l'utilisateur peut relancer.
- ambiguous: issue de la confirmation inconnue; gel, aucune relance automatique.
- post_payment_fatal: paiement confirmé mais commande non enregistrée; la référence est conservée.
- best_effort: notification; journalisée, invisible pour l'utilisateur.
"""
from enum import Enum
from typing import Any, Dict, Optional

class ErrorKind(str, Enum):
    RETRYABLE_SAFE = "retryable_safe"
    AMBIGUOUS = "ambiguous"
    POST_PAYMENT_FATAL = "post_payment_fatal"
    BEST_EFFORT = "best_effort"

def failure_payload(
    kind: ErrorKind,
    code: str,
    message: str,
    *,
    retryable: bool,
    payment_reference: Optional[str] = None,
    detail: Any = None,
) -> Dict[str, Any]:
    """Forme JSON unique des erreurs affichées par la vue de checkout."""
    payload: Dict[str, Any] = {
        "kind": kind.value,
        "code": code,
        "message": message,
        "retryable": retryable,
    }
    if payment_reference:
        payload["payment_reference"] = payment_reference
    if detail is not None:
        payload["detail"] = detail
    return payload

class CheckoutError(Exception):
    kind = ErrorKind.RETRYABLE_SAFE
    code = "checkout_error"
    retryable = True
    status_code = 400

    def __init__(self, message: str = "", *, payment_reference: Optional[str] = None, detail: Any = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.payment_reference = payment_reference
        self.detail = detail

    def to_payload(self) -> Dict[str, Any]:
        return failure_payload(
            self.kind,
            self.code,
            self.message,
            retryable=self.retryable,
            payment_reference=self.payment_reference,
            detail=self.detail,
        )

# --- Avant paiement (retryable_safe) ---

class IntentError(CheckoutError):
    code = "intent_error"
    status_code = 502

class InvalidAmountError(IntentError):
    code = "invalid_amount"
    status_code = 400

class PriceMismatchError(IntentError):
    code = "price_mismatch"
    status_code = 409

class PrePaymentValidationError(CheckoutError):
    code = "invalid_checkout_details"
    status_code = 422

class StaleIntentError(CheckoutError):
    code = "intent_stale"
    status_code = 409

# --- Après paiement (Order Recorder) ---

class RecorderError(CheckoutError):
    kind = ErrorKind.POST_PAYMENT_FATAL
    code = "order_not_recorded"
    retryable = False
    status_code = 500

class OrderValidationError(RecorderError):
    code = "order_validation_failed"

class OrderIntegrityError(RecorderError):
    code = "order_integrity_violation"

class OrderStoreUnavailableError(RecorderError):
    kind = ErrorKind.RETRYABLE_SAFE
    code = "order_store_unavailable"
    retryable = True
    status_code = 503

class OrderRecordingInProgressError(RecorderError):
    kind = ErrorKind.RETRYABLE_SAFE
    code = "order_recording_in_progress"
    retryable = True
    status_code = 409

# --- Machine à états / sessions ---

class InvalidTransitionError(CheckoutError):
    code = "invalid_transition"
    retryable = False
    status_code = 409

class StepInProgressError(CheckoutError):
    code = "step_in_progress"
    status_code = 409

class CartLockedError(CheckoutError):
    code = "cart_locked"
    retryable = False
    status_code = 409

class SessionNotFoundError(CheckoutError):
    code = "session_not_found"
    retryable = False
    status_code = 404
