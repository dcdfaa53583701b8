"""
États du checkout et table des transitions autorisées.
Toute transition absente de TRANSITIONS est refusée par l'orchestrateur (InvalidTransitionError).
"""
from enum import Enum
from typing import Dict, FrozenSet

class CheckoutState(str, Enum):
    IDLE = "idle"
    INTENT_PENDING = "intent_pending"
    INTENT_READY = "intent_ready"
    SUBMITTING = "submitting"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_AMBIGUOUS = "payment_ambiguous"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    ORDER_RECORDING = "order_recording"
    ORDER_FAILED = "order_failed"
    ORDER_RECORDED = "order_recorded"
    NOTIFYING = "notifying"
    COMPLETED = "completed"

S = CheckoutState

TRANSITIONS: Dict[CheckoutState, FrozenSet[CheckoutState]] = {
    S.IDLE: frozenset({S.INTENT_PENDING}),
    # échec de création: retour à Idle avec l'erreur affichée (« Réessayer »)
    S.INTENT_PENDING: frozenset({S.INTENT_READY, S.IDLE}),
    S.INTENT_READY: frozenset({S.SUBMITTING, S.INTENT_PENDING, S.IDLE}),
    S.SUBMITTING: frozenset({S.PAYMENT_PENDING, S.INTENT_READY}),
    S.PAYMENT_PENDING: frozenset({S.PAYMENT_FAILED, S.PAYMENT_AMBIGUOUS, S.PAYMENT_SUCCEEDED}),
    S.PAYMENT_FAILED: frozenset({S.INTENT_READY}),
    # pas de SUBMITTING: seule une vérification du statut réel peut débloquer
    S.PAYMENT_AMBIGUOUS: frozenset({S.PAYMENT_SUCCEEDED, S.PAYMENT_FAILED}),
    S.PAYMENT_SUCCEEDED: frozenset({S.ORDER_RECORDING}),
    S.ORDER_RECORDING: frozenset({S.ORDER_RECORDED, S.ORDER_FAILED}),
    S.ORDER_RECORDED: frozenset({S.NOTIFYING}),
    S.NOTIFYING: frozenset({S.COMPLETED}),
    S.ORDER_FAILED: frozenset(),
    S.COMPLETED: frozenset(),
}

CART_MUTABLE_STATES = frozenset({S.IDLE, S.INTENT_READY})
CANCELLABLE_STATES = frozenset({S.IDLE, S.INTENT_PENDING, S.INTENT_READY})
TERMINAL_STATES = frozenset({S.ORDER_FAILED, S.COMPLETED})

def can_transition(source: CheckoutState, target: CheckoutState) -> bool:
    return target in TRANSITIONS.get(source, frozenset())
