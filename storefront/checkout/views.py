import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from storefront.utils.rate_limit import optional_rate_limit
from .errors import SessionNotFoundError
from .sessions import CheckoutSession, CheckoutSessionRegistry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])

class SubmitRequest(BaseModel):
    # Validés par l'orchestrateur (erreur affichée dans la vue, pas un 422)
    customer: Dict[str, Any] = Field(default_factory=dict)
    payment: Dict[str, Any] = Field(default_factory=dict)

def get_checkout_registry(request: Request) -> CheckoutSessionRegistry:
    registry = getattr(request.app.state, "checkout_sessions", None)
    if registry is None:
        raise SessionNotFoundError("Sessions de checkout non initialisées")
    return registry

def get_checkout_session(session_id: str, registry: CheckoutSessionRegistry = Depends(get_checkout_registry)) -> CheckoutSession:
    return registry.get(session_id)

# module storefront.checkout.views
@router.post("/sessions", status_code=201, dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def create_session(registry: CheckoutSessionRegistry = Depends(get_checkout_registry)) -> Dict[str, Any]:
    """Ouvre une session de checkout (panier vide, état idle)."""
    return registry.create().view()

@router.get("/sessions/{session_id}")
def read_session(session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    return session.view()

@router.post("/sessions/{session_id}/begin", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def begin_checkout(session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    """
    Entrée dans le checkout: crée l'intent pour le total serveur du panier.
    - Panier vide: reste 'idle' (rien à payer).
    - Échec de création: 'idle' + error (retryable) dans la vue.
    """
    return await session.orchestrator.begin()

@router.post("/sessions/{session_id}/intent/retry", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def retry_intent(session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    return await session.orchestrator.retry_intent()

@router.post("/sessions/{session_id}/submit", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
async def submit_checkout(body: SubmitRequest, session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    """
    Soumission du formulaire (contact -> livraison -> paiement).
    - Entrée JSON: {"customer": {...CustomerInfo}, "payment": {"payment_method": "pm_..."}}
    - Seul point qui déclenche la confirmation du paiement.
    - La vue retournée porte l'état final de l'étape (completed, payment_ambiguous, order_failed, ...).
    """
    return await session.orchestrator.submit(body.customer, body.payment)

@router.post("/sessions/{session_id}/resolve")
async def resolve_payment(session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    """Vérifie le statut réel d'un paiement ambigu (lecture seule côté passerelle)."""
    return await session.orchestrator.resolve_ambiguous()

@router.post("/sessions/{session_id}/record/retry")
async def retry_recording(session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    return await session.orchestrator.retry_recording()

@router.post("/sessions/{session_id}/cancel")
async def cancel_checkout(session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    return await session.orchestrator.cancel()
