"""
Checkout Orchestrator: machine à états qui enchaîne panier -> intent -> confirmation -> commande -> notification.

Règles:
- Une seule étape à la fois par session (StepInProgressError sinon).
- Chaque étape traduit ses échecs en payload d'erreur typé (errors.ErrorKind); aucune erreur brute ne remonte.
- Le panier n'est vidé qu'à l'entrée dans ORDER_RECORDED.
- Après un paiement confirmé, plus d'annulation: on avance vers ORDER_RECORDED ou ORDER_FAILED (avec référence).
- Dès la soumission, un point de reprise (état, intent, référence) est publié: une session soumise
  n'est jamais restaurée en IDLE après redémarrage.
"""
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from storefront.cart.models import CartLine
from storefront.cart.store import CartStore
from storefront.config import STATE_TAX_LOOKUP, SUPPORT_EMAIL, VERIFY_CATALOG_PRICES
from storefront.notifications.notifier import Notifier
from storefront.orders import repository as orders_repository
from storefront.orders.models import CustomerInfo, Order, PaymentDetails
from storefront.orders.recorder import OrderRecorder
from storefront.payments import catalog, taxes
from storefront.payments.confirmation import PaymentConfirmationAdapter, PaymentOutcome
from storefront.payments.intents import CheckoutIntent, IntentBroker
from storefront.payments.metadata import make_intent_metadata
from storefront.payments.pricing import CartTotals, PricingPolicy, default_policy
from .errors import (
    CartLockedError,
    CheckoutError,
    ErrorKind,
    IntentError,
    InvalidTransitionError,
    OrderStoreUnavailableError,
    PrePaymentValidationError,
    PriceMismatchError,
    RecorderError,
    StaleIntentError,
    StepInProgressError,
    failure_payload,
)
from .states import CANCELLABLE_STATES, CART_MUTABLE_STATES, TERMINAL_STATES, CheckoutState, can_transition

logger = logging.getLogger(__name__)

S = CheckoutState

def _validation_detail(exc: ValidationError) -> List[Dict[str, Any]]:
    return [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]

class CheckoutOrchestrator:
    def __init__(
        self,
        cart: CartStore,
        *,
        session_id: str,
        broker: Optional[IntentBroker] = None,
        adapter: Optional[PaymentConfirmationAdapter] = None,
        recorder: Optional[OrderRecorder] = None,
        notifier: Optional[Notifier] = None,
        policy: Optional[PricingPolicy] = None,
        verify_prices: bool = VERIFY_CATALOG_PRICES,
        lookup_state_tax: bool = STATE_TAX_LOOKUP,
        on_checkpoint: Optional[Callable[[Optional[Dict[str, Any]]], None]] = None,
    ):
        self.cart = cart
        self.session_id = session_id
        self.policy = policy or default_policy()
        self.broker = broker or IntentBroker(currency=self.policy.currency)
        self.adapter = adapter or PaymentConfirmationAdapter()
        self.recorder = recorder or OrderRecorder(policy=self.policy)
        self.notifier = notifier or Notifier()
        self.verify_prices = verify_prices
        self.lookup_state_tax = lookup_state_tax
        self._on_checkpoint = on_checkpoint

        self.state: CheckoutState = S.IDLE
        self.history: List[CheckoutState] = [S.IDLE]
        self.intent: Optional[CheckoutIntent] = None
        self.error: Optional[Dict[str, Any]] = None
        self.payment_reference: Optional[str] = None
        self.customer: Optional[CustomerInfo] = None
        self.order: Optional[Order] = None
        # taux de l'état de livraison, connu à la soumission
        self.tax_rate: Optional[Decimal] = None
        self._snapshot = None
        self._totals: Optional[CartTotals] = None
        self._busy = False

    # --- état ---

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def cart_mutable(self) -> bool:
        return self.state in CART_MUTABLE_STATES and not self._busy

    @property
    def can_cancel(self) -> bool:
        return self.state in CANCELLABLE_STATES and not self._busy

    def _transition(self, target: CheckoutState) -> None:
        if not can_transition(self.state, target):
            raise InvalidTransitionError(
                f"Transition interdite: {self.state.value} -> {target.value}",
                detail={"state": self.state.value, "target": target.value},
            )
        logger.info("checkout.transition session_id=%s %s -> %s", self.session_id, self.state.value, target.value)
        previous = self.state
        self.state = target
        self.history.append(target)
        if target not in CANCELLABLE_STATES or previous not in CANCELLABLE_STATES:
            self._emit_checkpoint()

    def _require(self, action: str, *states: CheckoutState) -> None:
        if self.state not in states:
            raise InvalidTransitionError(
                f"Action '{action}' impossible dans l'état {self.state.value}",
                detail={"state": self.state.value, "action": action},
            )

    @asynccontextmanager
    async def _step(self, action: str):
        if self._busy:
            raise StepInProgressError(f"Une étape est déjà en cours ({action} refusé)")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False
            if self.state not in CANCELLABLE_STATES:
                self._emit_checkpoint()

    def _pricing(self) -> PricingPolicy:
        return self.policy.with_tax_rate(self.tax_rate)

    # --- opérations ---

    async def begin(self) -> Dict[str, Any]:
        """
        Entrée dans le checkout.
        - Panier vide: reste en IDLE (affichage « panier vide », pas une erreur).
        - Sinon: IDLE -> INTENT_PENDING -> INTENT_READY (ou IDLE + erreur retryable).
        """
        async with self._step("begin"):
            self._require("begin", S.IDLE)
            self.error = None
            if not self.cart.is_empty:
                await self._create_intent()
        return self.view()

    async def retry_intent(self) -> Dict[str, Any]:
        """« Réessayer » après un échec de création, ou rafraîchissement explicite en INTENT_READY."""
        async with self._step("retry_intent"):
            self._require("retry_intent", S.IDLE, S.INTENT_READY)
            if self.cart.is_empty:
                await self._drop_intent()
            else:
                await self._create_intent()
        return self.view()

    async def on_cart_changed(self) -> Dict[str, Any]:
        """
        Réagit à une mutation du panier.
        - IDLE: rien à faire (les totaux sont recalculés à l'affichage).
        - INTENT_READY: panier vide -> annulation de l'intent et retour en IDLE; montant changé -> nouvel intent.
        """
        async with self._step("cart_changed"):
            if self.state not in CART_MUTABLE_STATES:
                raise CartLockedError(f"Panier verrouillé dans l'état {self.state.value}")
            if self.state is S.INTENT_READY:
                if self.cart.is_empty:
                    await self._drop_intent()
                else:
                    total = self._pricing().totals(self.cart.snapshot()).total
                    if self.intent is None or total != self.intent.amount:
                        await self._create_intent()
        return self.view()

    async def submit(
        self,
        customer: Union[CustomerInfo, Dict[str, Any]],
        payment_details: Union[PaymentDetails, Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Seul déclencheur du paiement.
        - Validation locale (contact, livraison, moyen de paiement) avant tout appel passerelle.
        - Montant recalculé différent de l'intent: nouvel intent + erreur intent_stale, rien n'est débité.
        - Puis une seule confirmation; l'issue pilote la suite (échec, ambigu, succès -> commande).
        """
        async with self._step("submit"):
            self._require("submit", S.INTENT_READY)
            self._transition(S.SUBMITTING)
            self.error = None
            await self._submit(customer, payment_details)
        return self.view()

    async def resolve_ambiguous(self) -> Dict[str, Any]:
        """Relit le statut réel de l'intent (jamais de nouvelle confirmation) pour sortir de PAYMENT_AMBIGUOUS."""
        async with self._step("resolve"):
            self._require("resolve", S.PAYMENT_AMBIGUOUS)
            outcome = await run_in_threadpool(self.adapter.lookup, self.intent)
            if outcome.ambiguous:
                logger.warning("checkout.resolve still ambiguous session_id=%s intent_id=%s", self.session_id, self.intent.intent_id)
                self.error = self._ambiguous_payload(outcome)
            else:
                await self._apply_outcome(outcome)
        return self.view()

    async def retry_recording(self) -> Dict[str, Any]:
        """Relance l'enregistrement (idempotent) après une erreur retryable du recorder."""
        async with self._step("retry_recording"):
            self._require("retry_recording", S.ORDER_RECORDING)
            await self._attempt_record()
        return self.view()

    async def cancel(self) -> Dict[str, Any]:
        """Abandon sans effet de bord: possible uniquement avant toute soumission du paiement."""
        async with self._step("cancel"):
            self._require("cancel", *CANCELLABLE_STATES)
            await self._drop_intent()
            self.error = None
            logger.info("checkout.cancel session_id=%s", self.session_id)
        return self.view()

    # --- étapes internes ---

    async def _submit(self, customer: Any, payment_details: Any) -> None:
        try:
            info = customer if isinstance(customer, CustomerInfo) else CustomerInfo.model_validate(customer or {})
            details = (
                payment_details if isinstance(payment_details, PaymentDetails)
                else PaymentDetails.model_validate(payment_details or {})
            )
        except ValidationError as exc:
            self._back_to_ready(PrePaymentValidationError("Informations de commande invalides", detail=_validation_detail(exc)))
            return

        snapshot = self.cart.snapshot()
        if snapshot.is_empty:
            self._back_to_ready(PrePaymentValidationError("Panier vide"))
            return

        if self.lookup_state_tax:
            self.tax_rate = await self._destination_tax_rate(info.shipping.state)
        totals = self._pricing().totals(snapshot)
        if self.intent is None or totals.total != self.intent.amount:
            previous_amount = self.intent.amount if self.intent else None
            self._transition(S.INTENT_READY)
            await self._create_intent()
            if self.error is None:
                self.error = StaleIntentError(
                    "Le montant a changé, vérifiez le total avant de payer",
                    detail={"previous_amount": previous_amount, "amount": totals.total},
                ).to_payload()
            return

        self.customer = info
        self._snapshot = snapshot
        self._totals = totals
        self._transition(S.PAYMENT_PENDING)
        outcome = await run_in_threadpool(self.adapter.confirm, self.intent, details.model_dump())
        await self._apply_outcome(outcome)

    async def _destination_tax_rate(self, state: str) -> Optional[Decimal]:
        """Taux de l'état de livraison; None (taux configuré) si inconnu ou lecture impossible."""
        try:
            return await run_in_threadpool(taxes.get_state_tax_rate, state)
        except taxes.TaxRateUnavailableError:
            logger.warning("checkout.tax lookup failed session_id=%s state=%s, taux configuré appliqué", self.session_id, state)
            return None

    async def _create_intent(self) -> None:
        previous = self.intent
        self.intent = None
        self._transition(S.INTENT_PENDING)
        snapshot = self.cart.snapshot()
        try:
            if self.verify_prices:
                try:
                    mismatches = await run_in_threadpool(catalog.find_price_mismatches, snapshot)
                except catalog.CatalogUnavailableError as exc:
                    raise IntentError("Catalogue indisponible, veuillez réessayer") from exc
                if mismatches:
                    raise PriceMismatchError("Certains prix ont changé, mettez à jour le panier", detail=mismatches)
            totals = self._pricing().totals(snapshot)
            email = str(self.customer.email) if self.customer else None
            metadata = make_intent_metadata(self.session_id, snapshot, email)
            intent = await run_in_threadpool(self.broker.create_intent, totals.total, metadata)
        except CheckoutError as exc:
            logger.warning("checkout.intent failed session_id=%s code=%s", self.session_id, exc.code)
            self.error = exc.to_payload()
            self._transition(S.IDLE)
        else:
            self.intent = intent
            self.error = None
            self._transition(S.INTENT_READY)
        if previous is not None:
            await run_in_threadpool(self.broker.invalidate, previous)

    async def _drop_intent(self) -> None:
        previous = self.intent
        self.intent = None
        if self.state is not S.IDLE:
            self._transition(S.IDLE)
        if previous is not None:
            await run_in_threadpool(self.broker.invalidate, previous)

    def _back_to_ready(self, exc: CheckoutError) -> None:
        logger.info("checkout.submit rejected session_id=%s code=%s", self.session_id, exc.code)
        self.error = exc.to_payload()
        self._transition(S.INTENT_READY)

    def _ambiguous_payload(self, outcome: PaymentOutcome) -> Dict[str, Any]:
        return failure_payload(
            ErrorKind.AMBIGUOUS,
            outcome.failure_code or "payment_ambiguous",
            "Statut du paiement inconnu: ne réessayez pas, vérifiez votre relevé ou contactez le support",
            retryable=False,
            payment_reference=self.intent.intent_id if self.intent else None,
            detail={"support_email": SUPPORT_EMAIL},
        )

    async def _apply_outcome(self, outcome: PaymentOutcome) -> None:
        if outcome.succeeded:
            self.payment_reference = outcome.payment_reference
            self.error = None
            self._transition(S.PAYMENT_SUCCEEDED)
            self._transition(S.ORDER_RECORDING)
            await self._attempt_record()
            return
        if outcome.ambiguous:
            logger.error(
                "checkout.payment ambiguous session_id=%s intent_id=%s code=%s",
                self.session_id, self.intent.intent_id, outcome.failure_code,
            )
            self.error = self._ambiguous_payload(outcome)
            self._transition(S.PAYMENT_AMBIGUOUS)
            return
        self._transition(S.PAYMENT_FAILED)
        self.error = failure_payload(
            ErrorKind.RETRYABLE_SAFE,
            outcome.failure_code or "payment_failed",
            outcome.failure_message or "Le paiement a été refusé",
            retryable=True,
        )
        self._transition(S.INTENT_READY)
        if outcome.failure_code == "payment_canceled":
            # intent annulé côté passerelle: inutilisable pour une nouvelle tentative
            failure = self.error
            await self._create_intent()
            if self.error is None:
                self.error = failure

    async def _attempt_record(self) -> None:
        try:
            order = await run_in_threadpool(
                self.recorder.record, self.payment_reference, self._snapshot, self.customer, self._totals
            )
        except RecorderError as exc:
            if exc.retryable:
                logger.warning(
                    "checkout.record retryable failure session_id=%s payment_reference=%s code=%s",
                    self.session_id, self.payment_reference, exc.code,
                )
                self.error = exc.to_payload()
                return
            await self._fail_order(exc)
            return
        except Exception:
            logger.exception("checkout.record unexpected failure payment_reference=%s", self.payment_reference)
            self.error = OrderStoreUnavailableError(
                "Enregistrement de la commande impossible pour le moment, réessayez",
                payment_reference=self.payment_reference,
            ).to_payload()
            return

        self.order = order
        self.error = None
        self._transition(S.ORDER_RECORDED)
        self.cart.clear()
        self._transition(S.NOTIFYING)
        self.notifier.notify(order)
        self._transition(S.COMPLETED)

    async def _fail_order(self, exc: RecorderError) -> None:
        reference = self.payment_reference
        logger.critical(
            "ALERT checkout.payment captured without order session_id=%s payment_reference=%s code=%s",
            self.session_id, reference, exc.code,
        )
        self.error = failure_payload(
            ErrorKind.POST_PAYMENT_FATAL,
            exc.code,
            f"Votre paiement a été accepté mais la commande n'a pas pu être enregistrée. "
            f"Contactez {SUPPORT_EMAIL} en indiquant la référence {reference}.",
            retryable=False,
            payment_reference=reference,
            detail={"support_email": SUPPORT_EMAIL, "reason": exc.message, "errors": exc.detail},
        )
        self._transition(S.ORDER_FAILED)
        await run_in_threadpool(orders_repository.insert_payment_incident, {
            "payment_reference": reference,
            "session_id": self.session_id,
            "reason": exc.code,
            "detail": {"message": exc.message, "errors": exc.detail},
            "customer_email": str(self.customer.email) if self.customer else None,
        })

    # --- reprise après redémarrage ---

    def _emit_checkpoint(self) -> None:
        if self._on_checkpoint is None:
            return
        try:
            self._on_checkpoint(self.checkpoint())
        except Exception:
            logger.exception("checkout.checkpoint listener failed session_id=%s", self.session_id)

    def checkpoint(self) -> Optional[Dict[str, Any]]:
        """Point de reprise sérialisable dès que le paiement est soumis; None avant (rien à protéger)."""
        if self.state in CANCELLABLE_STATES:
            return None
        return {
            "state": self.state.value,
            "intent": (
                {"intent_id": self.intent.intent_id, "amount": self.intent.amount, "currency": self.intent.currency}
                if self.intent else None
            ),
            "payment_reference": self.payment_reference,
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "customer": self.customer.model_dump(mode="json") if self.customer else None,
            "lines": [line.to_dict() for line in self._snapshot.lines] if self._snapshot else [],
            "order": self.order.to_dict() if self.order else None,
            "error": self.error,
        }

    def restore(self, checkpoint: Dict[str, Any]) -> None:
        """
        Reprend une session déjà soumise, jamais en 'idle'.
        - Confirmation interrompue (submitting, payment_pending, payment_failed): payment_ambiguous,
          seule une lecture du statut réel peut débloquer.
        - Paiement accepté sans commande: order_recording (retry_recording est idempotent).
        - Commande enregistrée: completed. order_failed reste order_failed.
        Lève KeyError/ValueError si le point de reprise est inexploitable.
        """
        state = S(checkpoint["state"])
        if state in CANCELLABLE_STATES:
            raise ValueError(f"Point de reprise inattendu: {state.value}")

        intent = checkpoint.get("intent")
        if intent:
            self.intent = CheckoutIntent(
                intent_id=str(intent["intent_id"]),
                client_secret="",
                amount=int(intent["amount"]),
                currency=str(intent.get("currency") or self.policy.currency),
            )
        self.payment_reference = checkpoint.get("payment_reference")
        if checkpoint.get("tax_rate") is not None:
            self.tax_rate = Decimal(str(checkpoint["tax_rate"]))
        if checkpoint.get("customer"):
            self.customer = CustomerInfo.model_validate(checkpoint["customer"])
        lines = [CartLine.from_dict(item) for item in checkpoint.get("lines") or []]
        if lines:
            self._snapshot = CartStore(lines=lines).snapshot()
            self._totals = self._pricing().totals(self._snapshot)
        order = checkpoint.get("order")
        if order:
            self.order = Order.from_row(order, order.get("items") or [])
        self.error = checkpoint.get("error")

        if state in (S.SUBMITTING, S.PAYMENT_PENDING, S.PAYMENT_FAILED, S.PAYMENT_AMBIGUOUS):
            if self.intent is None:
                raise ValueError("Intent manquant pour un paiement soumis")
            if state is not S.PAYMENT_AMBIGUOUS or self.error is None:
                self.error = self._ambiguous_payload(
                    PaymentOutcome.unknown("payment_interrupted", "Confirmation interrompue")
                )
            state = S.PAYMENT_AMBIGUOUS
        elif state in (S.PAYMENT_SUCCEEDED, S.ORDER_RECORDING):
            if not (self.payment_reference and self._snapshot and self.customer):
                raise ValueError("Reprise de l'enregistrement impossible: données manquantes")
            state = S.ORDER_RECORDING
            if self.error is None:
                self.error = OrderStoreUnavailableError(
                    "Enregistrement de la commande interrompu, réessayez",
                    payment_reference=self.payment_reference,
                ).to_payload()
        elif state in (S.ORDER_RECORDED, S.NOTIFYING):
            state = S.COMPLETED

        self.state = state
        self.history.append(state)
        logger.info("checkout.restore session_id=%s state=%s", self.session_id, state.value)

    # --- vue ---

    def view(self) -> Dict[str, Any]:
        """Vue JSON de la session (état, panier, totaux, intent, commande, erreur)."""
        snapshot = self.cart.snapshot()
        if not snapshot.is_empty:
            totals = self._pricing().totals(snapshot).to_dict()
        elif self._totals is not None:
            totals = self._totals.to_dict()
        else:
            totals = None
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "cart": snapshot.to_dict(),
            "totals": totals,
            "intent": self.intent.to_public_dict() if self.intent else None,
            "payment_reference": self.payment_reference,
            "order": self.order.to_dict() if self.order else None,
            "error": self.error,
            "cart_mutable": self.cart_mutable,
            "can_cancel": self.can_cancel,
            "terminal": self.state in TERMINAL_STATES,
        }
