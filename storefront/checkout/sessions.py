"""
Sessions de checkout: un panier + un orchestrateur, possédés explicitement et adressés par un id opaque.
- Registre en mémoire du process (app.state.checkout_sessions).
- Miroir Redis optionnel: un panier non soumis est restauré en IDLE après redémarrage;
  une session soumise reprend depuis son point de reprise (gelée ou terminée, jamais IDLE).
- Éviction mémoire des sessions terminées ou abandonnées (le miroir Redis n'est pas touché).
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging
import uuid

from storefront.cart.mirror import CartMirror
from storefront.cart.models import CartSnapshot
from storefront.cart.store import CartStore
from storefront.config import CHECKOUT_SESSION_TTL_SECONDS, CHECKOUT_TERMINAL_RETENTION_SECONDS
from storefront.notifications.notifier import Notifier
from storefront.orders.recorder import OrderRecorder
from storefront.payments.confirmation import PaymentConfirmationAdapter
from storefront.payments.intents import IntentBroker
from storefront.payments.pricing import PricingPolicy, default_policy
from .errors import CartLockedError, SessionNotFoundError
from .orchestrator import CheckoutOrchestrator
from .states import TERMINAL_STATES

logger = logging.getLogger(__name__)

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

@dataclass
class CheckoutSession:
    id: str
    cart: CartStore
    orchestrator: CheckoutOrchestrator
    created_at: datetime = field(default_factory=_utcnow)
    last_seen: datetime = field(default_factory=_utcnow)

    async def mutate_cart(self, mutation: Callable[[CartStore], object]) -> Dict:
        """
        Applique une mutation au panier puis notifie l'orchestrateur.
        - CartLockedError si l'état courant n'autorise pas de modification.
        """
        if not self.orchestrator.cart_mutable:
            raise CartLockedError(f"Panier verrouillé dans l'état {self.orchestrator.state.value}")
        mutation(self.cart)
        return await self.orchestrator.on_cart_changed()

    def view(self) -> Dict:
        return self.orchestrator.view()

class CheckoutSessionRegistry:
    def __init__(
        self,
        *,
        policy: Optional[PricingPolicy] = None,
        broker: Optional[IntentBroker] = None,
        adapter: Optional[PaymentConfirmationAdapter] = None,
        recorder: Optional[OrderRecorder] = None,
        notifier: Optional[Notifier] = None,
        mirror: Optional[CartMirror] = None,
        verify_prices: Optional[bool] = None,
        lookup_state_tax: Optional[bool] = None,
        session_ttl_seconds: int = CHECKOUT_SESSION_TTL_SECONDS,
        terminal_retention_seconds: int = CHECKOUT_TERMINAL_RETENTION_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.policy = policy or default_policy()
        self.broker = broker or IntentBroker(currency=self.policy.currency)
        self.adapter = adapter or PaymentConfirmationAdapter()
        self.recorder = recorder or OrderRecorder(policy=self.policy)
        self.notifier = notifier or Notifier()
        self.mirror = mirror
        self.verify_prices = verify_prices
        self.lookup_state_tax = lookup_state_tax
        self.session_ttl_seconds = session_ttl_seconds
        self.terminal_retention_seconds = terminal_retention_seconds
        self._clock = clock
        self._sessions: Dict[str, CheckoutSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _mirror_listener(self, session_id: str) -> Optional[Callable[[CartSnapshot], None]]:
        if self.mirror is None:
            return None
        mirror = self.mirror
        return lambda snapshot: mirror.save(session_id, snapshot)

    def _checkpoint_listener(self, session_id: str) -> Optional[Callable[[Optional[Dict[str, Any]]], None]]:
        if self.mirror is None:
            return None
        mirror = self.mirror
        return lambda checkpoint: mirror.save_checkpoint(session_id, checkpoint)

    def _build(self, session_id: str, lines=None) -> CheckoutSession:
        cart = CartStore(lines=lines, on_change=self._mirror_listener(session_id))
        kwargs = {}
        if self.verify_prices is not None:
            kwargs["verify_prices"] = self.verify_prices
        if self.lookup_state_tax is not None:
            kwargs["lookup_state_tax"] = self.lookup_state_tax
        orchestrator = CheckoutOrchestrator(
            cart,
            session_id=session_id,
            broker=self.broker,
            adapter=self.adapter,
            recorder=self.recorder,
            notifier=self.notifier,
            policy=self.policy,
            on_checkpoint=self._checkpoint_listener(session_id),
            **kwargs,
        )
        now = self._clock()
        session = CheckoutSession(id=session_id, cart=cart, orchestrator=orchestrator, created_at=now, last_seen=now)
        self._sessions[session_id] = session
        return session

    def create(self) -> CheckoutSession:
        self.prune()
        session = self._build(uuid.uuid4().hex)
        logger.info("checkout.sessions created session_id=%s", session.id)
        return session

    def get(self, session_id: str) -> CheckoutSession:
        """
        Retourne la session; à défaut, tente une restauration depuis le miroir.
        - Point de reprise présent: la session reprend dans son état soumis (gelé ou terminal).
        - Point de reprise illisible: SessionNotFoundError, jamais de retour en IDLE avec le panier.
        Lève SessionNotFoundError si rien n'est connu pour cet id.
        """
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_seen = self._clock()
            return session
        if self.mirror is None:
            raise SessionNotFoundError(f"Session inconnue: {session_id}")
        checkpoint = self.mirror.load_checkpoint(session_id)
        lines = self.mirror.load(session_id)
        if checkpoint is None and not lines:
            raise SessionNotFoundError(f"Session inconnue: {session_id}")

        session = self._build(session_id, lines)
        if checkpoint is not None:
            try:
                session.orchestrator.restore(checkpoint)
            except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
                self._sessions.pop(session_id, None)
                logger.error("checkout.sessions checkpoint inexploitable session_id=%s: %s", session_id, exc)
                raise SessionNotFoundError(f"Session non restaurable: {session_id}") from exc
        logger.info(
            "checkout.sessions restored session_id=%s state=%s lines=%s",
            session_id, session.orchestrator.state.value, len(lines or []),
        )
        return session

    def _expired(self, session: CheckoutSession, now: datetime) -> bool:
        orchestrator = session.orchestrator
        if orchestrator.busy:
            return False
        unused_for = (now - session.last_seen).total_seconds()
        if orchestrator.state in TERMINAL_STATES:
            return unused_for >= self.terminal_retention_seconds
        return unused_for >= self.session_ttl_seconds

    def prune(self) -> int:
        """Évince de la mémoire les sessions terminées (après rétention) et abandonnées (après TTL)."""
        now = self._clock()
        expired = [sid for sid, session in self._sessions.items() if self._expired(session, now)]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("checkout.sessions evicted count=%s remaining=%s", len(expired), len(self._sessions))
        return len(expired)
