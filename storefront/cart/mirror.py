"""
Miroir du panier dans Redis (survit à un redémarrage du process).
- Commodité de cache uniquement: le panier en mémoire reste la référence pour la session active.
- Une seconde clé garde le point de reprise du checkout dès que le paiement est soumis
  (état, intent, référence): une session gelée ou terminée n'est jamais restaurée en 'idle'.
- Toute erreur Redis est journalisée puis ignorée.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import redis

from storefront.config import CART_MIRROR_REDIS_URL, CART_MIRROR_TTL_SECONDS
from .models import CartLine, CartSnapshot

logger = logging.getLogger(__name__)

CART_KEY_PREFIX = "ndx:cart:"
CHECKPOINT_KEY_PREFIX = "ndx:checkout:"

class CartMirror:
    def __init__(self, client: "redis.Redis", ttl_seconds: int = CART_MIRROR_TTL_SECONDS):
        self._client = client
        self._ttl = ttl_seconds

    @staticmethod
    def key(session_id: str) -> str:
        return f"{CART_KEY_PREFIX}{session_id}"

    @staticmethod
    def checkpoint_key(session_id: str) -> str:
        return f"{CHECKPOINT_KEY_PREFIX}{session_id}"

    def save(self, session_id: str, snapshot: CartSnapshot) -> None:
        payload = json.dumps([line.to_dict() for line in snapshot.lines])
        try:
            if snapshot.is_empty:
                self._client.delete(self.key(session_id))
            else:
                self._client.set(self.key(session_id), payload, ex=self._ttl)
        except redis.RedisError:
            logger.warning("cart.mirror save failed session_id=%s", session_id, exc_info=True)

    def load(self, session_id: str) -> Optional[List[CartLine]]:
        """
        Relit les lignes d'une session.
        - None si absent ou Redis indisponible.
        - Les lignes mal formées sont ignorées (jamais d'exception).
        """
        try:
            raw = self._client.get(self.key(session_id))
        except redis.RedisError:
            logger.warning("cart.mirror load failed session_id=%s", session_id, exc_info=True)
            return None
        if not raw:
            return None
        try:
            items = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cart.mirror payload illisible session_id=%s", session_id)
            return None
        lines: List[CartLine] = []
        for item in items if isinstance(items, list) else []:
            try:
                line = CartLine.from_dict(item)
            except (KeyError, TypeError, ValueError):
                continue
            if line.quantity >= 1 and line.unit_price >= 0:
                lines.append(line)
        return lines

    def save_checkpoint(self, session_id: str, checkpoint: Optional[Dict[str, Any]]) -> None:
        """Écrit (ou efface si None) le point de reprise du checkout."""
        try:
            if checkpoint is None:
                self._client.delete(self.checkpoint_key(session_id))
            else:
                self._client.set(self.checkpoint_key(session_id), json.dumps(checkpoint, default=str), ex=self._ttl)
        except redis.RedisError:
            logger.warning("cart.mirror checkpoint save failed session_id=%s", session_id, exc_info=True)

    def load_checkpoint(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Relit le point de reprise.
        - None: aucun paiement soumis pour cette session.
        - {}: état inconnu (Redis indisponible ou payload illisible), la session ne doit pas être restaurée.
        """
        try:
            raw = self._client.get(self.checkpoint_key(session_id))
        except redis.RedisError:
            logger.warning("cart.mirror checkpoint load failed session_id=%s", session_id, exc_info=True)
            return {}
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            data = None
        if not isinstance(data, dict):
            # Point de reprise présent mais illisible: on le signale sans le perdre
            logger.error("cart.mirror checkpoint illisible session_id=%s", session_id)
            return {}
        return data

def build_cart_mirror(url: str = CART_MIRROR_REDIS_URL) -> Optional[CartMirror]:
    """Construit le miroir depuis CART_MIRROR_REDIS_URL; None si non configuré."""
    if not url:
        return None
    client = redis.Redis.from_url(url, encoding="utf-8", decode_responses=True)
    return CartMirror(client)
