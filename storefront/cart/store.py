"""
Cart Store: état du panier d'une session de checkout.
- Source de vérité unique de « ce qui est acheté » pour la session.
- Toutes les mutations sont synchrones et recalculent item_count/subtotal avant de rendre la main.
- Un listener optionnel reçoit le snapshot après chaque mutation (miroir Redis).
"""
import logging
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

from .models import CartLine, CartSnapshot, ProductRef

logger = logging.getLogger(__name__)

ChangeListener = Callable[[CartSnapshot], None]

class CartError(Exception):
    """Erreur de mutation du panier (entrée invalide, ligne inconnue)."""
    code = "cart_error"

class InvalidQuantityError(CartError):
    code = "invalid_quantity"

class CartLineNotFoundError(CartError):
    code = "cart_line_not_found"

class CartStore:
    def __init__(self, lines: Optional[Iterable[CartLine]] = None, on_change: Optional[ChangeListener] = None):
        self._lines: List[CartLine] = []
        self._item_count = 0
        self._subtotal = 0
        self._on_change = on_change
        for line in lines or []:
            self._merge(line)
        self._recompute()

    @property
    def item_count(self) -> int:
        return self._item_count

    @property
    def subtotal(self) -> int:
        return self._subtotal

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def add(self, product: ProductRef, size: Optional[str] = None, color: Optional[str] = None, qty: int = 1) -> CartLine:
        """
        Ajoute un produit (ou fusionne avec la ligne de même identité).
        - Identité: (product_id, size, color); les quantités s'additionnent.
        - Le prix unitaire retenu est celui de la première insertion.
        """
        if int(qty) < 1:
            raise InvalidQuantityError(f"Quantité invalide: {qty}")
        line = CartLine(
            product_id=str(product.id),
            name=product.name,
            unit_price=int(product.unit_price),
            quantity=int(qty),
            size=size or None,
            color=color or None,
            image=product.image,
        )
        merged = self._merge(line)
        self._changed()
        return merged

    def set_quantity(self, line_id: str, qty: int) -> None:
        """Fixe la quantité d'une ligne; qty <= 0 équivaut à remove(line_id)."""
        if int(qty) <= 0:
            self.remove(line_id)
            return
        index = self._index_of(line_id)
        current = self._lines[index]
        self._lines[index] = replace(current, quantity=int(qty))
        self._changed()

    def remove(self, line_id: str) -> None:
        index = self._index_of(line_id)
        del self._lines[index]
        self._changed()

    def clear(self) -> None:
        self._lines = []
        self._changed()

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(lines=tuple(self._lines), item_count=self._item_count, subtotal=self._subtotal)

    def _index_of(self, line_id: str) -> int:
        for i, line in enumerate(self._lines):
            if line.line_id == line_id:
                return i
        raise CartLineNotFoundError(f"Ligne introuvable: {line_id}")

    def _merge(self, line: CartLine) -> CartLine:
        if line.quantity < 1:
            raise InvalidQuantityError(f"Quantité invalide: {line.quantity}")
        for i, existing in enumerate(self._lines):
            if existing.identity == line.identity:
                merged = replace(existing, quantity=existing.quantity + line.quantity)
                self._lines[i] = merged
                return merged
        self._lines.append(line)
        return line

    def _recompute(self) -> None:
        self._item_count = sum(line.quantity for line in self._lines)
        self._subtotal = sum(line.line_total for line in self._lines)

    def _changed(self) -> None:
        self._recompute()
        if self._on_change is None:
            return
        try:
            self._on_change(self.snapshot())
        except Exception:
            # Le listener (miroir) ne doit jamais casser le panier en mémoire
            logger.exception("cart.store listener failed")
