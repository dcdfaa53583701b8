"""
Logique de prix pure (pas de Stripe, pas de DB).
Tous les montants sont des entiers en unités mineures (cents) pour éviter toute dérive flottante.
"""
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Optional

from storefront.config import FREE_SHIPPING_THRESHOLD, FLAT_SHIPPING_AMOUNT, TAX_RATE, CHECKOUT_CURRENCY
from storefront.cart.models import CartSnapshot

def to_minor_units(value: Any) -> int:
    """
    Convertit un prix catalogue (unités majeures: "19.99", 19.99, "$19.99") en cents.
    - Arrondi half-up au cent.
    - Lève ValueError si la valeur n'est pas un nombre.
    """
    text = str(value if value is not None else "").replace("$", "").strip()
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Prix invalide: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def to_major_units(amount: int) -> float:
    """Cents -> unités majeures, pour l'affichage (emails)."""
    return float(Decimal(int(amount)) / Decimal(100))

@dataclass(frozen=True)
class CartTotals:
    subtotal: int
    shipping: int
    tax: int
    total: int
    currency: str = CHECKOUT_CURRENCY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "tax": self.tax,
            "total": self.total,
            "currency": self.currency,
        }

@dataclass(frozen=True)
class PricingPolicy:
    free_shipping_threshold: int = FREE_SHIPPING_THRESHOLD
    flat_shipping: int = FLAT_SHIPPING_AMOUNT
    tax_rate: Decimal = TAX_RATE
    currency: str = CHECKOUT_CURRENCY

    def shipping_for(self, subtotal: int) -> int:
        # Livraison offerte strictement au-dessus du seuil
        return 0 if subtotal > self.free_shipping_threshold else self.flat_shipping

    def with_tax_rate(self, tax_rate: Optional[Decimal]) -> "PricingPolicy":
        """Même politique avec le taux de l'état de livraison (None: taux configuré)."""
        if tax_rate is None:
            return self
        return replace(self, tax_rate=Decimal(tax_rate))

    def tax_for(self, subtotal: int) -> int:
        return int((Decimal(subtotal) * Decimal(self.tax_rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def totals(self, snapshot: CartSnapshot) -> CartTotals:
        subtotal = sum(line.unit_price * line.quantity for line in snapshot.lines)
        shipping = self.shipping_for(subtotal)
        tax = self.tax_for(subtotal)
        return CartTotals(
            subtotal=subtotal,
            shipping=shipping,
            tax=tax,
            total=subtotal + shipping + tax,
            currency=self.currency,
        )

def default_policy() -> PricingPolicy:
    return PricingPolicy()
