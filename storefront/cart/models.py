"""
Types du panier (pas de Stripe, pas de DB).
- ProductRef: ce que le catalogue fournit au moment de l'ajout (prix figé en unités mineures).
- CartLine: une sélection distincte (produit + variante) avec sa quantité.
- CartSnapshot: vue immuable du panier, utilisée pour construire la commande.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

DEFAULT_VARIANT = "default"

def _token(value: Optional[str]) -> str:
    # "-" sépare les parties; "~" échappe ("~~", "~h") et marque une variante littérale "default"
    if not value:
        return DEFAULT_VARIANT
    escaped = value.replace("~", "~~").replace("-", "~h")
    return "~" + escaped if escaped == DEFAULT_VARIANT else escaped

def make_line_id(product_id: str, size: Optional[str] = None, color: Optional[str] = None) -> str:
    """
    Identifiant public d'une ligne: "<product_id>-<size|default>-<color|default>".
    Injectif: deux identités distinctes ne partagent jamais le même line_id.
    """
    return "-".join(_token(part) for part in (product_id, size, color))

@dataclass(frozen=True)
class ProductRef:
    id: str
    name: str
    unit_price: int
    image: Optional[str] = None

@dataclass(frozen=True)
class CartLine:
    product_id: str
    name: str
    unit_price: int
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None

    @property
    def identity(self) -> Tuple[str, Optional[str], Optional[str]]:
        # Comparaison des lignes; line_id n'est que l'identifiant public
        return (self.product_id, self.size, self.color)

    @property
    def line_id(self) -> str:
        return make_line_id(self.product_id, self.size, self.color)

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.line_id,
            "product_id": self.product_id,
            "name": self.name,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "size": self.size,
            "color": self.color,
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartLine":
        return cls(
            product_id=str(data["product_id"]),
            name=str(data.get("name") or "Product"),
            unit_price=int(data["unit_price"]),
            quantity=int(data["quantity"]),
            size=data.get("size") or None,
            color=data.get("color") or None,
            image=data.get("image") or None,
        )

@dataclass(frozen=True)
class CartSnapshot:
    lines: Tuple[CartLine, ...] = field(default_factory=tuple)
    item_count: int = 0
    subtotal: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [line.to_dict() for line in self.lines],
            "item_count": self.item_count,
            "subtotal": self.subtotal,
        }
