"""
Modèles de la feature 'orders'.
- CustomerInfo/ShippingAddress: données saisies (contact -> livraison), validées par pydantic.
- Order/OrderItem: lignes durables relues depuis la table 'orders' / 'order_items'.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field, field_validator

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
PAYMENT_STATUS_PAID = "paid"

class ShippingAddress(BaseModel):
    address: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zip_code: str = Field(min_length=3, max_length=20)

    @field_validator("address", "city", "state", "zip_code")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Champ requis")
        return v

    def to_row(self) -> Dict[str, str]:
        # Même forme que le JSON shipping_address historique (zipCode en camelCase)
        return {"address": self.address, "city": self.city, "state": self.state, "zipCode": self.zip_code}

class CustomerInfo(BaseModel):
    email: EmailStr
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=40)
    user_id: Optional[str] = None
    shipping: ShippingAddress

    @property
    def full_name(self) -> str:
        return f"{self.first_name.strip()} {self.last_name.strip()}".strip()

class PaymentDetails(BaseModel):
    payment_method: str = Field(min_length=1, description="PaymentMethod Stripe créé côté client (pm_...)")

def _parse_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None

@dataclass(frozen=True)
class OrderItem:
    product_id: str
    quantity: int
    unit_price: int
    product_name: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    id: Optional[str] = None
    order_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OrderItem":
        return cls(
            id=str(row["id"]) if row.get("id") else None,
            order_id=str(row["order_id"]) if row.get("order_id") else None,
            product_id=str(row.get("product_id") or ""),
            product_name=row.get("product_name"),
            size=row.get("size"),
            color=row.get("color"),
            quantity=int(row.get("quantity") or 0),
            unit_price=int(row.get("unit_price") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "size": self.size,
            "color": self.color,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
        }

@dataclass(frozen=True)
class Order:
    id: str
    payment_reference: str
    customer_name: str
    customer_email: str
    subtotal_amount: int
    shipping_amount: int
    tax_amount: int
    total_amount: int
    currency: str
    status: str
    items: Tuple[OrderItem, ...] = field(default_factory=tuple)
    customer_phone: Optional[str] = None
    shipping_address: Dict[str, Any] = field(default_factory=dict)
    payment_status: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ORDER_STATUS_PENDING

    @property
    def items_total(self) -> int:
        return sum(item.quantity * item.unit_price for item in self.items)

    @classmethod
    def from_row(cls, row: Dict[str, Any], items: Optional[List[Dict[str, Any]]] = None) -> "Order":
        raw_items = items if items is not None else (row.get("order_items") or [])
        return cls(
            id=str(row["id"]),
            payment_reference=str(row["payment_reference"]),
            customer_name=row.get("customer_name") or "",
            customer_email=row.get("customer_email") or "",
            customer_phone=row.get("customer_phone"),
            shipping_address=row.get("shipping_address") or {},
            subtotal_amount=int(row.get("subtotal_amount") or 0),
            shipping_amount=int(row.get("shipping_amount") or 0),
            tax_amount=int(row.get("tax_amount") or 0),
            total_amount=int(row.get("total_amount") or 0),
            currency=row.get("currency") or "usd",
            status=row.get("status") or ORDER_STATUS_PENDING,
            payment_status=row.get("payment_status"),
            user_id=row.get("user_id"),
            created_at=_parse_ts(row.get("created_at")),
            updated_at=_parse_ts(row.get("updated_at")),
            items=tuple(OrderItem.from_row(i) for i in raw_items),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payment_reference": self.payment_reference,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "subtotal_amount": self.subtotal_amount,
            "shipping_amount": self.shipping_amount,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "status": self.status,
            "payment_status": self.payment_status,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_row()
        data["items"] = [item.to_dict() for item in self.items]
        return data
