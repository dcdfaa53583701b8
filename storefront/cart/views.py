import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from storefront.checkout.sessions import CheckoutSession
from storefront.checkout.views import get_checkout_session
from storefront.payments import catalog

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout/sessions/{session_id}/cart", tags=["Cart API"])

class AddItemRequest(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None

class UpdateQuantityRequest(BaseModel):
    quantity: int

# module storefront.cart.views
@router.post("/items")
async def add_item(body: AddItemRequest, session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    """
    Ajoute un produit au panier (fusion si même produit/taille/couleur).
    - Nom et prix unitaire viennent du catalogue, jamais du client.
    - 404 si produit inconnu, 503 si catalogue indisponible, 409 si panier verrouillé.
    """
    try:
        product = await run_in_threadpool(catalog.get_product, body.product_id)
    except catalog.CatalogUnavailableError:
        raise HTTPException(status_code=503, detail="Catalogue indisponible")
    if product is None:
        raise HTTPException(status_code=404, detail="Produit introuvable")
    return await session.mutate_cart(lambda cart: cart.add(product, size=body.size, color=body.color, qty=body.quantity))

@router.patch("/items/{line_id}")
async def update_item(line_id: str, body: UpdateQuantityRequest, session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    """Fixe la quantité d'une ligne (<= 0 retire la ligne)."""
    return await session.mutate_cart(lambda cart: cart.set_quantity(line_id, body.quantity))

@router.delete("/items/{line_id}")
async def remove_item(line_id: str, session: CheckoutSession = Depends(get_checkout_session)) -> Dict[str, Any]:
    return await session.mutate_cart(lambda cart: cart.remove(line_id))
