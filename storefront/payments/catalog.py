"""
Accès catalogue pour le checkout (table 'products').
- Résout un produit pour l'ajout au panier (nom + prix figé).
- Revalide côté serveur les prix des lignes avant de créer un intent de paiement.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

import storefront.infra.supabase_client as supabase_client
from storefront.cart.models import CartSnapshot, ProductRef
from .pricing import to_minor_units

logger = logging.getLogger(__name__)

class CatalogUnavailableError(Exception):
    """Lecture du catalogue impossible (réseau, Supabase)."""

# module storefront.payments.catalog
def fetch_products_by_ids(ids: List[str]) -> List[dict]:
    """
    Récupère les produits par leurs IDs (table 'products').
    - Retourne [] si ids vide.
    - Lève CatalogUnavailableError si la lecture échoue.
    """
    if not ids:
        return []
    try:
        res = (
            supabase_client.get_supabase()
            .table("products")
            .select("id, name, price, image")
            .in_("id", [str(i) for i in ids])
            .execute()
        )
        return res.data or []
    except Exception as exc:
        logger.exception("payments.catalog.fetch_products_by_ids failed ids=%s", ids)
        raise CatalogUnavailableError(str(exc)) from exc

def get_products_map(ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Retourne un dict {id: produit} à partir d'une liste d'IDs."""
    products = fetch_products_by_ids(list(ids))
    return {str(p.get("id")): p for p in products}

def get_product(product_id: str) -> Optional[ProductRef]:
    """
    Construit un ProductRef depuis le catalogue (prix converti en cents).
    - None si le produit est introuvable ou son prix illisible.
    """
    product = get_products_map([product_id]).get(str(product_id))
    if not product:
        return None
    try:
        unit_price = to_minor_units(product.get("price"))
    except ValueError:
        logger.warning("payments.catalog prix illisible product_id=%s", product_id)
        return None
    return ProductRef(
        id=str(product_id),
        name=product.get("name") or "Product",
        unit_price=unit_price,
        image=product.get("image"),
    )

def find_price_mismatches(snapshot: CartSnapshot) -> List[Dict[str, Any]]:
    """
    Compare le prix figé de chaque ligne au prix catalogue courant.
    Retour: [{"product_id", "cart_price", "catalog_price"}] (catalog_price None si introuvable).
    """
    ids = sorted({line.product_id for line in snapshot.lines})
    products = get_products_map(ids)
    mismatches: List[Dict[str, Any]] = []
    for line in snapshot.lines:
        product = products.get(line.product_id)
        catalog_price: Optional[int] = None
        if product:
            try:
                catalog_price = to_minor_units(product.get("price"))
            except ValueError:
                catalog_price = None
        if catalog_price != line.unit_price:
            mismatches.append({
                "product_id": line.product_id,
                "cart_price": line.unit_price,
                "catalog_price": catalog_price,
            })
    return mismatches
