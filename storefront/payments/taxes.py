"""
Taux de taxe selon l'état de livraison (table 'tax_rates').
- Taux stockés en pourcentage (8.25 => 8.25 %), convertis en fraction Decimal.
- Un seul taux actif par (pays, état).
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import storefront.infra.supabase_client as supabase_client
from storefront.config import TAX_COUNTRY

logger = logging.getLogger(__name__)

class TaxRateUnavailableError(Exception):
    """Lecture de la table tax_rates impossible (réseau, Supabase)."""

def normalize_state(state: Optional[str]) -> str:
    return (state or "").strip().upper()

# module storefront.payments.taxes
def get_state_tax_rate(state: str, country: str = TAX_COUNTRY) -> Optional[Decimal]:
    """
    Retourne le taux actif de l'état (fraction: Decimal("0.0825")).
    - None si l'état est vide, inconnu ou si le taux stocké est illisible.
    - Lève TaxRateUnavailableError si la lecture échoue.
    """
    code = normalize_state(state)
    if not code:
        return None
    try:
        res = (
            supabase_client.get_supabase()
            .table("tax_rates")
            .select("rate")
            .eq("country", country)
            .eq("state", code)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        rows = res.data or []
    except Exception as exc:
        logger.exception("payments.taxes.get_state_tax_rate failed state=%s", code)
        raise TaxRateUnavailableError(str(exc)) from exc
    if not rows:
        logger.info("payments.taxes aucun taux actif state=%s country=%s", code, country)
        return None
    try:
        percent = Decimal(str(rows[0].get("rate")))
    except (InvalidOperation, AttributeError):
        logger.warning("payments.taxes taux illisible state=%s", code)
        return None
    if percent < 0:
        logger.warning("payments.taxes taux négatif ignoré state=%s rate=%s", code, percent)
        return None
    return percent / Decimal(100)
