"""
Module 'payments' (feature-first): point d'entrée public.
Réunit prix, catalogue, metadata Stripe, client Stripe, Intent Broker et adaptateur de confirmation.
"""

from .pricing import CartTotals, PricingPolicy, default_policy, to_minor_units, to_major_units
from .catalog import CatalogUnavailableError, get_product, get_products_map, find_price_mismatches
from .taxes import TaxRateUnavailableError, get_state_tax_rate
from .metadata import make_intent_metadata
from .stripe_client import (
    require_stripe,
    create_payment_intent,
    confirm_payment_intent,
    retrieve_payment_intent,
    cancel_payment_intent,
)
from .intents import CheckoutIntent, IntentBroker
from .confirmation import PaymentConfirmationAdapter, PaymentOutcome, PaymentStatus, outcome_from_intent

__all__ = [
    # pricing
    "CartTotals",
    "PricingPolicy",
    "default_policy",
    "to_minor_units",
    "to_major_units",
    # catalog
    "CatalogUnavailableError",
    "get_product",
    "get_products_map",
    "find_price_mismatches",
    # taxes
    "TaxRateUnavailableError",
    "get_state_tax_rate",
    # metadata
    "make_intent_metadata",
    # stripe
    "require_stripe",
    "create_payment_intent",
    "confirm_payment_intent",
    "retrieve_payment_intent",
    "cancel_payment_intent",
    # broker / confirmation
    "CheckoutIntent",
    "IntentBroker",
    "PaymentConfirmationAdapter",
    "PaymentOutcome",
    "PaymentStatus",
    "outcome_from_intent",
]
