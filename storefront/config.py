# storefront.config
from pathlib import Path
from decimal import Decimal
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du service de checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, Redis)
- Expose la politique de prix (devise, frais de port, taxe) en unités mineures
- Paramètre l'enregistrement des commandes et les notifications
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

def _bool_env(name: str, default: bool) -> bool:
    raw = _clean_env(os.getenv(name) or "").lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y")

# Supabase: URLs et clés (anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stripe: clés publiques/privées
STRIPE_PUBLIC_KEY = _clean_env(os.getenv("STRIPE_PUBLIC_KEY") or os.getenv("VITE_STRIPE_PUBLISHABLE_KEY") or "")
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")

# Politique de prix (montants en unités mineures: cents)
CHECKOUT_CURRENCY = _clean_env(os.getenv("CHECKOUT_CURRENCY") or "usd").lower()
MIN_CHARGE_AMOUNT = _int_env("MIN_CHARGE_AMOUNT", 50)
FREE_SHIPPING_THRESHOLD = _int_env("FREE_SHIPPING_THRESHOLD", 7500)
FLAT_SHIPPING_AMOUNT = _int_env("FLAT_SHIPPING_AMOUNT", 999)
TAX_RATE = Decimal(_clean_env(os.getenv("TAX_RATE") or "0.08"))

# Taxe selon l'état de livraison (table 'tax_rates', taux en pourcentage); TAX_RATE sert de repli
STATE_TAX_LOOKUP = _bool_env("STATE_TAX_LOOKUP", True)
TAX_COUNTRY = _clean_env(os.getenv("TAX_COUNTRY") or "US").upper()

# Revalidation des prix catalogue avant création de l'intent
VERIFY_CATALOG_PRICES = _bool_env("VERIFY_CATALOG_PRICES", True)

# Commandes: délai au-delà duquel un en-tête 'pending' sans lignes est une anomalie
ORDER_PENDING_GRACE_SECONDS = _int_env("ORDER_PENDING_GRACE_SECONDS", 60)

# Miroir du panier (Redis). Vide => miroir désactivé
CART_MIRROR_REDIS_URL = _clean_env(os.getenv("CART_MIRROR_REDIS_URL") or "")
CART_MIRROR_TTL_SECONDS = _int_env("CART_MIRROR_TTL_SECONDS", 7 * 24 * 3600)

# Registre des sessions en mémoire: éviction des sessions inactives / terminées
CHECKOUT_SESSION_TTL_SECONDS = _int_env("CHECKOUT_SESSION_TTL_SECONDS", 2 * 3600)
CHECKOUT_TERMINAL_RETENTION_SECONDS = _int_env("CHECKOUT_TERMINAL_RETENTION_SECONDS", 15 * 60)

# Notifications (Edge Function Supabase)
NOTIFICATIONS_ENABLED = _bool_env("NOTIFICATIONS_ENABLED", True)
ORDER_NOTIFICATION_FUNCTION = _clean_env(os.getenv("ORDER_NOTIFICATION_FUNCTION") or "send-order-confirmation")
SUPPORT_EMAIL = _clean_env(os.getenv("SUPPORT_EMAIL") or "support@nodistraxionz.com")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
