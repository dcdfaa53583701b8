from typing import Any, Dict
from urllib.parse import urlparse
import socket

import storefront.infra.supabase_client as supabase_client
from storefront.config import SUPABASE_URL, STRIPE_SECRET_KEY, CART_MIRROR_REDIS_URL

CHECKOUT_TABLES = ("orders", "order_items", "products", "tax_rates")

def _check_table(client, name: str) -> Dict[str, Any]:
    try:
        res = client.table(name).select("id").limit(1).execute()
        return {"ok": True, "rows": len(res.data or [])}
    except Exception as e:
        return {"ok": False, "error": str(e)}

def health_supabase_info() -> Dict[str, Any]:
    """Diagnostic Supabase: résolution DNS puis lecture d'une ligne par table du checkout."""
    parsed = urlparse(SUPABASE_URL) if SUPABASE_URL else None
    hostname = parsed.hostname if parsed else None
    dns_ok = None
    dns_error = None
    if hostname:
        try:
            socket.getaddrinfo(hostname, 443)
            dns_ok = True
        except OSError as e:
            dns_ok = False
            dns_error = str(e)

    info: Dict[str, Any] = {
        "supabase_url": SUPABASE_URL,
        "hostname": hostname,
        "dns_ok": dns_ok,
        "dns_error": dns_error,
        "connect_ok": False,
        "error": None,
        "tables": {},
    }
    try:
        client = supabase_client.get_supabase()
        for t in CHECKOUT_TABLES:
            info["tables"][t] = _check_table(client, t)
        info["connect_ok"] = True
    except Exception as e:
        info["error"] = str(e)
    return info

def health_config_info() -> Dict[str, Any]:
    # Présence des secrets uniquement, jamais leur valeur
    return {
        "stripe_configured": bool(STRIPE_SECRET_KEY),
        "stripe_mode": "live" if STRIPE_SECRET_KEY.startswith("sk_live") else ("test" if STRIPE_SECRET_KEY else None),
        "cart_mirror": bool(CART_MIRROR_REDIS_URL),
    }
