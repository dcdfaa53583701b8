"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Registre des sessions de checkout (app.state.checkout_sessions), avec miroir Redis du panier si configuré.
- FastAPILimiter (Redis) avec options de test (fakeredis).
- Arrêt: attend les notifications encore en vol.
Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement le rate limiting (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
"""
import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter
import redis.asyncio as aioredis

from storefront.cart.mirror import build_cart_mirror
from storefront.checkout.sessions import CheckoutSessionRegistry

async def init_rate_limiter(app: FastAPI, logger: logging.Logger) -> None:
    try:
        if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
            app.state.rate_limit_enabled = False
            logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
            return

        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            from fakeredis.aioredis import FakeRedis  # tests only
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)

        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning("Rate limiting falling back to local in-memory due to init error: %s", e)
        else:
            app.state.rate_limit_enabled = False
            logger.warning("Rate limiting disabled due to init error: %s", e)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("uvicorn.error")
    registry = getattr(app.state, "checkout_sessions", None)
    if registry is None:
        registry = CheckoutSessionRegistry(mirror=build_cart_mirror())
        app.state.checkout_sessions = registry
    logger.info("Checkout sessions ready (cart mirror: %s)", "on" if registry.mirror else "off")

    await init_rate_limiter(app, logger)
    try:
        yield
    finally:
        await registry.notifier.drain()
        logger.info("Checkout shutdown: pending notifications drained")
