"""
Gestionnaires d'exceptions.
- CheckoutError (et sous-classes): JSON {"detail", "kind", "code", "retryable", "context"?} avec le status de la classe.
- CartError: 404 si ligne inconnue, 400 sinon.
- HTTPException: body JSON FastAPI standard.
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from storefront.cart.store import CartError, CartLineNotFoundError
from storefront.checkout.errors import CheckoutError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        logger.info("checkout error path=%s code=%s", request.url.path, exc.code)
        payload = exc.to_payload()
        context = payload.pop("detail", None)
        content = {"detail": exc.message, **payload}
        if context is not None:
            content["context"] = context
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(CartError)
    async def cart_error_handler(request: Request, exc: CartError):
        status = 404 if isinstance(exc, CartLineNotFoundError) else 400
        return JSONResponse(status_code=status, content={"detail": str(exc), "code": exc.code})

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
