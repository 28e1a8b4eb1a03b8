"""
Typed failures raised by the marketplace services.

Each error carries the HTTP status it maps to; ``main.py`` registers a single
handler that renders ``{"detail": message}`` like ``HTTPException`` does.
"""
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(MarketplaceError):
    status_code = 404
    default_message = "Not found"


class ProductNotFound(NotFound):
    default_message = "Product not found"


class OrderNotFound(NotFound):
    default_message = "Order not found"


class CartItemNotFound(NotFound):
    default_message = "Item not found in cart"


class VerificationNotFound(NotFound):
    default_message = "Verification not found"


class UserNotFound(NotFound):
    default_message = "User not found"


class Unauthenticated(MarketplaceError):
    status_code = 401
    default_message = "Not authenticated"


class Forbidden(MarketplaceError):
    status_code = 403
    default_message = "Access denied"


class ValidationError(MarketplaceError):
    status_code = 400
    default_message = "Invalid request"


class EmptyCart(ValidationError):
    default_message = "Cart is empty"


class ProductUnavailable(ValidationError):
    default_message = "Product is not available"


class Conflict(MarketplaceError):
    status_code = 409
    default_message = "Conflict"


class InsufficientStock(Conflict):
    default_message = "Insufficient stock"


class InvalidTransition(Conflict):
    default_message = "Invalid status transition"


class QuotaExceeded(MarketplaceError):
    status_code = 507
    default_message = "Storage quota exceeded"


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
