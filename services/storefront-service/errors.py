"""Domain exceptions and their HTTP translation."""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for errors that map onto a client-facing response."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(StoreError):
    status_code = 404


class PermissionDeniedError(StoreError):
    status_code = 403


class BusinessRuleError(StoreError):
    """A request that is well formed but violates a business rule."""

    status_code = 400


class InsufficientStockError(BusinessRuleError):
    pass


class ProductUnavailableError(BusinessRuleError):
    pass


class InvalidCouponError(BusinessRuleError):
    pass


class InvalidStatusTransitionError(BusinessRuleError):
    pass


class PaymentDeclinedError(BusinessRuleError):
    """The provider answered but refused the payment operation."""


class WebhookSignatureError(BusinessRuleError):
    pass


class PaymentGatewayError(StoreError):
    """A payment provider rejected a call or could not be reached."""

    status_code = 502


class EmailDeliveryError(Exception):
    """Raised by email senders; callers treat delivery as best effort."""


def error_body(message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return body


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", extra={
            "path": request.url.path,
            "error": exc.message,
            "details": exc.details,
        })
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.details))


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content=error_body("Validation failed", details))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
