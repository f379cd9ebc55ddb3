import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    """Base de los errores del flujo de caja. `code` viaja en la respuesta HTTP."""

    status_code = 400
    code = "checkout_error"

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class EmptyCart(CheckoutError):
    status_code = 422
    code = "empty_cart"


class StockExceeded(CheckoutError):
    status_code = 409
    code = "stock_exceeded"


class TenderImbalance(CheckoutError):
    status_code = 422
    code = "tender_imbalance"


class InvalidTender(CheckoutError):
    status_code = 422
    code = "invalid_tender"


class InvalidDiscount(CheckoutError):
    status_code = 422
    code = "invalid_discount"


class InvalidInstallmentPlan(CheckoutError):
    status_code = 422
    code = "invalid_installment_plan"


class PersistenceFailure(CheckoutError):
    status_code = 503
    code = "persistence_failure"
    retryable = True


class SessionExpired(CheckoutError):
    status_code = 401
    code = "session_expired"


class StoreNotConfigured(CheckoutError):
    status_code = 412
    code = "store_setup_required"


class NotFound(CheckoutError):
    status_code = 404
    code = "not_found"


class CheckoutBusy(CheckoutError):
    status_code = 409
    code = "checkout_busy"


async def _checkout_error_handler(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    body = {"detail": exc.message, "code": exc.code}
    if exc.context:
        body["context"] = exc.context
    if isinstance(exc, PersistenceFailure):
        body["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=body)


def install_error_handlers(app):
    app.add_exception_handler(CheckoutError, _checkout_error_handler)
