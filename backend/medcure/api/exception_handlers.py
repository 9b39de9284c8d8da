"""
Exception handlers
Maps inventory domain errors to HTTP responses.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from medcure.core.errors import (
    AllocationConflictError, InsufficientStockError, InvalidSaleStateError,
    InventoryError, NotFoundError, PersistenceError, ValidationError
)
from medcure.core.logging_config import get_logger

logger = get_logger(__name__)

STATUS_BY_ERROR = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientStockError, status.HTTP_409_CONFLICT),
    (InvalidSaleStateError, status.HTTP_409_CONFLICT),
    (AllocationConflictError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(exc: InventoryError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def inventory_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Consistent body for domain errors; retryable tells the POS whether to resubmit"""
    if not isinstance(exc, InventoryError):
        raise exc

    code = status_for(exc)
    content = {
        "error": True,
        "type": exc.__class__.__name__,
        "message": exc.message,
        "retryable": exc.retryable,
        "status_code": code,
    }
    if isinstance(exc, InsufficientStockError):
        content.update(product_id=exc.product_id, requested=exc.requested, available=exc.available)
    elif isinstance(exc, AllocationConflictError):
        content.update(attempts=exc.attempts)

    if code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")

    return JSONResponse(status_code=code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InventoryError, inventory_exception_handler)
