"""
Inventory domain exceptions

Raised by the services layer and translated to HTTP responses in
medcure.api.exception_handlers.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for inventory engine errors"""

    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(InventoryError):
    """Invalid input, rejected before touching storage"""


class NotFoundError(InventoryError):
    """Unknown product, batch or sale"""

    def __init__(self, resource: str, resource_id):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class InsufficientStockError(InventoryError):
    """Active batches cannot cover the requested quantity"""

    def __init__(self, requested: int, available: int, product_id: Optional[int] = None):
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ConcurrentModificationError(InventoryError):
    """A batch changed between planning and locking; the attempt must be re-planned"""

    retryable = True

    def __init__(self, message: str, batch_id: Optional[int] = None):
        super().__init__(message)
        self.batch_id = batch_id


class AllocationConflictError(InventoryError):
    """Conflicts persisted through every attempt; resubmit the whole sale"""

    retryable = True

    def __init__(self, sale_id: str, attempts: int):
        super().__init__(f"Sale {sale_id} could not be allocated after {attempts} attempts")
        self.sale_id = sale_id
        self.attempts = attempts


class InvalidSaleStateError(InventoryError):
    """Operation not allowed for the sale's current status"""

    def __init__(self, sale_id: str, status: str, message: Optional[str] = None):
        super().__init__(message or f"Sale {sale_id} is {status}")
        self.sale_id = sale_id
        self.status = status


class PersistenceError(InventoryError):
    """Storage failure; nothing was committed"""

    retryable = True
