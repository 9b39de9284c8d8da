# Models
# Batch store, sale ledger and derived product price

from medcure.models.product import Product
from medcure.models.batch import ProductBatch
from medcure.models.sale import Sale, SaleItem
from medcure.models.allocation import BatchAllocation
from medcure.models.price_history import PriceHistory

__all__ = [
    "Product",
    "ProductBatch",
    "Sale",
    "SaleItem",
    "BatchAllocation",
    "PriceHistory",
]
