"""Atomic stock adjustments on catalog products."""

import logging

from .document_store import DocumentCollection
from .errors import InsufficientStockError, ProductNotFoundError
from .models import _utc_now

logger = logging.getLogger(__name__)


class StockLedger(DocumentCollection):
    """
    Conditional stock updates against the products collection.

    Every adjustment is a single read-check-write under the collection lock,
    so concurrent decrements can never drive stock below zero.
    """

    collection = "products"

    def available(self, product_id: str) -> int:
        """
        Current stock of a product.

        Raises:
            ProductNotFoundError: If product doesn't exist.
        """
        for p in self._documents():
            if p["id"] == product_id:
                return p["stock"]
        raise ProductNotFoundError(product_id)

    def adjust(self, product_id: str, delta: int) -> int:
        """
        Add delta to a product's stock; negative deltas apply only if enough stock.

        Args:
            product_id: Product to adjust.
            delta: Signed change in stock.

        Returns:
            The stock after the adjustment.

        Raises:
            ProductNotFoundError: If product doesn't exist.
            InsufficientStockError: If the result would be negative.
        """
        with self._lock():
            data = self._load_data()
            products = data[self.collection]
            idx = self._index_of(products, "id", product_id)
            if idx is None:
                raise ProductNotFoundError(product_id)

            product = products[idx]
            new_stock = product["stock"] + delta
            if new_stock < 0:
                raise InsufficientStockError(product_id, -delta, product["stock"])

            product["stock"] = new_stock
            product["updated_at"] = _utc_now()
            self._save_data(data)

        logger.debug("Stock of %s adjusted by %+d to %d", product_id, delta, new_stock)
        return new_stock

    def decrement(self, product_id: str, quantity: int) -> int:
        """Take quantity out of stock if available."""
        return self.adjust(product_id, -quantity)

    def increment(self, product_id: str, quantity: int) -> int:
        """Put quantity back into stock."""
        return self.adjust(product_id, quantity)
