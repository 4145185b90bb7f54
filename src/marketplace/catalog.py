"""Product catalog storage."""

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from .document_store import DocumentCollection
from .errors import ProductNotFoundError
from .models import Product, _utc_now


@dataclass
class ProductQuery:
    """Listing filters: keyword search, exact-match fields, price bounds and paging."""

    search: str | None = None
    category: str | None = None
    brand: str | None = None
    price_gt: Decimal | None = None
    price_gte: Decimal | None = None
    price_lt: Decimal | None = None
    price_lte: Decimal | None = None
    page: int = 1
    limit: int = 10

    def matches(self, product: Product) -> bool:
        if self.search:
            keyword = self.search.casefold()
            if keyword not in product.name.casefold() and keyword not in product.description.casefold():
                return False
        if self.category is not None and product.category != self.category:
            return False
        if self.brand is not None and product.brand != self.brand:
            return False
        if self.price_gt is not None and not product.price > self.price_gt:
            return False
        if self.price_gte is not None and not product.price >= self.price_gte:
            return False
        if self.price_lt is not None and not product.price < self.price_lt:
            return False
        if self.price_lte is not None and not product.price <= self.price_lte:
            return False
        return True


@dataclass
class ProductPage:
    """One page of a filtered product listing."""

    products: list[Product]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class ProductCatalog(DocumentCollection):
    """Reads and edits catalog products. Stock changes at checkout go through StockLedger."""

    collection = "products"

    def list_products(self) -> list[Product]:
        """List all products in insertion order."""
        return [Product.from_dict(p) for p in self._documents()]

    def find(self, query: ProductQuery) -> ProductPage:
        """Filter products and return the requested page, in insertion order."""
        matching = [p for p in self.list_products() if query.matches(p)]
        start = (query.page - 1) * query.limit
        return ProductPage(
            products=matching[start:start + query.limit],
            total=len(matching),
            page=query.page,
            limit=query.limit,
        )

    def get(self, product_id: str) -> Product | None:
        """Get a product by ID, or None if it was never created or was deleted."""
        for p in self._documents():
            if p["id"] == product_id:
                return Product.from_dict(p)
        return None

    def require(self, product_id: str) -> Product:
        """
        Get a product by ID.

        Raises:
            ProductNotFoundError: If product doesn't exist.
        """
        product = self.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def save(self, product: Product) -> Product:
        """Insert a product, or replace the stored one with the same ID."""
        with self._lock():
            data = self._load_data()
            products = data[self.collection]
            product.updated_at = _utc_now()
            idx = self._index_of(products, "id", product.id)
            if idx is None:
                products.append(product.to_dict())
            else:
                products[idx] = product.to_dict()
            self._save_data(data)
        return product

    def update(self, product_id: str, apply: Callable[[Product], None]) -> Product:
        """
        Change a stored product in place.

        ``apply`` mutates the freshly loaded product while the collection
        lock is held, so concurrent stock adjustments are not overwritten.

        Raises:
            ProductNotFoundError: If product doesn't exist.
            ValueError: If the result has a negative price or stock.
        """
        with self._lock():
            data = self._load_data()
            products = data[self.collection]
            idx = self._index_of(products, "id", product_id)
            if idx is None:
                raise ProductNotFoundError(product_id)

            product = Product.from_dict(products[idx])
            apply(product)
            if product.price < 0:
                raise ValueError("price must be >= 0")
            if product.stock < 0:
                raise ValueError("stock must be >= 0")
            product.updated_at = _utc_now()
            products[idx] = product.to_dict()
            self._save_data(data)
        return product

    def delete(self, product_id: str) -> Product:
        """
        Remove a product from the catalog.

        Raises:
            ProductNotFoundError: If product doesn't exist.
        """
        with self._lock():
            data = self._load_data()
            products = data[self.collection]
            idx = self._index_of(products, "id", product_id)
            if idx is None:
                raise ProductNotFoundError(product_id)
            removed = Product.from_dict(products.pop(idx))
            self._save_data(data)
        return removed
