"""Per-user shopping cart storage."""

from .document_store import DocumentCollection
from .errors import CartItemNotFoundError, CartNotFoundError, InvalidQuantityError
from .models import Cart, _utc_now


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantityError(quantity)


class CartStore(DocumentCollection):
    """One cart per user, keyed by user ID."""

    collection = "carts"

    def get(self, user_id: str) -> Cart | None:
        """Get the user's cart, or None if they have none."""
        for c in self._documents():
            if c["user_id"] == user_id:
                return Cart.from_dict(c)
        return None

    def add_item(self, user_id: str, product_id: str, quantity: int) -> Cart:
        """
        Add a product to the user's cart, creating the cart on first add.

        Adding a product already in the cart increases its quantity.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer.
        """
        _check_quantity(quantity)
        with self._lock():
            data = self._load_data()
            carts = data[self.collection]
            idx = self._index_of(carts, "user_id", user_id)
            if idx is None:
                cart = Cart.create(user_id)
                cart.merge_item(product_id, quantity)
                carts.append(cart.to_dict())
            else:
                cart = Cart.from_dict(carts[idx])
                cart.merge_item(product_id, quantity)
                self._touch(cart)
                carts[idx] = cart.to_dict()
            self._save_data(data)
        return cart

    def update_item(self, user_id: str, product_id: str, quantity: int) -> Cart:
        """
        Set the quantity of a line item.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer.
            CartNotFoundError: If the user has no cart.
            CartItemNotFoundError: If the product is not in the cart.
        """
        _check_quantity(quantity)
        with self._lock():
            data = self._load_data()
            carts = data[self.collection]
            idx = self._index_of(carts, "user_id", user_id)
            if idx is None:
                raise CartNotFoundError(user_id)

            cart = Cart.from_dict(carts[idx])
            item = cart.find_item(product_id)
            if item is None:
                raise CartItemNotFoundError(product_id)
            item.quantity = quantity
            self._touch(cart)
            carts[idx] = cart.to_dict()
            self._save_data(data)
        return cart

    def remove_item(self, user_id: str, product_id: str) -> Cart:
        """
        Remove a line item. The (possibly empty) cart is kept.

        Raises:
            CartNotFoundError: If the user has no cart.
            CartItemNotFoundError: If the product is not in the cart.
        """
        with self._lock():
            data = self._load_data()
            carts = data[self.collection]
            idx = self._index_of(carts, "user_id", user_id)
            if idx is None:
                raise CartNotFoundError(user_id)

            cart = Cart.from_dict(carts[idx])
            remaining = [i for i in cart.items if i.product_id != product_id]
            if len(remaining) == len(cart.items):
                raise CartItemNotFoundError(product_id)
            cart.items = remaining
            self._touch(cart)
            carts[idx] = cart.to_dict()
            self._save_data(data)
        return cart

    def delete(self, cart_id: str, expected_version: int | None = None) -> Cart | None:
        """
        Delete a cart entirely.

        Args:
            cart_id: Cart to delete.
            expected_version: If given, delete only when the stored cart still
                has this version (compare-and-delete).

        Returns:
            The deleted cart, or None if it was already gone or had changed.
        """
        with self._lock():
            data = self._load_data()
            carts = data[self.collection]
            idx = self._index_of(carts, "id", cart_id)
            if idx is None:
                return None
            if expected_version is not None and carts[idx].get("version") != expected_version:
                return None
            removed = Cart.from_dict(carts.pop(idx))
            self._save_data(data)
        return removed

    def restore(self, cart: Cart) -> Cart:
        """
        Put a deleted cart back.

        If the user started a new cart in the meantime, the old line items
        are merged into it instead.
        """
        with self._lock():
            data = self._load_data()
            carts = data[self.collection]
            idx = self._index_of(carts, "user_id", cart.user_id)
            if idx is None:
                restored = Cart.from_dict(cart.to_dict())
                self._touch(restored)
                carts.append(restored.to_dict())
            else:
                restored = Cart.from_dict(carts[idx])
                for item in cart.items:
                    restored.merge_item(item.product_id, item.quantity)
                self._touch(restored)
                carts[idx] = restored.to_dict()
            self._save_data(data)
        return restored

    @staticmethod
    def _touch(cart: Cart) -> None:
        cart.version += 1
        cart.updated_at = _utc_now()
