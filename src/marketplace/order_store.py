"""Order storage."""

from .document_store import DocumentCollection
from .errors import ConcurrentUpdateError, OrderNotFoundError
from .models import Order, OrderStatus, _utc_now


def _newest_first(orders: list[Order]) -> list[Order]:
    # Walk newest insertions first so equal timestamps keep that order.
    return sorted(reversed(orders), key=lambda o: o.created_at, reverse=True)


class OrderStore(DocumentCollection):
    """Persists orders. Orders are never deleted."""

    collection = "orders"

    def create(self, order: Order) -> Order:
        """Persist a new order."""
        with self._lock():
            data = self._load_data()
            data[self.collection].append(order.to_dict())
            self._save_data(data)
        return order

    def find_by_id(self, order_id: str) -> Order | None:
        """Get an order by ID, or None."""
        for o in self._documents():
            if o["id"] == order_id:
                return Order.from_dict(o)
        return None

    def find_by_user(self, user_id: str) -> list[Order]:
        """List a user's orders, newest first."""
        orders = [Order.from_dict(o) for o in self._documents() if o["user_id"] == user_id]
        return _newest_first(orders)

    def find_all(self) -> list[Order]:
        """List every order, newest first."""
        return _newest_first([Order.from_dict(o) for o in self._documents()])

    def update(self, order: Order, expected_status: OrderStatus) -> Order:
        """
        Write an order back if its stored status is still expected_status.

        Raises:
            OrderNotFoundError: If the order doesn't exist.
            ConcurrentUpdateError: If another writer changed the status first.
        """
        with self._lock():
            data = self._load_data()
            orders = data[self.collection]
            idx = self._index_of(orders, "id", order.id)
            if idx is None:
                raise OrderNotFoundError(order.id)

            found = orders[idx].get("status")
            if found != expected_status.value:
                raise ConcurrentUpdateError(order.id, expected_status.value, found)

            order.updated_at = _utc_now()
            orders[idx] = order.to_dict()
            self._save_data(data)
        return order
