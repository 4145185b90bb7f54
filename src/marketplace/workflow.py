"""Order placement and status workflow."""

import functools
import logging
from decimal import Decimal
from typing import Any

from .cart_store import CartStore
from .catalog import ProductCatalog
from .errors import (
    AlreadyDeliveredError,
    CartAlreadyCheckedOutError,
    EmptyCartError,
    InvalidStatusError,
    InvalidStatusTransitionError,
    MissingStatusError,
    OrderNotFoundError,
    ProductNotFoundError,
    ProductUnavailableError,
)
from .models import (
    Cart,
    Order,
    OrderItem,
    OrderListing,
    OrderStatus,
    PaymentInfo,
    ReconciliationEntry,
    ShippingInfo,
    _utc_now,
    can_transition,
    round2,
)
from .order_store import OrderStore
from .pricing import compute_pricing
from .reconciliation import ReconciliationJournal
from .saga import Saga
from .settings import Settings
from .stock_ledger import StockLedger

logger = logging.getLogger(__name__)


class OrderWorkflow:
    """
    Turns carts into orders and drives the order status state machine.

    Checkout consumes the cart, reserves stock and records the order as one
    saga: if any step fails, the earlier steps are undone before the error
    reaches the caller.
    """

    def __init__(
        self,
        settings: Settings,
        carts: CartStore,
        catalog: ProductCatalog,
        stock: StockLedger,
        orders: OrderStore,
        journal: ReconciliationJournal | None = None,
    ):
        self.settings = settings
        self.carts = carts
        self.catalog = catalog
        self.stock = stock
        self.orders = orders
        self.journal = journal

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrderWorkflow":
        """Build a workflow over the JSON stores in settings.data_dir."""
        data_dir = settings.data_dir
        timeout = settings.lock_timeout
        return cls(
            settings=settings,
            carts=CartStore(data_dir, timeout),
            catalog=ProductCatalog(data_dir, timeout),
            stock=StockLedger(data_dir, timeout),
            orders=OrderStore(data_dir, timeout),
            journal=ReconciliationJournal(data_dir, timeout),
        )

    # --- Checkout ---

    def place_order(
        self,
        user_id: str,
        shipping_info: ShippingInfo,
        payment_info: PaymentInfo,
    ) -> Order:
        """
        Create an order from the user's cart.

        Raises:
            EmptyCartError: If the user has no cart or it has no items.
            ProductUnavailableError: If a cart product was removed from the catalog.
            InsufficientStockError: If a product doesn't have enough stock.
            CartAlreadyCheckedOutError: If the cart changed or was consumed concurrently.
        """
        cart = self.carts.get(user_id)
        if cart is None or not cart.items:
            raise EmptyCartError(user_id)

        order_items = self._snapshot_items(cart)
        pricing = compute_pricing(order_items, self.settings.pricing)
        order = Order.create(
            user_id=user_id,
            shipping_info=shipping_info,
            order_items=order_items,
            payment_info=payment_info,
            pricing=pricing,
        )

        saga = Saga(f"place_order:{order.id}", self.journal)
        saga.add_step(
            "consume_cart",
            functools.partial(self._consume_cart, cart),
            compensation=functools.partial(self.carts.restore, cart),
            compensation_record={"type": "restore_cart", "cart": cart.to_dict()},
        )
        for item in order_items:
            saga.add_step(
                f"reserve_stock:{item.product_id}",
                functools.partial(self._reserve_stock, item),
                compensation=functools.partial(
                    self._adjust_if_listed, item.product_id, item.quantity
                ),
                compensation_record={
                    "type": "adjust_stock",
                    "product_id": item.product_id,
                    "delta": item.quantity,
                },
            )
        saga.add_step("create_order", functools.partial(self.orders.create, order))
        saga.run()

        logger.info(
            "Order %s placed by %s: %d item(s), total %s",
            order.id, user_id, len(order_items), order.total_price,
        )
        return order

    def _snapshot_items(self, cart: Cart) -> list[OrderItem]:
        """Freeze current catalog name, price and image for each line item."""
        items = []
        for line in cart.items:
            product = self.catalog.get(line.product_id)
            if product is None:
                raise ProductUnavailableError(line.product_id)
            items.append(
                OrderItem(
                    product_id=product.id,
                    name=product.name,
                    quantity=line.quantity,
                    price=product.price,
                    image=product.image_url,
                )
            )
        return items

    def _consume_cart(self, cart: Cart) -> Cart:
        removed = self.carts.delete(cart.id, expected_version=cart.version)
        if removed is None:
            raise CartAlreadyCheckedOutError(cart.user_id)
        return removed

    def _reserve_stock(self, item: OrderItem) -> int:
        try:
            return self.stock.decrement(item.product_id, item.quantity)
        except ProductNotFoundError:
            raise ProductUnavailableError(item.product_id) from None

    # --- Listing ---

    def list_my_orders(self, user_id: str) -> list[Order]:
        """The caller's orders, newest first."""
        return self.orders.find_by_user(user_id)

    def list_all_orders(self) -> OrderListing:
        """Every order, newest first, with the sum of their totals."""
        orders = self.orders.find_all()
        total = sum((o.total_price for o in orders), Decimal(0))
        return OrderListing(orders=orders, total_amount=round2(total))

    # --- Status transitions ---

    def update_order_status(self, order_id: str, status: str | None) -> Order:
        """
        Move an order to a new status.

        Cancelling puts every item's quantity back into stock. Cancelling an
        already cancelled order changes nothing.

        Raises:
            OrderNotFoundError: If the order doesn't exist.
            AlreadyDeliveredError: If the order was delivered.
            MissingStatusError: If no status was given.
            InvalidStatusError: If status is not a known order status.
            InvalidStatusTransitionError: If the transition is not allowed.
            ConcurrentUpdateError: If the order changed status concurrently.
        """
        order = self.orders.find_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status is OrderStatus.DELIVERED:
            raise AlreadyDeliveredError(order_id)
        if not status:
            raise MissingStatusError()

        target = self._parse_status(status)
        current = order.status
        if current is OrderStatus.CANCELLED and target is OrderStatus.CANCELLED:
            return order
        if not can_transition(current, target):
            raise InvalidStatusTransitionError(current.value, target.value)

        order.status = target
        if target is OrderStatus.DELIVERED:
            order.delivered_at = _utc_now()

        if target is OrderStatus.CANCELLED:
            self._cancel(order, current)
        else:
            self.orders.update(order, expected_status=current)

        logger.info("Order %s moved from %s to %s", order.id, current.value, target.value)
        return order

    @staticmethod
    def _parse_status(status: str) -> OrderStatus:
        try:
            return OrderStatus(status)
        except ValueError:
            raise InvalidStatusError(status, [s.value for s in OrderStatus]) from None

    def _cancel(self, order: Order, previous: OrderStatus) -> None:
        """Write the Cancelled status, then restock; the CAS lets only one caller restock."""
        saga = Saga(f"cancel_order:{order.id}", self.journal)
        saga.add_step(
            "set_cancelled",
            functools.partial(self.orders.update, order, previous),
            compensation=functools.partial(self._revert_status, order.id, previous),
            compensation_record={
                "type": "set_order_status",
                "order_id": order.id,
                "status": previous.value,
                "expected": OrderStatus.CANCELLED.value,
            },
        )
        for item in order.order_items:
            saga.add_step(
                f"restock:{item.product_id}",
                functools.partial(self._restock, item),
                compensation=functools.partial(
                    self._adjust_if_listed, item.product_id, -item.quantity
                ),
                compensation_record={
                    "type": "adjust_stock",
                    "product_id": item.product_id,
                    "delta": -item.quantity,
                },
            )
        saga.run()

    def _restock(self, item: OrderItem) -> int | None:
        try:
            return self.stock.increment(item.product_id, item.quantity)
        except ProductNotFoundError:
            logger.warning(
                "Product %s no longer in catalog; %d unit(s) not restocked",
                item.product_id, item.quantity,
            )
            return None

    def _adjust_if_listed(self, product_id: str, delta: int) -> int | None:
        """Undo a stock change; a product gone from the catalog has nothing to undo."""
        try:
            return self.stock.adjust(product_id, delta)
        except ProductNotFoundError:
            logger.warning(
                "Product %s no longer in catalog; stock change of %+d dropped",
                product_id, delta,
            )
            return None

    def _revert_status(self, order_id: str, status: OrderStatus) -> Order:
        order = self.orders.find_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        order.status = status
        return self.orders.update(order, expected_status=OrderStatus.CANCELLED)

    # --- Reconciliation ---

    def reconcile(self) -> tuple[int, int]:
        """
        Replay journaled compensations that failed earlier.

        Returns:
            (resolved, still_failing) counts.
        """
        if self.journal is None:
            return 0, 0

        resolved = failed = 0
        for entry in self.journal.list_entries():
            try:
                self._replay(entry)
            except Exception:
                logger.exception("Replay of %s (%s/%s) failed", entry.id, entry.saga, entry.step)
                failed += 1
                continue
            self.journal.mark_resolved(entry.id)
            resolved += 1
        return resolved, failed

    def _replay(self, entry: ReconciliationEntry) -> Any:
        action = entry.action
        kind = action.get("type")
        if kind == "adjust_stock":
            return self._adjust_if_listed(action["product_id"], action["delta"])
        if kind == "restore_cart":
            return self.carts.restore(Cart.from_dict(action["cart"]))
        if kind == "set_order_status":
            order = self.orders.find_by_id(action["order_id"])
            if order is None:
                raise OrderNotFoundError(action["order_id"])
            order.status = OrderStatus(action["status"])
            return self.orders.update(order, expected_status=OrderStatus(action["expected"]))
        raise ValueError(f"Unknown reconciliation action: {kind!r}")
