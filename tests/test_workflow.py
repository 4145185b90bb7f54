"""Tests for the order workflow."""

import threading
from decimal import Decimal

import pytest

from marketplace.errors import (
    AlreadyDeliveredError,
    CartAlreadyCheckedOutError,
    EmptyCartError,
    InsufficientStockError,
    InvalidStatusError,
    InvalidStatusTransitionError,
    MissingStatusError,
    OrderNotFoundError,
    ProductUnavailableError,
    StorageUnavailableError,
)
from marketplace.models import OrderStatus, ReconciliationEntry
from marketplace.workflow import OrderWorkflow

from .conftest import add_product


@pytest.fixture
def two_products(workflow):
    a = add_product(workflow, name="A", price="100.00", stock=5)
    b = add_product(workflow, name="B", price="150.00", stock=5, image=None)
    return a, b


@pytest.fixture
def placed(workflow, two_products, shipping, payment):
    """An order for one A and one B."""
    a, b = two_products
    workflow.carts.add_item("user-1", a.id, 1)
    workflow.carts.add_item("user-1", b.id, 1)
    return workflow.place_order("user-1", shipping, payment)


def stock_of(workflow, product):
    return workflow.catalog.get(product.id).stock


class TestPlaceOrder:
    def test_scenario_over_threshold(self, workflow, two_products, placed):
        a, b = two_products

        assert placed.items_price == Decimal("250.00")
        assert placed.tax_price == Decimal("37.50")
        assert placed.shipping_price == Decimal("0.00")
        assert placed.total_price == Decimal("287.50")
        assert placed.status is OrderStatus.PROCESSING
        assert placed.paid_at is not None
        assert placed.delivered_at is None
        assert stock_of(workflow, a) == 4
        assert stock_of(workflow, b) == 4
        assert workflow.carts.get("user-1") is None
        assert workflow.orders.find_by_id(placed.id) is not None

    def test_scenario_under_threshold(self, workflow, shipping, payment):
        product = add_product(workflow, price="150.00", stock=5)
        workflow.carts.add_item("user-1", product.id, 1)

        order = workflow.place_order("user-1", shipping, payment)

        assert order.shipping_price == Decimal("25.00")
        assert order.tax_price == Decimal("22.50")
        assert order.total_price == Decimal("197.50")

    def test_order_items_are_snapshots(self, workflow, two_products, placed):
        a, b = two_products
        by_product = {i.product_id: i for i in placed.order_items}

        assert by_product[a.id].name == "A"
        assert by_product[a.id].price == Decimal("100.00")
        assert by_product[a.id].image == "https://img.example/widget.png"
        assert by_product[b.id].image == ""

        a.name = "A (renamed)"
        a.price = Decimal("999.00")
        workflow.catalog.save(a)

        stored = workflow.orders.find_by_id(placed.id)
        item = next(i for i in stored.order_items if i.product_id == a.id)
        assert item.name == "A"
        assert item.price == Decimal("100.00")
        assert stored.total_price == Decimal("287.50")

    def test_prices_at_checkout_not_at_add(self, workflow, shipping, payment):
        product = add_product(workflow, price="10.00", stock=5)
        workflow.carts.add_item("user-1", product.id, 2)
        product.price = Decimal("12.00")
        workflow.catalog.save(product)

        order = workflow.place_order("user-1", shipping, payment)

        assert order.order_items[0].price == Decimal("12.00")
        assert order.items_price == Decimal("24.00")

    def test_shipping_info_and_payment_passthrough(self, placed, shipping, payment):
        assert placed.shipping_info == shipping
        assert placed.payment_info == payment
        assert placed.user_id == "user-1"

    def test_no_cart_is_empty(self, workflow, shipping, payment):
        with pytest.raises(EmptyCartError):
            workflow.place_order("user-1", shipping, payment)

    def test_cart_without_items_is_empty(self, workflow, shipping, payment):
        product = add_product(workflow)
        workflow.carts.add_item("user-1", product.id, 1)
        workflow.carts.remove_item("user-1", product.id)

        with pytest.raises(EmptyCartError):
            workflow.place_order("user-1", shipping, payment)

    def test_second_checkout_finds_empty_cart(self, workflow, placed, shipping, payment):
        with pytest.raises(EmptyCartError):
            workflow.place_order("user-1", shipping, payment)
        assert len(workflow.orders.find_all()) == 1

    def test_deleted_product_is_unavailable(self, workflow, two_products, shipping, payment):
        a, b = two_products
        workflow.carts.add_item("user-1", a.id, 1)
        workflow.carts.add_item("user-1", b.id, 1)
        workflow.catalog.delete(b.id)

        with pytest.raises(ProductUnavailableError):
            workflow.place_order("user-1", shipping, payment)

        assert stock_of(workflow, a) == 5
        assert len(workflow.carts.get("user-1").items) == 2
        assert workflow.orders.find_all() == []

    def test_insufficient_stock_rolls_back(self, workflow, shipping, payment):
        a = add_product(workflow, name="A", stock=5)
        b = add_product(workflow, name="B", stock=1)
        workflow.carts.add_item("user-1", a.id, 2)
        workflow.carts.add_item("user-1", b.id, 3)

        with pytest.raises(InsufficientStockError):
            workflow.place_order("user-1", shipping, payment)

        assert stock_of(workflow, a) == 5
        assert stock_of(workflow, b) == 1
        cart = workflow.carts.get("user-1")
        assert cart.find_item(a.id).quantity == 2
        assert cart.find_item(b.id).quantity == 3
        assert workflow.orders.find_all() == []

    def test_storage_failure_on_create_rolls_back(self, workflow, two_products, shipping, payment, monkeypatch):
        a, b = two_products
        workflow.carts.add_item("user-1", a.id, 1)
        workflow.carts.add_item("user-1", b.id, 2)

        def unavailable(order):
            raise StorageUnavailableError("orders", 0.1)

        monkeypatch.setattr(workflow.orders, "create", unavailable)

        with pytest.raises(StorageUnavailableError):
            workflow.place_order("user-1", shipping, payment)

        assert stock_of(workflow, a) == 5
        assert stock_of(workflow, b) == 5
        assert workflow.carts.get("user-1").find_item(b.id).quantity == 2

    def test_stale_cart_is_already_checked_out(self, workflow, two_products, shipping, payment, monkeypatch):
        a, _ = two_products
        workflow.carts.add_item("user-1", a.id, 1)
        stale = workflow.carts.get("user-1")
        workflow.place_order("user-1", shipping, payment)

        # A second request that read the cart before the first one consumed it
        monkeypatch.setattr(workflow.carts, "get", lambda user_id: stale)

        with pytest.raises(CartAlreadyCheckedOutError):
            workflow.place_order("user-1", shipping, payment)

        assert stock_of(workflow, a) == 4
        assert len(workflow.orders.find_all()) == 1

    def test_cart_changed_during_checkout(self, workflow, two_products, shipping, payment, monkeypatch):
        a, b = two_products
        workflow.carts.add_item("user-1", a.id, 1)
        stale = workflow.carts.get("user-1")
        workflow.carts.add_item("user-1", b.id, 1)
        monkeypatch.setattr(workflow.carts, "get", lambda user_id: stale)

        with pytest.raises(CartAlreadyCheckedOutError):
            workflow.place_order("user-1", shipping, payment)

        monkeypatch.undo()
        assert len(workflow.carts.get("user-1").items) == 2
        assert stock_of(workflow, a) == 5

    def test_concurrent_checkouts_create_one_order(self, workflow, settings, two_products, shipping, payment):
        a, b = two_products
        workflow.carts.add_item("user-1", a.id, 1)
        workflow.carts.add_item("user-1", b.id, 1)
        results = []
        errors = []

        def checkout():
            wf = OrderWorkflow.from_settings(settings)
            try:
                results.append(wf.place_order("user-1", shipping, payment))
            except (EmptyCartError, CartAlreadyCheckedOutError) as e:
                errors.append(e)

        threads = [threading.Thread(target=checkout) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 1
        assert len(errors) == 5
        assert len(workflow.orders.find_all()) == 1
        assert stock_of(workflow, a) == 4
        assert stock_of(workflow, b) == 4

    def test_concurrent_checkouts_never_oversell(self, workflow, settings, shipping, payment):
        product = add_product(workflow, stock=3)
        for i in range(5):
            workflow.carts.add_item(f"user-{i}", product.id, 1)
        results = []
        refusals = []

        def checkout(user_id):
            wf = OrderWorkflow.from_settings(settings)
            try:
                results.append(wf.place_order(user_id, shipping, payment))
            except InsufficientStockError as e:
                refusals.append(e)

        threads = [threading.Thread(target=checkout, args=(f"user-{i}",)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 3
        assert len(refusals) == 2
        assert stock_of(workflow, product) == 0
        # refused buyers keep their carts
        assert sum(1 for i in range(5) if workflow.carts.get(f"user-{i}")) == 2


class TestListOrders:
    def test_list_my_orders_newest_first(self, workflow, shipping, payment):
        product = add_product(workflow, stock=10)
        placed = []
        for _ in range(3):
            workflow.carts.add_item("user-1", product.id, 1)
            placed.append(workflow.place_order("user-1", shipping, payment))
        workflow.carts.add_item("user-2", product.id, 1)
        workflow.place_order("user-2", shipping, payment)

        mine = workflow.list_my_orders("user-1")

        assert [o.id for o in mine] == [o.id for o in reversed(placed)]

    def test_list_my_orders_empty(self, workflow):
        assert workflow.list_my_orders("nobody") == []

    def test_list_all_orders_with_total(self, workflow, shipping, payment):
        product = add_product(workflow, price="150.00", stock=10)
        for user in ("user-1", "user-2"):
            workflow.carts.add_item(user, product.id, 1)
            workflow.place_order(user, shipping, payment)

        listing = workflow.list_all_orders()

        assert listing.count == 2
        assert listing.total_amount == Decimal("395.00")
        assert listing.orders[0].user_id == "user-2"

    def test_list_all_orders_empty(self, workflow):
        listing = workflow.list_all_orders()

        assert listing.count == 0
        assert listing.total_amount == Decimal("0.00")


class TestUpdateOrderStatus:
    def test_ship_then_deliver(self, workflow, placed):
        shipped = workflow.update_order_status(placed.id, "Shipped")
        assert shipped.status is OrderStatus.SHIPPED
        assert shipped.delivered_at is None

        delivered = workflow.update_order_status(placed.id, "Delivered")
        assert delivered.status is OrderStatus.DELIVERED
        assert delivered.delivered_at is not None
        assert workflow.orders.find_by_id(placed.id).delivered_at == delivered.delivered_at

    def test_cancel_restores_stock(self, workflow, two_products, placed):
        a, b = two_products

        cancelled = workflow.update_order_status(placed.id, "Cancelled")

        assert cancelled.status is OrderStatus.CANCELLED
        assert stock_of(workflow, a) == 5
        assert stock_of(workflow, b) == 5

    def test_cancel_after_shipping_restores_stock(self, workflow, two_products, placed):
        a, b = two_products
        workflow.update_order_status(placed.id, "Shipped")

        workflow.update_order_status(placed.id, "Cancelled")

        assert stock_of(workflow, a) == 5
        assert stock_of(workflow, b) == 5

    def test_cancel_twice_restores_once(self, workflow, two_products, placed):
        a, b = two_products
        workflow.update_order_status(placed.id, "Cancelled")

        again = workflow.update_order_status(placed.id, "Cancelled")

        assert again.status is OrderStatus.CANCELLED
        assert stock_of(workflow, a) == 5
        assert stock_of(workflow, b) == 5

    def test_stock_conservation_with_quantities(self, workflow, shipping, payment):
        product = add_product(workflow, stock=7)
        workflow.carts.add_item("user-1", product.id, 4)
        order = workflow.place_order("user-1", shipping, payment)
        assert stock_of(workflow, product) == 3

        workflow.update_order_status(order.id, "Cancelled")

        assert stock_of(workflow, product) == 7

    @pytest.mark.parametrize("target", ["Processing", "Shipped", "Delivered", "Cancelled", None])
    def test_delivered_is_terminal(self, workflow, two_products, placed, target):
        a, _ = two_products
        workflow.update_order_status(placed.id, "Shipped")
        workflow.update_order_status(placed.id, "Delivered")

        with pytest.raises(AlreadyDeliveredError):
            workflow.update_order_status(placed.id, target)

        assert workflow.orders.find_by_id(placed.id).status is OrderStatus.DELIVERED
        assert stock_of(workflow, a) == 4

    @pytest.mark.parametrize("target", ["Processing", "Shipped", "Delivered"])
    def test_cancelled_is_terminal(self, workflow, placed, target):
        workflow.update_order_status(placed.id, "Cancelled")

        with pytest.raises(InvalidStatusTransitionError):
            workflow.update_order_status(placed.id, target)

    def test_processing_cannot_skip_to_delivered(self, workflow, placed):
        with pytest.raises(InvalidStatusTransitionError):
            workflow.update_order_status(placed.id, "Delivered")

    def test_same_status_is_not_a_transition(self, workflow, placed):
        with pytest.raises(InvalidStatusTransitionError):
            workflow.update_order_status(placed.id, "Processing")

    @pytest.mark.parametrize("status", [None, ""])
    def test_missing_status(self, workflow, placed, status):
        with pytest.raises(MissingStatusError):
            workflow.update_order_status(placed.id, status)

    @pytest.mark.parametrize("status", ["Lost", "shipped", "CANCELLED"])
    def test_unknown_status(self, workflow, placed, status):
        with pytest.raises(InvalidStatusError):
            workflow.update_order_status(placed.id, status)

    def test_unknown_order(self, workflow):
        with pytest.raises(OrderNotFoundError):
            workflow.update_order_status("missing", "Shipped")

    def test_cancel_skips_deleted_products(self, workflow, two_products, placed):
        a, b = two_products
        workflow.catalog.delete(b.id)

        workflow.update_order_status(placed.id, "Cancelled")

        assert stock_of(workflow, a) == 5
        assert workflow.orders.find_by_id(placed.id).status is OrderStatus.CANCELLED

    def test_concurrent_cancels_restore_once(self, workflow, settings, two_products, placed):
        a, b = two_products
        outcomes = []

        def cancel():
            wf = OrderWorkflow.from_settings(settings)
            try:
                wf.update_order_status(placed.id, "Cancelled")
                outcomes.append("ok")
            except Exception as e:
                outcomes.append(type(e).__name__)

        threads = [threading.Thread(target=cancel) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert "ok" in outcomes
        assert set(outcomes) <= {"ok", "ConcurrentUpdateError"}
        assert stock_of(workflow, a) == 5
        assert stock_of(workflow, b) == 5

    def test_skipped_restock_is_not_undone(self, workflow, two_products, placed, monkeypatch):
        a, b = two_products
        workflow.catalog.delete(a.id)
        real_increment = workflow.stock.increment

        def fail_on_b(product_id, quantity):
            if product_id == b.id:
                raise StorageUnavailableError("products", 0.1)
            return real_increment(product_id, quantity)

        monkeypatch.setattr(workflow.stock, "increment", fail_on_b)

        with pytest.raises(StorageUnavailableError):
            workflow.update_order_status(placed.id, "Cancelled")

        assert workflow.orders.find_by_id(placed.id).status is OrderStatus.PROCESSING
        assert stock_of(workflow, b) == 4
        assert workflow.journal.list_entries() == []

    def test_release_skips_product_deleted_during_checkout(self, workflow, two_products, shipping, payment, monkeypatch):
        a, b = two_products
        workflow.carts.add_item("user-1", a.id, 1)
        workflow.carts.add_item("user-1", b.id, 1)

        def delete_then_fail(order):
            workflow.catalog.delete(a.id)
            raise StorageUnavailableError("orders", 0.1)

        monkeypatch.setattr(workflow.orders, "create", delete_then_fail)

        with pytest.raises(StorageUnavailableError):
            workflow.place_order("user-1", shipping, payment)

        assert stock_of(workflow, b) == 5
        assert workflow.journal.list_entries() == []

    def test_restock_failure_reverts_status(self, workflow, two_products, placed, monkeypatch):
        a, b = two_products
        real_increment = workflow.stock.increment
        calls = []

        def flaky_increment(product_id, quantity):
            calls.append(product_id)
            if len(calls) == 2:
                raise StorageUnavailableError("products", 0.1)
            return real_increment(product_id, quantity)

        monkeypatch.setattr(workflow.stock, "increment", flaky_increment)

        with pytest.raises(StorageUnavailableError):
            workflow.update_order_status(placed.id, "Cancelled")

        assert workflow.orders.find_by_id(placed.id).status is OrderStatus.PROCESSING
        assert stock_of(workflow, a) == 4
        assert stock_of(workflow, b) == 4


class TestReconcile:
    def test_replays_journaled_compensations(self, workflow, two_products, placed):
        a, b = two_products
        workflow.journal.record(
            ReconciliationEntry.create(
                saga="place_order:x",
                step=f"reserve_stock:{a.id}",
                action={"type": "adjust_stock", "product_id": a.id, "delta": 1},
                error="StorageUnavailableError: timeout",
            )
        )
        workflow.journal.record(
            ReconciliationEntry.create(
                saga="place_order:y",
                step="consume_cart",
                action={
                    "type": "restore_cart",
                    "cart": {"id": "c1", "user_id": "user-9", "items": [{"product_id": b.id, "quantity": 2}]},
                },
                error="StorageUnavailableError: timeout",
            )
        )

        resolved, failed = workflow.reconcile()

        assert (resolved, failed) == (2, 0)
        assert stock_of(workflow, a) == 5
        assert workflow.carts.get("user-9").find_item(b.id).quantity == 2
        assert workflow.journal.list_entries() == []

    def test_replays_status_revert(self, workflow, placed):
        workflow.update_order_status(placed.id, "Cancelled")
        workflow.journal.record(
            ReconciliationEntry.create(
                saga=f"cancel_order:{placed.id}",
                step="set_cancelled",
                action={
                    "type": "set_order_status",
                    "order_id": placed.id,
                    "status": "Processing",
                    "expected": "Cancelled",
                },
                error="StorageUnavailableError: timeout",
            )
        )

        assert workflow.reconcile() == (1, 0)
        assert workflow.orders.find_by_id(placed.id).status is OrderStatus.PROCESSING

    def test_failing_replay_stays_pending(self, workflow):
        product = add_product(workflow, stock=1)
        workflow.journal.record(
            ReconciliationEntry.create(
                saga="s",
                step="x",
                action={"type": "adjust_stock", "product_id": product.id, "delta": -3},
                error="",
            )
        )

        assert workflow.reconcile() == (0, 1)
        assert len(workflow.journal.list_entries()) == 1
        assert stock_of(workflow, product) == 1

    def test_replay_for_deleted_product_resolves(self, workflow):
        workflow.journal.record(
            ReconciliationEntry.create(
                saga="s",
                step="x",
                action={"type": "adjust_stock", "product_id": "gone", "delta": 1},
                error="",
            )
        )

        assert workflow.reconcile() == (1, 0)
        assert workflow.journal.list_entries() == []

    def test_unknown_action_stays_pending(self, workflow):
        workflow.journal.record(
            ReconciliationEntry.create(saga="s", step="x", action={"type": "bogus"}, error="")
        )

        assert workflow.reconcile() == (0, 1)
