"""Custom exceptions for the marketplace service."""


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    pass


# --- Validation (400) ---


class ValidationError(MarketplaceError):
    """Raised when input is malformed or has an unacceptable value."""

    pass


class EmptyCartError(ValidationError):
    """Raised when checking out a missing or empty cart."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Your cart is empty")


class MissingStatusError(ValidationError):
    """Raised when a status update carries no target status."""

    def __init__(self) -> None:
        super().__init__("Status is required")


class InvalidStatusError(ValidationError):
    """Raised when a target status is not one of the known order states."""

    def __init__(self, status: str, allowed: list[str]):
        self.status = status
        self.allowed = allowed
        super().__init__(
            f"Invalid order status '{status}'. Expected one of: {', '.join(allowed)}"
        )


class InvalidQuantityError(ValidationError):
    """Raised when a cart quantity is not a positive integer."""

    def __init__(self, quantity: object):
        self.quantity = quantity
        super().__init__(
            f"Quantity must be a positive number, got {quantity!r}. "
            "To remove an item, use the delete endpoint."
        )


# --- Authentication / authorization (401 / 403) ---


class AuthError(MarketplaceError):
    """Raised when a bearer credential is missing or invalid."""

    def __init__(self, reason: str = "no token"):
        self.reason = reason
        super().__init__(f"Not authorized, {reason}")


class ForbiddenError(MarketplaceError):
    """Raised when the caller's role does not allow the operation."""

    def __init__(
        self,
        role: str | None,
        required: tuple[str, ...],
        message: str = "Access denied: insufficient role",
    ):
        self.role = role
        self.required = required
        super().__init__(message)


class NotProductOwnerError(ForbiddenError):
    """Raised when a seller edits a product listed by someone else."""

    def __init__(self, product_id: str, user_id: str, role: str | None):
        self.product_id = product_id
        self.user_id = user_id
        super().__init__(
            role, ("owner", "admin"), "Access denied: not the seller of this product"
        )


# --- Not found (404) ---


class NotFoundError(MarketplaceError):
    """Base class for missing resources."""

    pass


class OrderNotFoundError(NotFoundError):
    """Raised when an order ID doesn't resolve."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found with this ID: {order_id}")


class ProductNotFoundError(NotFoundError):
    """Raised when a product ID doesn't exist in the catalog."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class ProductUnavailableError(NotFoundError):
    """Raised when a cart references a product deleted from the catalog."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(
            f"A product in your cart is no longer available: {product_id}"
        )


class CartNotFoundError(NotFoundError):
    """Raised when a user has no cart."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Cart not found")


class CartItemNotFoundError(NotFoundError):
    """Raised when a product is not a line item of the cart."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Item not found in cart: {product_id}")


# --- Conflict (409) ---


class ConflictError(MarketplaceError):
    """Base class for state conflicts the caller may resolve by retrying."""

    pass


class AlreadyDeliveredError(ConflictError):
    """Raised when trying to change the status of a delivered order."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("This order has already been delivered")


class InvalidStatusTransitionError(ConflictError):
    """Raised when the transition table has no edge between two states."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change order status from {current} to {target}")


class InsufficientStockError(ConflictError):
    """Raised when a decrement would drive a product's stock below zero."""

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class CartAlreadyCheckedOutError(ConflictError):
    """Raised when the cart changed or was consumed while checking out."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(
            "Your cart was modified or already checked out. Please retry."
        )


class ConcurrentUpdateError(ConflictError):
    """Raised when a compare-and-set on an order's status fails."""

    def __init__(self, order_id: str, expected: str, found: str):
        self.order_id = order_id
        self.expected = expected
        self.found = found
        super().__init__(
            f"Order {order_id} was updated concurrently "
            f"(expected status {expected}, found {found}). Please retry."
        )


# --- Storage (500) ---


class StorageError(MarketplaceError):
    """Base class for storage failures."""

    pass


class StorageUnavailableError(StorageError):
    """Raised when a collection lock cannot be acquired in time."""

    def __init__(self, collection: str, timeout: float):
        self.collection = collection
        self.timeout = timeout
        super().__init__(
            f"Storage for '{collection}' unavailable after {timeout:.1f}s"
        )


class InvalidSchemaVersionError(StorageError):
    """Raised when a collection file has an unsupported schema version."""

    def __init__(self, collection: str, found: int, supported: int):
        self.collection = collection
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported schema version {found} in '{collection}'. "
            f"This service supports version {supported}."
        )
