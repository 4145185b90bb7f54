"""Data models for the marketplace service."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
import uuid

CENT = Decimal("0.01")


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _generate_id() -> str:
    """Generate a new document ID."""
    return str(uuid.uuid4())


def round2(value: Decimal | int | str) -> Decimal:
    """Round a money amount to cents, half-up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# Catalog


@dataclass
class ProductImage:
    """An image hosted by the blob store."""

    url: str
    public_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "public_id": self.public_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductImage":
        return cls(url=data["url"], public_id=data.get("public_id", ""))


@dataclass
class Product:
    """A catalog product. Only price, name, images and stock matter to orders."""

    id: str
    name: str
    price: Decimal
    stock: int
    seller_id: str
    description: str = ""
    category: str = ""
    brand: str = ""
    images: list[ProductImage] = field(default_factory=list)
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def image_url(self) -> str:
        """URL of the first image, or an empty string."""
        return self.images[0].url if self.images else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": str(self.price),
            "category": self.category,
            "brand": self.brand,
            "stock": self.stock,
            "images": [img.to_dict() for img in self.images],
            "seller_id": self.seller_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Product":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            price=round2(data["price"]),
            category=data.get("category", ""),
            brand=data.get("brand", ""),
            stock=data["stock"],
            images=[ProductImage.from_dict(i) for i in data.get("images", [])],
            seller_id=data["seller_id"],
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        name: str,
        price: Decimal | int | str,
        stock: int,
        seller_id: str,
        description: str = "",
        category: str = "",
        brand: str = "",
        images: list[ProductImage] | None = None,
    ) -> "Product":
        """Create a new product with generated ID and timestamps."""
        price = round2(price)
        if price < 0:
            raise ValueError("price must be >= 0")
        if stock < 0:
            raise ValueError("stock must be >= 0")
        now = _utc_now()
        return cls(
            id=_generate_id(),
            name=name,
            description=description,
            price=price,
            category=category,
            brand=brand,
            stock=stock,
            images=images or [],
            seller_id=seller_id,
            created_at=now,
            updated_at=now,
        )


# Carts


@dataclass
class CartItem:
    """A line item: one product and how many of it."""

    product_id: str
    quantity: int

    def to_dict(self) -> dict[str, Any]:
        return {"product_id": self.product_id, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartItem":
        return cls(product_id=data["product_id"], quantity=data["quantity"])


@dataclass
class Cart:
    """A user's shopping cart. One per user; version bumps on every mutation."""

    id: str
    user_id: str
    items: list[CartItem] = field(default_factory=list)
    version: int = 1
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def find_item(self, product_id: str) -> CartItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def merge_item(self, product_id: str, quantity: int) -> None:
        """Add quantity to an existing line item or append a new one."""
        existing = self.find_item(product_id)
        if existing is not None:
            existing.quantity += quantity
        else:
            self.items.append(CartItem(product_id=product_id, quantity=quantity))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [i.to_dict() for i in self.items],
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cart":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            items=[CartItem.from_dict(i) for i in data.get("items", [])],
            version=data.get("version", 1),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(cls, user_id: str) -> "Cart":
        """Create an empty cart for a user."""
        now = _utc_now()
        return cls(
            id=_generate_id(),
            user_id=user_id,
            items=[],
            version=1,
            created_at=now,
            updated_at=now,
        )


# Orders


class OrderStatus(str, Enum):
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


# Legal status transitions; states with no outgoing edges are terminal.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Whether the transition table allows moving from current to target."""
    return target in ORDER_TRANSITIONS[current]


@dataclass
class ShippingInfo:
    address: str
    city: str
    postal_code: str
    country: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShippingInfo":
        return cls(
            address=data["address"],
            city=data["city"],
            postal_code=data["postal_code"],
            country=data["country"],
        )


@dataclass
class PaymentInfo:
    """Opaque payment reference; never validated here."""

    id: str | None = None
    status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "status": self.status}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PaymentInfo":
        data = data or {}
        return cls(id=data.get("id"), status=data.get("status"))


@dataclass(frozen=True)
class OrderItem:
    """Snapshot of a product captured at checkout."""

    product_id: str
    name: str
    quantity: int
    price: Decimal  # unit price at purchase
    image: str = ""

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "price": str(self.price),
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderItem":
        return cls(
            product_id=data["product_id"],
            name=data["name"],
            quantity=data["quantity"],
            price=round2(data["price"]),
            image=data.get("image", ""),
        )


@dataclass
class Order:
    """A placed order. Only status and delivered_at change after creation."""

    id: str
    user_id: str
    shipping_info: ShippingInfo
    order_items: list[OrderItem]
    payment_info: PaymentInfo
    items_price: Decimal
    tax_price: Decimal
    shipping_price: Decimal
    total_price: Decimal
    status: OrderStatus = OrderStatus.PROCESSING
    paid_at: str | None = None
    delivered_at: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "shipping_info": self.shipping_info.to_dict(),
            "order_items": [i.to_dict() for i in self.order_items],
            "payment_info": self.payment_info.to_dict(),
            "items_price": str(self.items_price),
            "tax_price": str(self.tax_price),
            "shipping_price": str(self.shipping_price),
            "total_price": str(self.total_price),
            "status": self.status.value,
            "paid_at": self.paid_at,
            "delivered_at": self.delivered_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            shipping_info=ShippingInfo.from_dict(data["shipping_info"]),
            order_items=[OrderItem.from_dict(i) for i in data["order_items"]],
            payment_info=PaymentInfo.from_dict(data.get("payment_info")),
            items_price=round2(data["items_price"]),
            tax_price=round2(data["tax_price"]),
            shipping_price=round2(data["shipping_price"]),
            total_price=round2(data["total_price"]),
            status=OrderStatus(data.get("status", OrderStatus.PROCESSING.value)),
            paid_at=data.get("paid_at"),
            delivered_at=data.get("delivered_at"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        user_id: str,
        shipping_info: ShippingInfo,
        order_items: list[OrderItem],
        payment_info: PaymentInfo,
        pricing: "Pricing",
    ) -> "Order":
        """Create a new Processing order, paid now."""
        if not order_items:
            raise ValueError("an order needs at least one item")
        now = _utc_now()
        return cls(
            id=_generate_id(),
            user_id=user_id,
            shipping_info=shipping_info,
            order_items=list(order_items),
            payment_info=payment_info,
            items_price=pricing.items_price,
            tax_price=pricing.tax_price,
            shipping_price=pricing.shipping_price,
            total_price=pricing.total_price,
            status=OrderStatus.PROCESSING,
            paid_at=now,
            delivered_at=None,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True)
class Pricing:
    """Price breakdown computed at checkout."""

    items_price: Decimal
    tax_price: Decimal
    shipping_price: Decimal
    total_price: Decimal


@dataclass
class OrderListing:
    """Result of listing every order, with the reporting total."""

    orders: list[Order]
    total_amount: Decimal

    @property
    def count(self) -> int:
        return len(self.orders)


# Reconciliation journal


@dataclass
class ReconciliationEntry:
    """A compensation that failed and still has to be applied by hand or replay."""

    id: str
    saga: str
    step: str
    action: dict[str, Any]
    error: str
    resolved: bool = False
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "saga": self.saga,
            "step": self.step,
            "action": self.action,
            "error": self.error,
            "resolved": self.resolved,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReconciliationEntry":
        return cls(
            id=data["id"],
            saga=data["saga"],
            step=data["step"],
            action=data.get("action", {}),
            error=data.get("error", ""),
            resolved=data.get("resolved", False),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(cls, saga: str, step: str, action: dict[str, Any], error: str) -> "ReconciliationEntry":
        now = _utc_now()
        return cls(
            id=_generate_id(),
            saga=saga,
            step=step,
            action=action,
            error=error,
            resolved=False,
            created_at=now,
            updated_at=now,
        )
