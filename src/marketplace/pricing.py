"""Checkout price computation."""

from decimal import Decimal

from .models import OrderItem, Pricing, round2
from .settings import PricingPolicy


def shipping_for(items_price: Decimal, policy: PricingPolicy) -> Decimal:
    """Free shipping strictly over the threshold, flat fee otherwise."""
    if items_price > policy.free_shipping_threshold:
        return round2(0)
    return round2(policy.flat_shipping_fee)


def compute_pricing(items: list[OrderItem], policy: PricingPolicy) -> Pricing:
    """
    Price an order from its item snapshots.

    items_price = sum(quantity * unit price)
    tax_price = round2(items_price * tax_rate)
    shipping_price = 0 if items_price > threshold else flat fee
    total_price = round2(items + tax + shipping)
    """
    items_price = round2(sum((item.subtotal for item in items), Decimal(0)))
    tax_price = round2(items_price * policy.tax_rate)
    shipping_price = shipping_for(items_price, policy)
    total_price = round2(items_price + tax_price + shipping_price)
    return Pricing(
        items_price=items_price,
        tax_price=tax_price,
        shipping_price=shipping_price,
        total_price=total_price,
    )
