"""Pytest fixtures for marketplace tests."""

import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

from marketplace.identity import ROLE_ADMIN, TokenIdentityProvider
from marketplace.models import PaymentInfo, Product, ProductImage, ShippingInfo
from marketplace.settings import Settings
from marketplace.workflow import OrderWorkflow

TEST_SECRET = "test-secret"


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def data_dir(temp_dir):
    """Data directory for the JSON collections."""
    return temp_dir / "data"


@pytest.fixture
def settings(data_dir):
    """Settings pointing at the temporary data directory."""
    return Settings(data_dir=data_dir, token_secret=TEST_SECRET, lock_timeout=2.0)


@pytest.fixture
def workflow(settings):
    """Order workflow over fresh stores."""
    return OrderWorkflow.from_settings(settings)


@pytest.fixture
def shipping():
    return ShippingInfo(
        address="221B Baker Street",
        city="London",
        postal_code="NW1 6XE",
        country="UK",
    )


@pytest.fixture
def payment():
    return PaymentInfo(id="pi_123", status="succeeded")


@pytest.fixture
def tokens():
    """Identity provider sharing the test secret."""
    return TokenIdentityProvider(TEST_SECRET)


@pytest.fixture
def admin_token(tokens):
    return tokens.issue("admin-1", role=ROLE_ADMIN)


def add_product(
    workflow: OrderWorkflow,
    name: str = "Widget",
    price: str = "100.00",
    stock: int = 5,
    image: str | None = "https://img.example/widget.png",
) -> Product:
    """Seed a product into the workflow's catalog."""
    images = [ProductImage(url=image, public_id="widget")] if image else []
    product = Product.create(
        name=name,
        price=Decimal(price),
        stock=stock,
        seller_id="seller-1",
        images=images,
    )
    return workflow.catalog.save(product)


def auth(token: str) -> dict[str, str]:
    """Authorization header for a bearer token."""
    return {"Authorization": f"Bearer {token}"}
