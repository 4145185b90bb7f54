"""FastAPI REST API for the marketplace order service."""

import logging
from decimal import Decimal
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import __version__
from .catalog import ProductQuery
from .errors import (
    AuthError,
    ConflictError,
    ForbiddenError,
    MarketplaceError,
    NotFoundError,
    NotProductOwnerError,
    StorageError,
    ValidationError,
)
from .identity import ROLE_ADMIN, ROLE_SELLER, Identity, TokenIdentityProvider
from .models import Cart, Order, PaymentInfo, Product, ProductImage, ShippingInfo, round2
from .settings import Settings
from .workflow import OrderWorkflow

logger = logging.getLogger(__name__)


# --- Pydantic Schemas ---


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case attributes in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ShippingInfoSchema(ApiModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentInfoSchema(ApiModel):
    """Opaque payment reference, stored as given."""

    id: Optional[str] = None
    status: Optional[str] = None


class OrderItemSchema(ApiModel):
    product_id: str
    name: str
    quantity: int
    price: Decimal  # unit price at purchase
    image: str


class OrderSchema(ApiModel):
    id: str
    user_id: str
    shipping_info: ShippingInfoSchema
    order_items: list[OrderItemSchema]
    payment_info: PaymentInfoSchema
    items_price: Decimal
    tax_price: Decimal
    shipping_price: Decimal
    total_price: Decimal
    status: str
    paid_at: Optional[str] = None
    delivered_at: Optional[str] = None
    created_at: str
    updated_at: str


class OrderCreateRequest(ApiModel):
    """Request body for placing an order from the caller's cart."""

    shipping_info: ShippingInfoSchema
    payment_info: PaymentInfoSchema = Field(default_factory=PaymentInfoSchema)


class OrderStatusUpdateRequest(ApiModel):
    status: Optional[str] = Field(
        None, description="Processing | Shipped | Delivered | Cancelled"
    )


class OrderResponse(ApiModel):
    success: bool = True
    order: OrderSchema


class MyOrdersResponse(ApiModel):
    success: bool = True
    orders: list[OrderSchema]


class AllOrdersResponse(ApiModel):
    success: bool = True
    orders: list[OrderSchema]
    total_amount: Decimal
    count: int


# --- Cart Schemas ---


class CartLineSchema(ApiModel):
    product_id: str
    quantity: int
    # Current catalog details; None once the product is deleted
    name: Optional[str] = None
    price: Optional[Decimal] = None
    stock: Optional[int] = None
    image: Optional[str] = None


class CartSchema(ApiModel):
    id: Optional[str] = None
    user_id: str
    items: list[CartLineSchema]
    version: int = 0


class CartResponse(ApiModel):
    success: bool = True
    cart: CartSchema
    total_price: Decimal


class CartAddRequest(ApiModel):
    product_id: str
    quantity: int = 1


class CartUpdateRequest(ApiModel):
    quantity: int


# --- Product Schemas ---


class ProductImageSchema(ApiModel):
    url: str
    public_id: str = ""


class ProductSchema(ApiModel):
    id: str
    name: str
    description: str
    price: Decimal
    category: str
    brand: str
    stock: int
    images: list[ProductImageSchema]
    seller_id: str
    created_at: str
    updated_at: str


class ProductResponse(ApiModel):
    success: bool = True
    product: ProductSchema


class ProductListResponse(ApiModel):
    success: bool = True
    products: list[ProductSchema]
    count: int
    total: int
    page: int
    pages: int


class ProductCreateRequest(ApiModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: Decimal = Field(..., ge=0)
    category: str = ""
    brand: str = ""
    stock: int = Field(..., ge=0)
    images: list[ProductImageSchema] = Field(default_factory=list)


class ProductUpdateRequest(ApiModel):
    """Partial update; omitted fields keep their stored values."""

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    category: Optional[str] = None
    brand: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    images: list[ProductImageSchema] = Field(default_factory=list, description="Images to add")
    images_to_delete: list[str] = Field(
        default_factory=list, description="public_id values of images to remove"
    )


class DeleteResponse(ApiModel):
    success: bool = True
    message: str


class ErrorResponse(ApiModel):
    success: bool = False
    message: str
    error_type: str


# --- Dependencies ---


bearer_scheme = HTTPBearer(auto_error=False)


def get_settings() -> Settings:
    """Settings from the environment, read per request."""
    return Settings.from_env()


def get_workflow(settings: Settings = Depends(get_settings)) -> OrderWorkflow:
    """Order workflow over the configured data directory."""
    return OrderWorkflow.from_settings(settings)


def get_identity_provider(settings: Settings = Depends(get_settings)) -> TokenIdentityProvider:
    return TokenIdentityProvider(settings.token_secret, ttl=settings.token_ttl)


def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    provider: TokenIdentityProvider = Depends(get_identity_provider),
) -> Identity:
    """The authenticated caller; 401 without a valid bearer token."""
    token = credentials.credentials if credentials else None
    return provider.authenticate(token)


def require_roles(*roles: str) -> Callable[..., Identity]:
    """Dependency allowing only callers whose role is one of ``roles``."""

    def dependency(user: Identity = Depends(current_user)) -> Identity:
        if user.role not in roles:
            raise ForbiddenError(user.role, roles)
        return user

    return dependency


require_admin = require_roles(ROLE_ADMIN)
require_seller = require_roles(ROLE_SELLER, ROLE_ADMIN)


# --- Helper Functions ---


def order_to_schema(order: Order) -> OrderSchema:
    """Convert dataclass Order to Pydantic schema."""
    return OrderSchema(**order.to_dict())


def product_to_schema(product: Product) -> ProductSchema:
    return ProductSchema(**product.to_dict())


def cart_to_response(cart: Cart | None, user_id: str, workflow: OrderWorkflow) -> CartResponse:
    """Render a cart with current product details and its running total."""
    if cart is None:
        return CartResponse(
            cart=CartSchema(user_id=user_id, items=[]),
            total_price=round2(0),
        )

    lines = []
    total = Decimal(0)
    for item in cart.items:
        product = workflow.catalog.get(item.product_id)
        if product is None:
            lines.append(CartLineSchema(product_id=item.product_id, quantity=item.quantity))
            continue
        total += product.price * item.quantity
        lines.append(
            CartLineSchema(
                product_id=item.product_id,
                quantity=item.quantity,
                name=product.name,
                price=product.price,
                stock=product.stock,
                image=product.image_url,
            )
        )
    return CartResponse(
        cart=CartSchema(id=cart.id, user_id=cart.user_id, items=lines, version=cart.version),
        total_price=round2(total),
    )


def require_owned_product(workflow: OrderWorkflow, product_id: str, user: Identity) -> Product:
    """Load a product the caller may edit: their own listing, or any if admin."""
    product = workflow.catalog.require(product_id)
    if not user.is_admin and product.seller_id != user.id:
        raise NotProductOwnerError(product_id, user.id, user.role)
    return product


# --- FastAPI App ---


app = FastAPI(
    title="marketplace API",
    description="REST API for carts, orders and stock reconciliation",
    version=__version__,
)

# Bearer tokens travel in a header, so no cookies or credentials are needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(Settings.from_env().cors_origins),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handlers ---


# Map exception categories to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    AuthError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 500,
}


def status_code_for(exc: MarketplaceError) -> int:
    """Status code of the closest mapped base class, 500 if none."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """Map MarketplaceError subclasses to appropriate HTTP responses."""
    status_code = status_code_for(exc)
    message = str(exc)
    if status_code >= 500:
        logger.error(
            "%s %s failed", request.method, request.url.path,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        message = "Internal Server Error"
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    error = ErrorResponse(message=message, error_type=type(exc).__name__)
    return JSONResponse(
        status_code=status_code,
        content=error.model_dump(by_alias=True),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as 400 in the common error envelope."""
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    error = ErrorResponse(
        message="Invalid input data. " + "; ".join(problems),
        error_type="ValidationError",
    )
    return JSONResponse(status_code=400, content=error.model_dump(by_alias=True))


# --- Endpoints ---


@app.get("/api/health")
def health_check(workflow: OrderWorkflow = Depends(get_workflow)):
    """
    Health check endpoint.

    Returns basic service status and collection sizes.
    """
    try:
        return {
            "status": "ok",
            "version": __version__,
            "productCount": len(workflow.catalog.list_products()),
            "orderCount": len(workflow.orders.find_all()),
        }
    except MarketplaceError as e:
        return {
            "status": "error",
            "detail": str(e),
        }


# --- Order Endpoints ---


@app.post("/api/orders", response_model=OrderResponse, status_code=201)
def create_order(
    request: OrderCreateRequest,
    user: Identity = Depends(current_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Place an order from the caller's cart."""
    order = workflow.place_order(
        user_id=user.id,
        shipping_info=ShippingInfo(**request.shipping_info.model_dump()),
        payment_info=PaymentInfo(**request.payment_info.model_dump()),
    )
    return OrderResponse(order=order_to_schema(order))


@app.get("/api/orders/my", response_model=MyOrdersResponse)
def list_my_orders(
    user: Identity = Depends(current_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """List the caller's orders, newest first."""
    orders = workflow.list_my_orders(user.id)
    return MyOrdersResponse(orders=[order_to_schema(o) for o in orders])


@app.get("/api/orders", response_model=AllOrdersResponse)
def list_all_orders(
    _admin: Identity = Depends(require_admin),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """List every order with the summed total (admin)."""
    listing = workflow.list_all_orders()
    return AllOrdersResponse(
        orders=[order_to_schema(o) for o in listing.orders],
        total_amount=listing.total_amount,
        count=listing.count,
    )


@app.put("/api/orders/{order_id}", response_model=OrderResponse)
def update_order_status(
    order_id: str,
    request: OrderStatusUpdateRequest,
    _admin: Identity = Depends(require_admin),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Change an order's status (admin). Cancelling restocks its items."""
    order = workflow.update_order_status(order_id, request.status)
    return OrderResponse(order=order_to_schema(order))


# --- Cart Endpoints ---


@app.get("/api/cart", response_model=CartResponse)
def get_cart(
    user: Identity = Depends(current_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Get the caller's cart; an empty one if they have none."""
    cart = workflow.carts.get(user.id)
    return cart_to_response(cart, user.id, workflow)


@app.post("/api/cart", response_model=CartResponse, status_code=201)
def add_cart_item(
    request: CartAddRequest,
    user: Identity = Depends(current_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Add a product to the cart, or increase its quantity."""
    workflow.catalog.require(request.product_id)
    cart = workflow.carts.add_item(user.id, request.product_id, request.quantity)
    return cart_to_response(cart, user.id, workflow)


@app.put("/api/cart/items/{product_id}", response_model=CartResponse)
def update_cart_item(
    product_id: str,
    request: CartUpdateRequest,
    user: Identity = Depends(current_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Set the quantity of a product already in the cart."""
    cart = workflow.carts.update_item(user.id, product_id, request.quantity)
    return cart_to_response(cart, user.id, workflow)


@app.delete("/api/cart/items/{product_id}", response_model=CartResponse)
def remove_cart_item(
    product_id: str,
    user: Identity = Depends(current_user),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Remove a product from the cart."""
    cart = workflow.carts.remove_item(user.id, product_id)
    return cart_to_response(cart, user.id, workflow)


# --- Product Endpoints ---


@app.get("/api/products", response_model=ProductListResponse)
def list_products(
    search: Optional[str] = Query(None, description="Keyword in name or description"),
    category: Optional[str] = Query(None),
    brand: Optional[str] = Query(None),
    price_gt: Optional[Decimal] = Query(None, alias="price[gt]"),
    price_gte: Optional[Decimal] = Query(None, alias="price[gte]"),
    price_lt: Optional[Decimal] = Query(None, alias="price[lt]"),
    price_lte: Optional[Decimal] = Query(None, alias="price[lte]"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """List catalog products with optional search, filters and paging."""
    result = workflow.catalog.find(
        ProductQuery(
            search=search,
            category=category,
            brand=brand,
            price_gt=price_gt,
            price_gte=price_gte,
            price_lt=price_lt,
            price_lte=price_lte,
            page=page,
            limit=limit,
        )
    )
    return ProductListResponse(
        products=[product_to_schema(p) for p in result.products],
        count=len(result.products),
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@app.get("/api/products/{product_id}", response_model=ProductSchema)
def get_product(product_id: str, workflow: OrderWorkflow = Depends(get_workflow)):
    """Get a single catalog product."""
    return product_to_schema(workflow.catalog.require(product_id))


@app.post("/api/products", response_model=ProductResponse, status_code=201)
def create_product(
    request: ProductCreateRequest,
    user: Identity = Depends(require_seller),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """List a new product; the caller becomes its seller (seller or admin)."""
    product = Product.create(
        name=request.name,
        price=request.price,
        stock=request.stock,
        seller_id=user.id,
        description=request.description,
        category=request.category,
        brand=request.brand,
        images=[ProductImage(url=i.url, public_id=i.public_id) for i in request.images],
    )
    workflow.catalog.save(product)
    logger.info("Product %s created by %s", product.id, user.id)
    return ProductResponse(product=product_to_schema(product))


@app.put("/api/products/{product_id}", response_model=ProductResponse)
def update_product(
    product_id: str,
    request: ProductUpdateRequest,
    user: Identity = Depends(require_seller),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Edit a product (its seller, or an admin)."""
    require_owned_product(workflow, product_id, user)
    fields = request.model_dump(exclude_unset=True, exclude={"images", "images_to_delete"})
    removed = set(request.images_to_delete)
    added = [ProductImage(url=i.url, public_id=i.public_id) for i in request.images]

    def apply(product: Product) -> None:
        for name, value in fields.items():
            if value is not None:
                setattr(product, name, round2(value) if name == "price" else value)
        product.images = [i for i in product.images if i.public_id not in removed] + added

    product = workflow.catalog.update(product_id, apply)
    return ProductResponse(product=product_to_schema(product))


@app.delete("/api/products/{product_id}", response_model=DeleteResponse)
def delete_product(
    product_id: str,
    user: Identity = Depends(require_seller),
    workflow: OrderWorkflow = Depends(get_workflow),
):
    """Remove a product from the catalog (its seller, or an admin)."""
    require_owned_product(workflow, product_id, user)
    workflow.catalog.delete(product_id)
    logger.info("Product %s deleted by %s", product_id, user.id)
    return DeleteResponse(message="Product removed")
