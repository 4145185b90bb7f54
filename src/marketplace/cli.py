"""Command-line interface for the marketplace service."""

import argparse
import json
import logging
import sys
from decimal import Decimal, InvalidOperation

from . import __version__
from .errors import MarketplaceError
from .identity import ROLE_USER, ROLES, TokenIdentityProvider
from .models import Product, ProductImage
from .settings import Settings
from .workflow import OrderWorkflow


def get_workflow() -> OrderWorkflow:
    """Get an OrderWorkflow for the configured data directory."""
    return OrderWorkflow.from_settings(Settings.from_env())


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    settings = Settings.from_env()
    if settings.has_default_token_secret:
        print("Error: MARKETPLACE_TOKEN_SECRET is required", file=sys.stderr)
        return 1

    try:
        import uvicorn

        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        print("Starting marketplace API server...")
        print(f"Data directory: {settings.data_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # With reload or several workers, uvicorn requires the app as an import string
        app_target = "marketplace.api:app" if args.reload or args.workers > 1 else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=args.workers,
            log_level=settings.log_level.lower(),
        )
        return 0

    except (ImportError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_issue_token(args: argparse.Namespace) -> int:
    """Print a bearer token for a user."""
    settings = Settings.from_env()
    if settings.has_default_token_secret:
        print(
            "Warning: MARKETPLACE_TOKEN_SECRET is not set; signing with the development secret",
            file=sys.stderr,
        )
    provider = TokenIdentityProvider(settings.token_secret, ttl=settings.token_ttl)
    print(provider.issue(args.user_id, role=args.role, ttl=args.ttl))
    return 0


def cmd_products_add(args: argparse.Namespace) -> int:
    """Add a product to the catalog."""
    try:
        price = Decimal(args.price)
    except InvalidOperation:
        print(f"Error: invalid price: {args.price}", file=sys.stderr)
        return 1

    try:
        product = Product.create(
            name=args.name,
            price=price,
            stock=args.stock,
            seller_id=args.seller,
            description=args.description or "",
            category=args.category or "",
            brand=args.brand or "",
            images=[ProductImage(url=url, public_id="") for url in args.image or []],
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        get_workflow().catalog.save(product)
    except MarketplaceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Added product {product.id}: {product.name} ({product.price}, stock {product.stock})")
    return 0


def cmd_products_list(args: argparse.Namespace) -> int:
    """List catalog products."""
    try:
        products = get_workflow().catalog.list_products()
    except MarketplaceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([p.to_dict() for p in products], indent=2))
        return 0

    if not products:
        print("No products.")
        return 0

    for p in products:
        print(f"{p.id[:8]}  {p.name:<30} {p.price:>10}  stock {p.stock}")
    return 0


def cmd_orders_list(args: argparse.Namespace) -> int:
    """List orders, newest first."""
    try:
        workflow = get_workflow()
        if args.user:
            orders = workflow.list_my_orders(args.user)
            total = sum((o.total_price for o in orders), Decimal("0.00"))
        else:
            listing = workflow.list_all_orders()
            orders, total = listing.orders, listing.total_amount
    except MarketplaceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([o.to_dict() for o in orders], indent=2))
        return 0

    if not orders:
        print("No orders.")
        return 0

    for o in orders:
        print(f"{o.id[:8]}  {o.created_at}  {o.status.value:<10} {o.total_price:>10}  user {o.user_id}")
    print(f"\n{len(orders)} order(s), total {total}")
    return 0


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Replay compensations that failed during earlier requests."""
    try:
        workflow = get_workflow()
        if args.list:
            entries = workflow.journal.list_entries() if workflow.journal else []
            if not entries:
                print("Nothing to reconcile.")
            for e in entries:
                print(f"{e.id[:8]}  {e.saga}  {e.step}  {json.dumps(e.action)}  ({e.error})")
            return 0

        resolved, failed = workflow.reconcile()
    except MarketplaceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Resolved {resolved} entr{'y' if resolved == 1 else 'ies'}, {failed} still failing")
    return 1 if failed else 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="marketplace",
        description="Marketplace cart, order and stock service",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )
    serve_parser.add_argument(
        "--workers", "-w", type=int, default=1,
        help="Worker processes; stores lock their files, so several may share a data dir",
    )

    # issue-token
    token_parser = subparsers.add_parser("issue-token", help="Print a bearer token for a user")
    token_parser.add_argument("user_id", help="User ID (token subject)")
    token_parser.add_argument(
        "--role", choices=list(ROLES), default=ROLE_USER, help="Role claim"
    )
    token_parser.add_argument("--ttl", type=int, default=None, help="Lifetime in seconds")

    # products (subcommand group)
    products_parser = subparsers.add_parser("products", help="Manage catalog products")
    products_subparsers = products_parser.add_subparsers(dest="products_command")

    products_add_parser = products_subparsers.add_parser("add", help="Add a product")
    products_add_parser.add_argument("name", help="Product name")
    products_add_parser.add_argument("--price", required=True, help="Unit price")
    products_add_parser.add_argument("--stock", type=int, required=True, help="Units in stock")
    products_add_parser.add_argument("--seller", required=True, help="Seller user ID")
    products_add_parser.add_argument("--description", "-d", help="Description")
    products_add_parser.add_argument("--category", "-c", help="Category")
    products_add_parser.add_argument("--brand", "-b", help="Brand")
    products_add_parser.add_argument(
        "--image", action="append", help="Image URL (repeatable; first is the cover)"
    )

    products_list_parser = products_subparsers.add_parser("list", help="List products")
    products_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # orders (subcommand group)
    orders_parser = subparsers.add_parser("orders", help="Inspect orders")
    orders_subparsers = orders_parser.add_subparsers(dest="orders_command")

    orders_list_parser = orders_subparsers.add_parser("list", help="List orders")
    orders_list_parser.add_argument("--user", "-u", help="Only orders of this user ID")
    orders_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # reconcile
    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Replay failed compensations from the reconciliation journal"
    )
    reconcile_parser.add_argument(
        "--list", action="store_true", help="Only list pending entries"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    # Handle products subcommands
    if args.command == "products":
        if not getattr(args, "products_command", None):
            parser.parse_args(["products", "--help"])
            return 0
        if args.products_command == "add":
            return cmd_products_add(args)
        elif args.products_command == "list":
            return cmd_products_list(args)

    # Handle orders subcommands
    if args.command == "orders":
        if not getattr(args, "orders_command", None):
            parser.parse_args(["orders", "--help"])
            return 0
        if args.orders_command == "list":
            return cmd_orders_list(args)

    commands = {
        "serve": cmd_serve,
        "issue-token": cmd_issue_token,
        "reconcile": cmd_reconcile,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
