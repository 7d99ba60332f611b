"""Command-line interface for storesync."""

import argparse
import json
import logging
import os
import sys

from . import __version__
from .config import AppConfig
from .errors import RemoteStoreError, StoresyncError
from .hygiene import run_cache_hygiene
from .local_cache import footprint
from .storefront import Storefront

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def get_storefront() -> Storefront:
    """Build a Storefront from the STORESYNC_* environment."""
    return Storefront.from_config(AppConfig.from_env())


def cmd_status(args: argparse.Namespace) -> int:
    """Load every synchronizer and report where its data came from."""
    try:
        storefront = get_storefront()
        report = storefront.start()

        print(f"Remote store: {getattr(storefront.client, 'base_url', '-')}")
        print(f"Settings: {report.settings.source.value}")
        print(f"Products: {len(report.products.value)} ({report.products.source.value})")
        print(f"Orders: {len(report.orders.value)} ({report.orders.source.value})")
        user = storefront.auth.user
        print(f"Signed in: {user.email if user else '-'}")
        print(f"Cart items: {storefront.cart.count}")
        print(f"Outbox: {len(storefront.outbox.pending)} pending")
        print(f"Local cache: {footprint(storefront.cache)} chars")
        if report.hygiene.removed:
            print(f"Hygiene removed: {', '.join(report.hygiene.removed)}")
        if storefront.migration.pending():
            print("Legacy local data found; run 'storesync migrate'.")
        return 0

    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_hygiene(args: argparse.Namespace) -> int:
    """Run cache hygiene on the local cache."""
    try:
        storefront = get_storefront()
        before = footprint(storefront.cache)
        report = run_cache_hygiene(storefront.cache)

        if report.removed:
            print(f"Removed ({len(report.removed)}):")
            for key in report.removed:
                print(f"  {key}")
        else:
            print("Nothing to remove.")
        if report.emergency:
            print("Emergency reset performed.")
        print(f"Local cache: {before} -> {footprint(storefront.cache)} chars")
        return 1 if report.failed else 0

    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_migrate(args: argparse.Namespace) -> int:
    """Push legacy local data to the remote store."""
    try:
        migration = get_storefront().migration

        if not migration.pending():
            print("Nothing to migrate.")
            return 0

        if args.skip:
            migration.skip()
            print("Migration skipped.")
            return 0

        report = migration.run()
        print(f"Migrated {report.products} product(s) and {report.orders} order(s).")
        if report.settings:
            print("Migrated store settings.")
        if report.skipped_records:
            print(f"Skipped {report.skipped_records} unreadable record(s).")
        return 0

    except RemoteStoreError as e:
        print(f"Migration failed, try again later: {e}", file=sys.stderr)
        return 1
    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_outbox_list(args: argparse.Namespace) -> int:
    """List pending remote operations."""
    try:
        pending = get_storefront().outbox.pending

        if not pending:
            print("Outbox is empty.")
            return 0

        print(f"Pending operations ({len(pending)}):")
        for op in pending:
            print(f"  {op.method:<6} {op.endpoint}  attempts={op.attempts}")
            if op.last_error:
                print(f"         last error: {op.last_error}")
        return 0

    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_outbox_drain(args: argparse.Namespace) -> int:
    """Replay pending remote operations."""
    try:
        result = get_storefront().outbox.drain()

        print(f"Sent: {result.sent}")
        print(f"Dropped: {result.dropped}")
        print(f"Remaining: {result.remaining}")
        return 0 if result.remaining == 0 else 1

    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_list(args: argparse.Namespace) -> int:
    """List the product catalog."""
    try:
        storefront = get_storefront()
        storefront.settings.load()
        outcome = storefront.products.refresh_products(include_images=args.images)
        products = outcome.value

        if not products:
            print("No products found.")
            return 0

        if args.json:
            print(json.dumps([p.to_dict() for p in products], indent=2, ensure_ascii=False))
        else:
            print(f"Products ({len(products)}, from {outcome.source.value}):")
            print()
            for p in products:
                price = storefront.settings.format_price(p.price)
                flag = " [images]" if p.carries_images else ""
                print(f"  {p.id}  {p.title} ({p.brand})  {price}  stock={p.total_stock}{flag}")
        return 0

    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products_cleanup(args: argparse.Namespace) -> int:
    """Delete every product locally and remotely."""
    try:
        storefront = get_storefront()
        storefront.products.load()
        removed = storefront.products.cleanup_all()

        print(f"Deleted {removed} product(s).")
        if storefront.outbox.pending:
            print("Remote cleanup is queued; run 'storesync outbox drain' later.")
        return 0

    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_list(args: argparse.Namespace) -> int:
    """List every order, newest first."""
    try:
        storefront = get_storefront()
        storefront.settings.load()
        outcome = storefront.orders.load()
        orders = storefront.orders.orders

        if not orders:
            print("No orders found.")
            return 0

        if args.json:
            print(json.dumps([o.to_dict() for o in orders], indent=2, ensure_ascii=False))
        else:
            print(f"Orders ({len(orders)}, from {outcome.source.value}):")
            print()
            for o in orders:
                total = storefront.settings.format_price(o.total)
                print(f"  {o.id}  {o.date[:10]}  {o.status.value:<10}  {total}")
                if o.user_email:
                    print(f"           {o.user_email}")
        return 0

    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_settings_show(args: argparse.Namespace) -> int:
    """Print the store settings in effect."""
    try:
        storefront = get_storefront()
        outcome = storefront.settings.load()

        print(json.dumps(outcome.value.to_dict(), indent=2, ensure_ascii=False))
        print(f"(from {outcome.source.value})", file=sys.stderr)
        return 0

    except (StoresyncError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the Remote Store API server."""
    try:
        import uvicorn

        if args.data_dir:
            os.environ["STORESYNC_DATA_DIR"] = args.data_dir

        print("Starting storesync remote store...")
        print(f"Data directory: {AppConfig.from_env().data_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "storesync.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="storesync",
        description="Local-first storefront data sync against a key-value remote store.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the remote store API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--data-dir", help="Key-value data directory (default: $STORESYNC_DATA_DIR/kv)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # status
    subparsers.add_parser("status", help="Load all data and report its sources")

    # hygiene
    subparsers.add_parser("hygiene", help="Evict oversized and non-essential cache entries")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Push legacy local data to the remote")
    migrate_parser.add_argument(
        "--skip", action="store_true", help="Mark migration done without uploading"
    )

    # outbox (subcommand group)
    outbox_parser = subparsers.add_parser("outbox", help="Inspect pending remote operations")
    outbox_subparsers = outbox_parser.add_subparsers(dest="outbox_command")
    outbox_subparsers.add_parser("list", help="List pending operations")
    outbox_subparsers.add_parser("drain", help="Replay pending operations")

    # products (subcommand group)
    products_parser = subparsers.add_parser("products", help="Manage the product catalog")
    products_subparsers = products_parser.add_subparsers(dest="products_command")

    products_list_parser = products_subparsers.add_parser("list", help="List products")
    products_list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    products_list_parser.add_argument(
        "--images", action="store_true", help="Request image payloads from the remote"
    )
    products_subparsers.add_parser("cleanup", help="Delete every product")

    # orders (subcommand group)
    orders_parser = subparsers.add_parser("orders", help="Inspect orders")
    orders_subparsers = orders_parser.add_subparsers(dest="orders_command")
    orders_list_parser = orders_subparsers.add_parser("list", help="List orders")
    orders_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # settings (subcommand group)
    settings_parser = subparsers.add_parser("settings", help="Inspect store settings")
    settings_subparsers = settings_parser.add_subparsers(dest="settings_command")
    settings_subparsers.add_parser("show", help="Print the settings in effect")

    return parser


# Subcommand groups: group -> (dest, {subcommand: handler})
GROUPS = {
    "outbox": ("outbox_command", {"list": cmd_outbox_list, "drain": cmd_outbox_drain}),
    "products": (
        "products_command",
        {"list": cmd_products_list, "cleanup": cmd_products_cleanup},
    ),
    "orders": ("orders_command", {"list": cmd_orders_list}),
    "settings": ("settings_command", {"show": cmd_settings_show}),
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    if not args.command:
        parser.print_help()
        return 0

    if args.command in GROUPS:
        dest, handlers = GROUPS[args.command]
        subcommand = getattr(args, dest, None)
        if not subcommand:
            parser.parse_args([args.command, "--help"])
            return 0
        return handlers[subcommand](args)

    commands = {
        "serve": cmd_serve,
        "status": cmd_status,
        "hygiene": cmd_hygiene,
        "migrate": cmd_migrate,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
