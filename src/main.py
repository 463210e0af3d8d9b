"""
Main CLI entry point for the subscription billing service.

Usage:
    python src/main.py api --port 8000
    python src/main.py init-db
    python src/main.py prices
    python src/main.py prices --product prod_123
    python src/main.py report-usage
"""

import sys
import argparse
from pathlib import Path

from rich.console import Console
from rich.table import Table

from config.settings import get_settings
from config.logging_config import setup_structured_logging


def command_init_db(args):
    """Create the billing tables."""
    from db import init_db
    from db.database import get_engine

    console = Console()
    init_db()
    console.print(f"[green]Database ready:[/green] {get_engine().url.render_as_string(hide_password=True)}")
    return 0


def command_prices(args):
    """List active Stripe prices."""
    from billing.stripe_service import StripeService, serialize_price
    from core.exceptions import PaymentProviderError
    from db import SessionLocal, get_engine

    console = Console()
    get_engine()

    with SessionLocal() as db:
        try:
            prices = [serialize_price(p) for p in StripeService(db).get_prices(args.product)]
        except PaymentProviderError as e:
            console.print(f"[red]Failed to fetch prices: {e.message}[/red]")
            return 1

    if not prices:
        console.print("[yellow]No active prices found[/yellow]")
        return 0

    table = Table(title="Active Prices")
    table.add_column("Price", style="cyan")
    table.add_column("Product", style="green")
    table.add_column("Amount", justify="right")
    table.add_column("Interval")

    for price in prices:
        amount = price["unitAmount"]
        amount_str = "-" if amount is None else f"{amount / 100:.2f} {price['currency'].upper()}"
        interval = price["interval"] or "one-time"
        if price["interval"] and price["intervalCount"] and price["intervalCount"] > 1:
            interval = f"{price['intervalCount']} {interval}s"
        table.add_row(price["id"], price["productName"] or price["product"] or "", amount_str, interval)

    console.print(table)
    return 0


def command_report_usage(args):
    """Push closed usage periods to Stripe as meter events."""
    from billing.usage import UsageService
    from core.exceptions import UsageReportingError
    from db import SessionLocal, get_engine

    settings = get_settings()
    console = Console()
    event_name = args.event_name or settings.stripe_meter_event_name
    get_engine()

    with SessionLocal() as db:
        try:
            counts = UsageService(db).report_unreported_usage(event_name)
        except UsageReportingError as e:
            console.print(f"[red]{e.message}[/red]")
            return 1

    table = Table(title=f"Usage report ({event_name})")
    table.add_column("Result", style="cyan")
    table.add_column("Records", justify="right")
    for key in ("reported", "skipped", "failed"):
        table.add_row(key, str(counts[key]))
    console.print(table)

    return 1 if counts["failed"] else 0


def command_api(args):
    """Start the API server."""
    import uvicorn

    console = Console()

    console.print(f"[bold green]Starting API server[/bold green]")
    console.print(f"Host: {args.host}")
    console.print(f"Port: {args.port}")
    console.print(f"Docs: http://{args.host}:{args.port}/docs")

    # Multiple workers need an import string, not an app object
    uvicorn.run(
        "api.app:create_app",
        factory=True,
        app_dir=str(Path(__file__).parent),
        host=args.host,
        port=args.port,
        workers=args.workers
    )

    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Subscription Billing - Stripe subscriptions, payments and usage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s api --port 8000
  %(prog)s init-db
  %(prog)s prices --product prod_123
  %(prog)s report-usage --event-name api_tokens

Configuration is read from BILLING_* environment variables or a .env file.
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    api_parser = subparsers.add_parser("api", help="Start the API server")
    api_parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to"
    )
    api_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to listen on"
    )
    api_parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of workers"
    )

    subparsers.add_parser("init-db", help="Create database tables")

    prices_parser = subparsers.add_parser("prices", help="List active Stripe prices")
    prices_parser.add_argument(
        "--product",
        help="Only show prices of this product"
    )

    usage_parser = subparsers.add_parser("report-usage", help="Report closed usage periods to Stripe")
    usage_parser.add_argument(
        "--event-name",
        help="Billing meter event name (default: BILLING_STRIPE_METER_EVENT_NAME)"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    if args.command != "api":
        settings = get_settings()
        setup_structured_logging(level=settings.log_level, log_file=settings.log_file)

    if args.command == "api":
        return command_api(args)
    elif args.command == "init-db":
        return command_init_db(args)
    elif args.command == "prices":
        return command_prices(args)
    elif args.command == "report-usage":
        return command_report_usage(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
