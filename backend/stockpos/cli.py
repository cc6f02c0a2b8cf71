# Overview: Flask CLI command groups for bootstrap, catalog upkeep, and inspection.

# backend/stockpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog list [--all] [--search cola]
#   List products with stock and status.
# - python -m flask catalog add --name "Cola 330ml" --price-cents 150 --stock 24 --min-stock 6
#   Create a product with its stock row.
# - python -m flask catalog set-stock 3 40
#   Overwrite stock for a product (manual count / replenishment).
#
# Reports:
# - python -m flask reports summary --start 2026-01-01 --end 2026-01-31
#   Orders, items sold, revenue and average order value for a period.
# - python -m flask reports low-stock
#   Active products at or under their minimum threshold.
#
# Integrity:
# - python -m flask integrity check
#   Scan stock and sale ledger for broken invariants (exit code 1 if any).

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import catalog_service, integrity_service, reporting_service
from .services.catalog_service import CatalogError, ProductNotFoundError
from .time_utils import date_range
from .validation import ValidationError


def _money(cents: int) -> str:
    return f"{cents / 100:.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet. Existing data is kept."""
    db.create_all()
    click.echo("PASS Database schema ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('catalog')
def catalog_group():
    """Product and stock commands."""


@catalog_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated products')
@click.option('--search', default=None, help='Case-insensitive name filter')
@with_appcontext
def list_products(include_inactive, search):
    """List products with their stock and status."""
    products = catalog_service.list_products(search=search, include_inactive=include_inactive)

    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<6} {'Name':<36} {'Price':>10} {'Stock':>8} {'Min':>6} {'Status':<8} {'Active'}")
    click.echo("="*90)

    for p in products:
        data = p.to_dict()
        active_str = "Yes" if p.is_active else "No"
        click.echo(
            f"{p.id:<6} {p.name[:36]:<36} {_money(p.price_cents):>10} "
            f"{data['stock']:>8} {p.min_stock:>6} {data['status']:<8} {active_str}"
        )

    click.echo("="*90 + "\n")


@catalog_group.command('add')
@click.option('--name', prompt=True, help='Product name')
@click.option('--price-cents', type=int, prompt=True, help='Unit price in cents')
@click.option('--stock', 'initial_stock', type=int, default=0, show_default=True, help='Initial stock')
@click.option('--min-stock', type=int, default=None, help='Low-stock threshold (default: DEFAULT_MIN_STOCK)')
@with_appcontext
def add_product(name, price_cents, initial_stock, min_stock):
    """Create a product together with its stock row."""
    if min_stock is None:
        min_stock = current_app.config["DEFAULT_MIN_STOCK"]

    try:
        product = catalog_service.create_product(
            name=name,
            price_cents=price_cents,
            min_stock=min_stock,
            initial_stock=initial_stock,
        )
    except ValidationError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created product {product.id}: {product.name} ({_money(product.price_cents)}), stock {initial_stock}")


@catalog_group.command('set-stock')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@with_appcontext
def set_stock(product_id, quantity):
    """Overwrite the stock quantity of PRODUCT_ID."""
    try:
        stock = catalog_service.adjust_stock(product_id, quantity)
    except ProductNotFoundError:
        raise click.ClickException(f"Product {product_id} not found")
    except (ValidationError, CatalogError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Product {product_id} stock set to {stock.quantity}")


@click.group('reports')
def reports_group():
    """Sales and stock reports."""


@reports_group.command('summary')
@click.option('--start', default=None, help='First local day (YYYY-MM-DD)')
@click.option('--end', default=None, help='Last local day, inclusive (YYYY-MM-DD)')
@with_appcontext
def summary_report(start, end):
    """Print period totals."""
    try:
        rng = date_range(
            start,
            end,
            current_app.config["STORE_TIMEZONE"],
            default_days=current_app.config["REPORT_DEFAULT_DAYS"],
        )
    except ValueError as e:
        raise click.ClickException(str(e))

    report = reporting_service.summary(rng)
    click.echo(f"Period:      {report['start']} .. {report['end']}")
    click.echo(f"Orders:      {report['orders']}")
    click.echo(f"Items sold:  {report['items_sold']}")
    click.echo(f"Revenue:     {_money(report['revenue_cents'])}")
    click.echo(f"Avg order:   {_money(report['avg_order_cents'])}")


@reports_group.command('low-stock')
@with_appcontext
def low_stock_report():
    """Print products at or under their minimum threshold."""
    rows = reporting_service.low_stock()
    if not rows:
        click.echo("PASS No products at or under their threshold.")
        return

    click.echo(f"{'ID':<6} {'Name':<36} {'Stock':>8} {'Min':>6} {'Status'}")
    for row in rows:
        click.echo(
            f"{row['product_id']:<6} {row['name'][:36]:<36} {row['stock']:>8} "
            f"{row['min_stock']:>6} {row['status']}"
        )


@click.group('integrity')
def integrity_group():
    """Ledger and stock invariant checks."""


@integrity_group.command('check')
@with_appcontext
def integrity_check():
    """Scan for broken invariants. Exits with status 1 if anything is found."""
    result = integrity_service.scan()
    if result["ok"]:
        click.echo("PASS No integrity anomalies found.")
        return

    click.echo(f"FAIL {result['count']} anomalies found:")
    for anomaly in result["anomalies"]:
        details = ", ".join(f"{k}={v}" for k, v in anomaly.items() if k != "kind")
        click.echo(f"  - {anomaly['kind']}: {details}")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(reports_group)
    app.cli.add_command(integrity_group)
