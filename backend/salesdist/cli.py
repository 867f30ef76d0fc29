# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/salesdist/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "salesdist:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Reference data:
# - python -m flask catalog add-branch --code JKT --name "Jakarta"
# - python -m flask catalog add-product --code P-001 --name "Mineral Water" --price 3500
# - python -m flask catalog list
#
# Stock inspection:
# - python -m flask stock low [--branch-id 1]
#   Rows at or below their minimum stock.
# - python -m flask stock reconcile --product-id 1 --branch-id 1
#   Compare the recorded quantity with the movement log.
# - python -m flask stock reconcile-all [--branch-id 1]
#   Report every stock row whose quantity disagrees with its movements.
#
# Reference numbers:
# - python -m flask refs next --prefix TRX
#   Allocate the next number for a sequential prefix (consumes it).
# - python -m flask refs parse TRX-20260115-0001

import click
from flask.cli import with_appcontext

from .errors import CoreError
from .extensions import db
from .models import Branch, Product, Stock
from .services import identifier_service, stock_service
from .services.concurrency import atomic
from .time_utils import parse_iso_date
from .validation import coerce_money


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema is up to date.")


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
    """Branch and product reference data."""


@catalog_group.command('add-branch')
@click.option('--code', required=True)
@click.option('--name', required=True)
@with_appcontext
def add_branch(code, name):
    if db.session.query(Branch).filter_by(code=code).first():
        raise click.ClickException(f"Branch '{code}' already exists")

    def _op():
        branch = Branch(code=code, name=name)
        db.session.add(branch)
        db.session.flush()
        return branch

    branch = atomic(_op)
    click.echo(f"PASS Branch created id={branch.id} code={branch.code}")


@catalog_group.command('add-product')
@click.option('--code', required=True)
@click.option('--name', required=True)
@click.option('--price', required=True)
@with_appcontext
def add_product(code, name, price):
    if db.session.query(Product).filter_by(code=code).first():
        raise click.ClickException(f"Product '{code}' already exists")
    try:
        price = coerce_money(price, "price")
    except CoreError as e:
        raise click.ClickException(e.message)

    def _op():
        product = Product(code=code, name=name, price=price)
        db.session.add(product)
        db.session.flush()
        return product

    product = atomic(_op)
    click.echo(f"PASS Product created id={product.id} code={product.code} price={product.price}")


@catalog_group.command('list')
@with_appcontext
def list_catalog():
    branches = db.session.query(Branch).order_by(Branch.id).all()
    products = db.session.query(Product).order_by(Product.id).all()

    click.echo(f"\nBranches ({len(branches)}):")
    for branch in branches:
        status = "active" if branch.is_active else "inactive"
        click.echo(f"  [{branch.id}] {branch.code:<10} {branch.name} ({status})")

    click.echo(f"\nProducts ({len(products)}):")
    for product in products:
        click.echo(f"  [{product.id}] {product.code:<10} {product.name} @ {product.price}")


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('low')
@click.option('--branch-id', type=int, default=None, help='Limit to one branch')
@with_appcontext
def low_stock(branch_id):
    rows = stock_service.get_low_stock_alerts(branch_id)
    if not rows:
        click.echo("No stock at or below minimum.")
        return

    click.echo(f"\n{'BRANCH':<8} {'PRODUCT':<20} {'QTY':>6} {'MIN':>6}")
    for stock in rows:
        click.echo(
            f"{stock.branch_id:<8} {stock.product.name[:20]:<20} "
            f"{stock.quantity:>6} {stock.minimum_stock:>6}"
        )


@stock_group.command('reconcile')
@click.option('--product-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def reconcile(product_id, branch_id):
    result = stock_service.reconcile(product_id, branch_id)
    click.echo(
        f"recorded={result['recorded_quantity']} ledger={result['ledger_quantity']} "
        f"difference={result['difference']}"
    )
    if result["balanced"]:
        click.echo("PASS Stock matches its movement log.")
    else:
        click.echo("FAIL Stock does not match its movement log.")
        raise SystemExit(1)


@stock_group.command('reconcile-all')
@click.option('--branch-id', type=int, default=None)
@with_appcontext
def reconcile_all(branch_id):
    q = db.session.query(Stock)
    if branch_id is not None:
        q = q.filter(Stock.branch_id == branch_id)

    mismatches = 0
    for stock in q.order_by(Stock.branch_id, Stock.product_id).all():
        result = stock_service.reconcile(stock.product_id, stock.branch_id)
        if not result["balanced"]:
            mismatches += 1
            click.echo(
                f"FAIL product={stock.product_id} branch={stock.branch_id} "
                f"recorded={result['recorded_quantity']} ledger={result['ledger_quantity']}"
            )

    if mismatches:
        click.echo(f"\n{mismatches} stock row(s) out of balance.")
        raise SystemExit(1)
    click.echo("PASS All stock rows match their movement logs.")


@click.group('refs')
def refs_group():
    """Reference number commands."""


@refs_group.command('next')
@click.option(
    '--prefix',
    type=click.Choice(identifier_service.SEQUENTIAL_PREFIXES),
    required=True,
)
@click.option('--date', 'on_date', default=None, help='YYYY-MM-DD (default: today)')
@with_appcontext
def next_ref(prefix, on_date):
    try:
        on_date = parse_iso_date(on_date)
    except CoreError as e:
        raise click.ClickException(e.message)
    number = atomic(lambda: identifier_service.next_reference_number(prefix, on_date))
    click.echo(number)


@refs_group.command('parse')
@click.argument('value')
def parse_ref(value):
    try:
        prefix, ref_date, suffix = identifier_service.parse_reference_number(value)
    except CoreError as e:
        raise click.ClickException(e.message)
    click.echo(f"prefix={prefix} date={ref_date.isoformat()} suffix={suffix}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(refs_group)
