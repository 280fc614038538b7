# Overview: Flask CLI command groups for bootstrap, catalogue maintenance and stock inspection.

# backend/ceramerp/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--warehouse-code MAIN] [--warehouse-name "Dépôt principal"]
#   Idempotent bootstrap: creates tables, a default warehouse and the default cash account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalogue read model:
# - python -m flask catalogue refresh [--product-id 7]
#   Rebuild catalogue rows synchronously (all products when omitted).
#
# Stock inspection:
# - python -m flask inventory show --product-id 7
#   Print every inventory record of a product.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Warehouse
from .services import accounting_service, catalogue_service, inventory_service, products_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--warehouse-code', default='MAIN', help='Default warehouse code')
@click.option('--warehouse-name', default='Dépôt principal', help='Default warehouse name')
@with_appcontext
def init_system(warehouse_code, warehouse_name):
    """
    Initialize the settlement engine schema and bootstrap rows.

    Creates:
    - All tables (if missing)
    - Default warehouse (if no warehouse exists)
    - Default cash account
    """
    click.echo("START Initializing system...")
    db.create_all()

    warehouse = db.session.query(Warehouse).order_by(Warehouse.id).first()
    if warehouse is None:
        warehouse = Warehouse(code=warehouse_code, name=warehouse_name, is_active=True)
        db.session.add(warehouse)
        db.session.commit()
        click.echo(f"PASS Created default warehouse: {warehouse.name} (ID: {warehouse.id})")
    else:
        click.echo(f"PASS Using existing warehouse: {warehouse.name} (ID: {warehouse.id})")

    account = accounting_service.ensure_default_cash_account()
    db.session.commit()
    click.echo(f"PASS Cash account ready: {account.name} (ID: {account.id})")
    click.echo("DONE System initialized.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('catalogue')
def catalogue_group():
    """Catalogue read model commands."""


@catalogue_group.command('refresh')
@click.option('--product-id', type=int, multiple=True, help='Limit to these products (repeatable)')
@with_appcontext
def refresh_catalogue_cmd(product_id):
    """Rebuild catalogue rows now (synchronous, errors are raised)."""
    written = catalogue_service.refresh_catalogue(list(product_id) or None)
    click.echo(f"PASS Refreshed {written} catalogue row(s)")


@click.group('inventory')
def inventory_group():
    """Stock inspection commands."""


@inventory_group.command('show')
@click.option('--product-id', type=int, required=True, help='Product ID')
@with_appcontext
def show_inventory(product_id):
    """Print inventory records for a product (stocking-unit quantities)."""
    product = products_service.get_product(product_id)
    records = inventory_service.get_inventory_records(product_id)
    click.echo(f"{product.code} - {product.name} [{product.stocking_unit}]")
    if not records:
        click.echo("  (no inventory records)")
        return
    for record in records:
        owner = record.ownership_type
        if record.factory_id is not None:
            owner = f"{owner}/factory {record.factory_id}"
        click.echo(
            f"  warehouse {record.warehouse_id} ({owner}): "
            f"on_hand={record.quantity_on_hand} reserved={record.quantity_reserved} "
            f"available={record.quantity_available} pallets={record.pallet_count} colis={record.colis_count}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalogue_group)
    app.cli.add_command(inventory_group)
