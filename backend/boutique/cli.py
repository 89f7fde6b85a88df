# Overview: Flask CLI command groups for bootstrap and report inspection.

# backend/boutique/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to boutique (PowerShell: $env:FLASK_APP="boutique").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db [--business "Boutique"] [--code MAIN]
#   Create tables, a default business, a default location and base units. Idempotent.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Reports (printed as JSON):
# - python -m flask reports profit-margin --business-id 1 --from 2026-10-01 --to 2026-10-31
# - python -m flask reports stock-valuation --business-id 1 [--location-id 2]
# - python -m flask reports top-products --business-id 1 --from 2026-10-01 --to 2026-10-31 --limit 5
# - python -m flask reports inventory --business-id 1 [--location-id 2] [--product-id 3] [--low-stock-only]

import json

import click
from flask.cli import with_appcontext

from .context import build_context
from .extensions import db
from .models import Business, Location, Unit
from .services import reporting_service
from .validation import NotFoundError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@click.option('--business', 'business_name', default='Default Boutique', help='Business name')
@click.option('--code', 'business_code', default='DEFAULT', help='Business code')
@with_appcontext
def init_db(business_name, business_code):
    """
    Create the schema and a default tenant.

    Creates (when missing):
    - Default business
    - "Main" location
    - Base unit "Pieces" and sub-unit "Dozen" (x12)
    """
    click.echo("START Creating tables...")
    db.create_all()

    business = db.session.query(Business).filter_by(code=business_code).first()
    if not business:
        business = Business(name=business_name, code=business_code, is_active=True)
        db.session.add(business)
        db.session.commit()
        click.echo(f"PASS Created business: {business.name} (ID: {business.id}, Code: {business.code})")
    else:
        click.echo(f"PASS Using existing business: {business.name} (ID: {business.id})")

    location = db.session.query(Location).filter_by(business_id=business.id).first()
    if not location:
        location = Location(business_id=business.id, name="Main")
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created location: {location.name} (ID: {location.id})")

    pieces = db.session.query(Unit).filter_by(business_id=business.id, actual_name="Pieces").first()
    if not pieces:
        pieces = Unit(business_id=business.id, actual_name="Pieces", short_name="Pc(s)", base_unit_multiplier=1)
        db.session.add(pieces)
        db.session.flush()
        db.session.add(
            Unit(
                business_id=business.id,
                actual_name="Dozen",
                short_name="dz",
                base_unit_id=pieces.id,
                base_unit_multiplier=12,
            )
        )
        db.session.commit()
        click.echo("PASS Created units: Pieces, Dozen (x12)")

    click.echo("DONE Database initialized.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db' to initialize.")


@click.group('reports')
def reports_group():
    """Run reports from the command line."""


def _context(business_id: int):
    try:
        return build_context(business_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))


def _echo_report(func, **kwargs):
    try:
        report = func(**kwargs)
    except (ValidationError, NotFoundError) as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(report, indent=2, default=str))


@reports_group.command('profit-margin')
@click.option('--business-id', type=int, required=True)
@click.option('--from', 'date_from', default=None, help='Start date (YYYY-MM-DD or ISO-8601)')
@click.option('--to', 'date_to', default=None, help='End date (inclusive)')
@click.option('--location-id', type=int, default=None)
@with_appcontext
def profit_margin(business_id, date_from, date_to, location_id):
    """Profit and margin per product over final sales."""
    _echo_report(
        reporting_service.profit_margin_report,
        ctx=_context(business_id),
        date_from=date_from,
        date_to=date_to,
        location_id=location_id,
    )


@reports_group.command('stock-valuation')
@click.option('--business-id', type=int, required=True)
@click.option('--location-id', type=int, default=None)
@with_appcontext
def stock_valuation(business_id, location_id):
    """On-hand stock valued at the current cost basis."""
    _echo_report(
        reporting_service.stock_valuation_report,
        ctx=_context(business_id),
        location_id=location_id,
    )


@reports_group.command('top-products')
@click.option('--business-id', type=int, required=True)
@click.option('--from', 'date_from', default=None)
@click.option('--to', 'date_to', default=None)
@click.option('--limit', type=int, default=None)
@click.option('--location-id', type=int, default=None)
@with_appcontext
def top_products(business_id, date_from, date_to, limit, location_id):
    """Best sellers by sales amount."""
    _echo_report(
        reporting_service.top_selling_products,
        ctx=_context(business_id),
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        location_id=location_id,
    )


@reports_group.command('inventory')
@click.option('--business-id', type=int, required=True)
@click.option('--location-id', type=int, default=None)
@click.option('--product-id', type=int, default=None)
@click.option('--low-stock-only', is_flag=True, help='Only rows at or below the alert quantity')
@with_appcontext
def inventory(business_id, location_id, product_id, low_stock_only):
    """Current stock per variation and location with low-stock flags."""
    _echo_report(
        reporting_service.inventory_report,
        ctx=_context(business_id),
        location_id=location_id,
        product_id=product_id,
        low_stock_only=low_stock_only,
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(reports_group)
