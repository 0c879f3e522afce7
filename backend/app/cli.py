# Overview: Flask CLI command groups for bootstrap, store settings and scheduled maintenance.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stores:
# - python -m flask stores list
# - python -m flask stores create --name "Main Store" --code "MAIN"
# - python -m flask stores set-config 1 tier_quantity_mode cart_total
#   Keys: tier_quantity_mode (per_line|cart_total), reserve_on_checkout (true|false),
#   reservation_ttl_hours (positive integer).
#
# Scheduled jobs (cron):
# - python -m flask stock expire-reservations [--now 2026-01-01T00:00:00Z]
#   Release reservations of pending orders whose hold has expired.
# - python -m flask events dispatch [--limit 100]
#   Retry webhook delivery for undelivered order events.
#
# Orders:
# - python -m flask orders transition 42 confirmed

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .services import event_service, order_service, stock_ledger_service, store_service
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables (idempotent)."""
    db.create_all()
    click.echo("PASS Database tables ready")


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

    click.echo("PASS Database reset complete")


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('list')
@with_appcontext
def list_stores():
    """List all stores with their settings."""
    stores = store_service.list_stores()
    if not stores:
        click.echo("No stores found")
        return
    for store in stores:
        status = "active" if store.is_active else "inactive"
        click.echo(f"{store.id:>4}  {store.name} ({store.code or '-'}) [{status}]")
        for config in store_service.get_store_configs(store.id):
            click.echo(f"        {config.key} = {config.value}")


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--code', default=None, help='Unique store code')
@with_appcontext
def create_store(name, code):
    """Create a new store."""
    try:
        store = store_service.create_store(name, code)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")


@stores_group.command('set-config')
@click.argument('store_id', type=int)
@click.argument('key')
@click.argument('value')
@with_appcontext
def set_config(store_id, key, value):
    """Set a store-level setting."""
    try:
        store_service.set_store_config(store_id, key, value)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Store {store_id}: {key} = {value}")


@click.group('stock')
def stock_group():
    """Stock ledger maintenance."""


@stock_group.command('expire-reservations')
@click.option('--now', 'now_raw', default=None, help='Override current time (ISO-8601)')
@with_appcontext
def expire_reservations(now_raw):
    """Release expired reservations of pending orders."""
    try:
        now = parse_iso_datetime(now_raw)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 datetime", param_hint="--now")
    released = stock_ledger_service.expire_reservations(now=now)
    click.echo(f"PASS Released reservations for {len(released)} order(s)")
    for order_id in released:
        click.echo(f"  order {order_id}")


@click.group('orders')
def orders_group():
    """Order lifecycle commands."""


@orders_group.command('transition')
@click.argument('order_id', type=int)
@click.argument('status', type=click.Choice(order_service.ORDER_STATUSES))
@with_appcontext
def transition(order_id, status):
    """Move an order to STATUS."""
    try:
        order = order_service.transition_order(order_id, status)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Order {order.id} is now {order.status}")


@click.group('events')
def events_group():
    """Order event delivery."""


@events_group.command('dispatch')
@click.option('--limit', default=100, show_default=True, type=int)
@with_appcontext
def dispatch(limit):
    """Retry undelivered order events."""
    result = event_service.dispatch_pending_events(limit=limit)
    click.echo(f"PASS Delivered {result['delivered']}, failed {result['failed']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(events_group)
