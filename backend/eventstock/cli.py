# Overview: Flask CLI command groups for bootstrap, catalogue setup, and audit inspection.

# backend/eventstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-categories
#   Create the consumable categories named in CONSUMABLE_CATEGORY_NAMES.
#
# Catalogue:
# - python -m flask items create --name "Tent" --quantity 20 --category "Shelter"
#   Create an item (category is created as durable if missing).
# - python -m flask items list [--all]
#   List items with quantity and version.
#
# Audit trail:
# - python -m flask audit list --start 2026-05-01 --end 2026-05-31 --limit 50
#   Print audit entries newest first.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import audit_service, inventory_service
from .services.errors import InventoryError
from .time_utils import parse_iso_datetime, to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("PASS Database tables created")


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
    click.echo("START Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@system_group.command('seed-categories')
@with_appcontext
def seed_categories():
    """Create the configured consumable categories (idempotent)."""
    names = current_app.config["CONSUMABLE_CATEGORY_NAMES"]
    if not names:
        click.echo("No consumable category names configured.")
        return

    for name in names:
        category = inventory_service.get_or_create_category(name, is_consumable=True)
        if not category.is_consumable:
            category.is_consumable = True
            click.echo(f"PASS Marked existing category as consumable: {category.name}")
        else:
            click.echo(f"PASS Consumable category ready: {category.name} (ID: {category.id})")
    db.session.commit()


@click.group('items')
def items_group():
    """Item catalogue commands."""


@items_group.command('create')
@click.option('--name', prompt=True, help='Item name')
@click.option('--quantity', type=int, default=0, show_default=True, help='Opening quantity')
@click.option('--category', 'category_name', default=None, help='Category name (created if missing)')
@click.option('--consumable', is_flag=True, help='Create a missing category as consumable')
@click.option('--location', default=None, help='Storage location')
@click.option('--description', default=None, help='Free-text description')
@with_appcontext
def create_item(name, quantity, category_name, consumable, location, description):
    """Create an item with an opening quantity."""
    try:
        category_id = None
        if category_name:
            category = inventory_service.get_or_create_category(category_name, is_consumable=consumable)
            category_id = category.id

        item = inventory_service.create_item(
            name,
            quantity=quantity,
            category_id=category_id,
            description=description,
            location=location,
        )
        db.session.commit()
    except InventoryError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created item: {item.name} (ID: {item.id}, quantity: {item.quantity})")


@items_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include soft-deleted items')
@with_appcontext
def list_items(include_inactive):
    """List items with quantity and version."""
    items = inventory_service.list_items(include_inactive=include_inactive)

    if not items:
        click.echo("No items found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<30} {'Category':<20} {'Qty':>6} {'Ver':>5} {'Active':<6}")
    click.echo("="*90)

    for item in items:
        category = item.category.name if item.category else "-"
        active_str = "Yes" if item.is_active else "No"
        click.echo(
            f"{item.id:<5} {item.name[:30]:<30} {category[:20]:<20} "
            f"{item.quantity:>6} {item.version:>5} {active_str:<6}"
        )

    click.echo("="*90 + "\n")


@click.group('audit')
def audit_group():
    """Audit trail inspection commands."""


@audit_group.command('list')
@click.option('--start', default=None, help='Inclusive start (ISO-8601)')
@click.option('--end', default=None, help='Inclusive end (ISO-8601)')
@click.option('--item-id', type=int, default=None, help='Filter by item')
@click.option('--task-id', type=int, default=None, help='Filter by task')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_audit(start, end, item_id, task_id, limit):
    """Print audit entries, newest first."""
    try:
        entries = audit_service.query(
            parse_iso_datetime(start),
            parse_iso_datetime(end),
            item_id=item_id,
            task_id=task_id,
            limit=limit,
        )
    except (ValueError, InventoryError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    if not entries:
        click.echo("No audit entries found.")
        return

    for entry in entries:
        reason = f" reason={entry.reason!r}" if entry.reason else ""
        click.echo(
            f"{to_utc_z(entry.occurred_at)} {entry.action:<18} item={entry.item_id} "
            f"task={entry.task_id} delta={entry.quantity_delta:+d} user={entry.user_id}{reason}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(items_group)
    app.cli.add_command(audit_group)
