# Overview: Flask CLI command group for schema bootstrap and consistency audits.

# backend/campus_cart/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP=campus_cart (PowerShell: $env:FLASK_APP="campus_cart").
# - Use: python -m flask market <command> [options]
#
# - python -m flask market init-db
#   Create any missing tables (idempotent). Use `flask db upgrade` for managed schemas.
# - python -m flask market reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask market audit [--item-id 12]
#   Check every item (or one) against its offers and transaction; exits 1 on violations.

import click
from flask.cli import with_appcontext

from .errors import NotFoundError
from .extensions import db
from .services import audit_service


@click.group('market')
def market_group():
    """Marketplace bootstrap and audit commands."""


@market_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Tables created")


@market_group.command('reset-db')
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


@market_group.command('audit')
@click.option('--item-id', type=int, default=None, help='Audit a single item')
@with_appcontext
def audit(item_id):
    """Verify item/offer/transaction consistency from committed state."""
    if item_id is not None:
        try:
            problems = audit_service.check_item_consistency(item_id)
        except NotFoundError:
            click.echo(f"FAIL Item {item_id} not found")
            raise SystemExit(1)
        report = {item_id: problems} if problems else {}
    else:
        report = audit_service.check_all_items()

    if not report:
        click.echo("PASS No consistency violations found")
        return

    for bad_item_id, problems in report.items():
        for problem in problems:
            click.echo(f"FAIL item {bad_item_id}: {problem}")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(market_group)
