# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create every table (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Remittance types:
# - python -m flask remittance-types list [--active-only]
# - python -m flask remittance-types create --name "USD -> CUP cash" --currency USD --delivery-currency CUP \
#       --exchange-rate 320 --commission-pct 2 --commission-fixed 1 --min-amount 10 --max-amount 1000
#
# Payment-collection accounts:
# - python -m flask payment-accounts list
# - python -m flask payment-accounts reset-counters --period daily|monthly [--account-id <uuid>]
#   Run daily/monthly from a scheduler to zero the rotation counters.
#
# Orders / remittances:
# - python -m flask orders pending-count
# - python -m flask remittances alerts
#   Remittances due within 24h (or overdue).

import click
from flask.cli import with_appcontext

from .errors import BackofficeError
from .extensions import db
from .services import order_service, payment_account_service, remittance_service, remittance_type_service


def _fail(exc: BackofficeError):
    raise click.ClickException(f"{exc.kind}: {exc.message}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables. Safe to run repeatedly."""
    click.echo("START Initializing back office schema...")
    db.create_all()
    click.echo("PASS Tables ready: " + ", ".join(sorted(db.metadata.tables)))


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


@click.group('remittance-types')
def remittance_types_group():
    """Remittance type management."""


@remittance_types_group.command('list')
@click.option('--active-only', is_flag=True, help='Hide inactive types')
@with_appcontext
def list_remittance_types(active_only):
    types = remittance_type_service.list_remittance_types(active_only=active_only)
    if not types:
        click.echo("No remittance types configured.")
        return
    for t in types:
        rate = t.exchange_rate if t.exchange_rate is not None else "table"
        status = "active" if t.is_active else "inactive"
        click.echo(
            f"{t.id}  {t.name}  {t.currency_code}->{t.delivery_currency}  rate={rate}  "
            f"commission={t.commission_percentage}%+{t.commission_fixed}  "
            f"limits={t.min_amount}..{t.max_amount or '-'}  {t.delivery_method}  {status}"
        )


@remittance_types_group.command('create')
@click.option('--name', required=True, help='Display name')
@click.option('--currency', 'currency_code', required=True, help='Currency the customer pays in')
@click.option('--delivery-currency', required=True, help='Currency the recipient receives')
@click.option('--exchange-rate', help='Fixed rate (omit to use the exchange_rates table)')
@click.option('--commission-pct', default='0', show_default=True)
@click.option('--commission-fixed', default='0', show_default=True)
@click.option('--min-amount', required=True)
@click.option('--max-amount', help='Upper limit (omit for none)')
@click.option('--delivery-method', type=click.Choice(sorted(remittance_type_service.DELIVERY_METHODS)), default='cash', show_default=True)
@click.option('--max-delivery-days', type=int, default=3, show_default=True)
@with_appcontext
def create_remittance_type(name, currency_code, delivery_currency, exchange_rate, commission_pct,
                           commission_fixed, min_amount, max_amount, delivery_method, max_delivery_days):
    try:
        rtype = remittance_type_service.create_remittance_type({
            "name": name,
            "currency_code": currency_code,
            "delivery_currency": delivery_currency,
            "exchange_rate": exchange_rate,
            "commission_percentage": commission_pct,
            "commission_fixed": commission_fixed,
            "min_amount": min_amount,
            "max_amount": max_amount,
            "delivery_method": delivery_method,
            "max_delivery_days": max_delivery_days,
        })
    except BackofficeError as exc:
        _fail(exc)
    click.echo(f"PASS Created remittance type {rtype.name} (ID: {rtype.id})")


@click.group('payment-accounts')
def payment_accounts_group():
    """Payment-collection account maintenance."""


@payment_accounts_group.command('list')
@with_appcontext
def list_payment_accounts():
    for a in payment_account_service.list_payment_accounts():
        scope = "+".join(s for s, on in (("products", a.for_products), ("remittances", a.for_remittances)) if on)
        click.echo(
            f"{a.id}  {a.account_name}  priority={a.priority}  {scope or 'none'}  "
            f"daily={a.current_daily_amount}/{a.daily_limit or '-'}  "
            f"monthly={a.current_monthly_amount}/{a.monthly_limit or '-'}  "
            f"{'active' if a.is_active else 'inactive'}"
        )


@payment_accounts_group.command('reset-counters')
@click.option('--period', type=click.Choice(sorted(payment_account_service.RESET_PERIODS)), required=True)
@click.option('--account-id', help='Only this account')
@with_appcontext
def reset_counters(period, account_id):
    try:
        count = payment_account_service.reset_counters(period, account_id=account_id)
    except BackofficeError as exc:
        _fail(exc)
    click.echo(f"PASS Reset {period} counters on {count} account(s)")


@click.group('orders')
def orders_group():
    """Order inspection."""


@orders_group.command('pending-count')
@with_appcontext
def pending_count():
    click.echo(str(order_service.get_pending_orders_count()))


@click.group('remittances')
def remittances_group():
    """Remittance inspection."""


@remittances_group.command('alerts')
@with_appcontext
def remittance_alerts():
    rows = remittance_service.get_remittances_needing_alert()
    if not rows:
        click.echo("No remittances close to their delivery deadline.")
        return
    for r in rows:
        alert = remittance_service.calculate_delivery_alert(r)
        click.echo(f"{r.remittance_number}  {r.status}  {alert['level'].upper()}  {alert['message']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(remittance_types_group)
    app.cli.add_command(payment_accounts_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(remittances_group)
