# Overview: Flask CLI command groups for the operator session and quick read-only inspection.

# crmconsole/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="crmconsole"; bash: export FLASK_APP=crmconsole).
# - Use: python -m flask <group> <command> [options]
#
# Operator session (identity.json + cookies.txt at the root of CRM_STATE_DIR,
# separate from every browser visitor's session):
# - python -m flask session login --phone 13800000000
#   Prompts for the password and logs in against the backend.
# - python -m flask session status
#   Show the cached identity and whether the backend still accepts it.
# - python -m flask session logout
#   Best-effort backend logout, then clear the local identity and cookies.
#
# Inspection:
# - python -m flask stores list [--json]
# - python -m flask customers list [--q 138] [--json]
# - python -m flask dashboard summary [--range 7|30 | --start 2024-03-01 --end 2024-03-14]
#
# A 401 from the backend during any command ends the session and exits with 1.

import json
import sys

import click
from flask import current_app
from flask.cli import with_appcontext

from .client import SessionExpired
from .extensions import api_base_url, get_cli_session
from .models import to_dict
from .services import auth_service, customer_service, store_service
from .services.auth_service import AuthError
from .services.customer_service import CustomerError
from .services.dashboard_service import DashboardError, Metric, RangeSelection, fetch_aggregate
from .services.fulfillment_service import format_amount
from .services.session_service import SessionState
from .services.store_service import StoreError
from .validation import ValidationError


SESSION_EXPIRED = "Session expired, please log in again."


def _fail(message: str, code: int = 1):
    click.echo(f"FAIL {message}")
    sys.exit(code)


def _probe():
    return auth_service.make_probe(current_app.config["CRM_SESSION_PROBE_PATH"])


def _authenticated_session():
    """Restore the cached session for this process, or stop the command."""
    session = get_cli_session()
    if session.state is SessionState.UNKNOWN:
        session.restore(_probe(), api_base_url())
    if not session.is_authenticated:
        _fail("Not logged in. Run: python -m flask session login")
    return session


@click.group('session')
def session_group():
    """Operator session commands."""


@session_group.command('login')
@click.option('--phone', prompt=True, help='Operator phone number')
@click.option('--password', prompt=True, hide_input=True, help='Operator password')
@with_appcontext
def session_login(phone, password):
    """Exchange credentials for a backend session and cache the identity."""
    session = get_cli_session()
    try:
        with session.anonymous_client(api_base_url()) as api:
            user = auth_service.login(api, phone, password)
    except (ValidationError, AuthError) as e:
        _fail(str(e))

    session.login(user)
    click.echo(f"PASS Logged in as {user.phone} ({user.role})")


@session_group.command('logout')
@with_appcontext
def session_logout():
    """Log out locally; the backend call is best effort."""
    session = get_cli_session()
    if session.cache.load() is not None:
        with session.anonymous_client(api_base_url()) as api:
            auth_service.logout(api)
    session.logout()
    click.echo("PASS Logged out")


@session_group.command('status')
@with_appcontext
def session_status():
    """Show the cached identity and verify it against the backend."""
    session = get_cli_session()
    state = session.restore(_probe(), api_base_url())
    if state is not SessionState.AUTHENTICATED:
        click.echo("Not logged in.")
        return
    user = session.user
    click.echo(f"Logged in as {user.phone} (role: {user.role}, id: {user.id})")
    click.echo(f"API: {api_base_url()}")


@click.group('stores')
def stores_group():
    """Store inspection commands."""


@stores_group.command('list')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@with_appcontext
def list_stores(as_json):
    """List all stores."""
    session = _authenticated_session()
    try:
        with session.client(api_base_url()) as api:
            stores = store_service.list_stores(api)
    except SessionExpired:
        _fail(SESSION_EXPIRED)
    except StoreError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps([to_dict(s) for s in stores], indent=2))
        return

    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Code':<20} {'Name':<30} {'City':<15} {'Status'}")
    click.echo("=" * 80)
    for store in stores:
        click.echo(f"{store.id:<5} {store.code:<20} {store.name:<30} {(store.city or '-'):<15} "
                   f"{store_service.status_label(store.status)}")
    click.echo("=" * 80 + "\n")


@click.group('customers')
def customers_group():
    """Customer inspection commands."""


@customers_group.command('list')
@click.option('--q', 'query', default=None, help='Match name or phone')
@click.option('--limit', type=int, default=None, help='Maximum rows')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@with_appcontext
def list_customers(query, limit, as_json):
    """List customers, optionally filtered."""
    session = _authenticated_session()
    try:
        with session.client(api_base_url()) as api:
            customers = customer_service.list_customers(api, q=query, limit=limit)
    except SessionExpired:
        _fail(SESSION_EXPIRED)
    except CustomerError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps([to_dict(c) for c in customers], indent=2))
        return

    if not customers:
        click.echo("No customers found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<6} {'Name':<20} {'Phone':<16} {'Gender':<8} {'Status'}")
    click.echo("=" * 80)
    for c in customers:
        click.echo(f"{c.id:<6} {c.name:<20} {c.phone:<16} {customer_service.gender_label(c.gender):<8} "
                   f"{customer_service.status_label(c.status)}")
    click.echo("=" * 80 + "\n")


@click.group('dashboard')
def dashboard_group():
    """Dashboard commands."""


@dashboard_group.command('summary')
@click.option('--range', 'days', type=click.Choice(['7', '30']), default=None, help='Trailing window in days')
@click.option('--start', default=None, help='Custom range start (YYYY-MM-DD)')
@click.option('--end', default=None, help='Custom range end (YYYY-MM-DD)')
@click.option('--metric', type=click.Choice([m.value for m in Metric]), default=Metric.AMOUNT.value)
@with_appcontext
def dashboard_summary(days, start, end, metric):
    """Print today's totals and the per-day trend for one range."""
    if days and (start or end):
        _fail("Use either --range or --start/--end, not both")
    try:
        if start or end:
            selection = RangeSelection.custom(start, end)
        else:
            selection = RangeSelection.last_days(int(days or 7))
    except ValidationError as e:
        _fail(str(e))

    session = _authenticated_session()
    try:
        with session.client(api_base_url()) as api:
            aggregate = fetch_aggregate(api, selection)
    except SessionExpired:
        _fail(SESSION_EXPIRED)
    except DashboardError as e:
        _fail(str(e))

    chosen = Metric.parse(metric)
    today = aggregate.today
    click.echo(f"{selection.describe()}")
    click.echo(f"Today: {format_amount(today.total_amount)} over {today.order_count} orders "
               f"(average {format_amount(today.average_amount)})")
    click.echo(f"\n{chosen.label} per day:")
    for day, value in aggregate.series(chosen):
        click.echo(f"  {day:<12} {chosen.format(value)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(session_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(dashboard_group)
