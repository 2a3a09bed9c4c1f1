"""
CLI Commands for the points ledger.

These commands can be run manually, by the host application, or via cron:

# Points expiry (run daily at 2 AM when the in-process scheduler is off)
0 2 * * * cd /app && flask ledger expire-points

# Import a batch of points events exported by the store
flask ledger ingest-events --tenant artly events.json
"""

import json

import click
from flask.cli import with_appcontext

from ..services.expiry_sweeper import expire_points
from ..services.points_ingestion import PointsIngestionService
from ..services.wallet_service import get_transaction_history, get_wallet, reconcile_tenant
from ..utils.exceptions import LedgerError


def _load_json(path):
    with open(path, 'r', encoding='utf-8') as handle:
        try:
            return json.load(handle)
        except json.JSONDecodeError as e:
            raise click.ClickException(f"{path} is not valid JSON: {e}")


def _echo_errors(result):
    if result.get('errors'):
        click.echo(f"  Errors: {result['failed']}")
        for error in result['errors'][:5]:
            click.echo(f"    - Item {error['index']}: [{error['code']}] {error['message']}")


def _run_ingest(tenant, path, method_name):
    try:
        service = PointsIngestionService(tenant)
        return getattr(service, method_name)(_load_json(path))
    except LedgerError as e:
        raise click.ClickException(e.message)


@click.group('ledger')
def ledger_cli():
    """Points ledger commands."""
    pass


@ledger_cli.command('ingest-events')
@click.option('--tenant', required=True, help='Tenant (workspace/store) id')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def ingest_events_command(tenant, path):
    """Import purchase/spend events from a JSON array file."""
    result = _run_ingest(tenant, path, 'ingest_points_events')

    click.echo(f"Tenant {tenant}:")
    click.echo(f"  Imported: {result['imported']}")
    click.echo(f"  Skipped (already imported): {result['skipped_existing']}")
    click.echo(f"  Skipped (zero delta): {result['skipped_zero']}")
    if result['normalized_timestamps']:
        click.echo(f"  Timestamps defaulted to now: {result['normalized_timestamps']}")
    if result['shortfalls']:
        click.echo(f"  Spends exceeding balance: {result['shortfalls']}")
    _echo_errors(result)


@ledger_cli.command('ingest-users')
@click.option('--tenant', required=True, help='Tenant (workspace/store) id')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def ingest_users_command(tenant, path):
    """Upsert customer contact records from a JSON array file."""
    result = _run_ingest(tenant, path, 'ingest_users')

    click.echo(f"Tenant {tenant}: {result['upserted']} customers upserted")
    _echo_errors(result)


@ledger_cli.command('ingest-charges')
@click.option('--tenant', required=True, help='Tenant (workspace/store) id')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def ingest_charges_command(tenant, path):
    """Record payment charges from a JSON array file."""
    result = _run_ingest(tenant, path, 'ingest_charges')

    click.echo(f"Tenant {tenant}:")
    click.echo(f"  Recorded: {result['recorded']}")
    click.echo(f"  Skipped (already recorded): {result['skipped_existing']}")
    click.echo(f"  Ignored: {result['ignored']}")
    if result['normalized_timestamps']:
        click.echo(f"  Timestamps defaulted to now: {result['normalized_timestamps']}")
    _echo_errors(result)


@ledger_cli.command('sync-balances')
@click.option('--tenant', required=True, help='Tenant (workspace/store) id')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def sync_balances_command(tenant, path):
    """Apply absolute balances from a JSON array file through the ledger."""
    result = _run_ingest(tenant, path, 'sync_points_balances')

    click.echo(f"Tenant {tenant}:")
    click.echo(f"  Synced: {result['synced']}")
    click.echo(f"  Adjusted: {result['adjusted']}")
    click.echo(f"  Unchanged: {result['unchanged']}")
    _echo_errors(result)


@ledger_cli.command('expire-points')
@with_appcontext
def expire_points_command():
    """
    Expire points batches past their expiry date, across all tenants.

    Run this daily. Re-running is harmless.
    """
    result = expire_points()

    click.echo(f"Expired batches: {result['expired_batches']}")
    click.echo(f"Points expired: {result['points_expired']}")
    click.echo(f"Customers affected: {result['customers_affected']}")

    if result['errors']:
        click.echo(f"Errors: {len(result['errors'])}")
        for error in result['errors'][:5]:
            click.echo(f"  - Customer {error['customer_id']} ({error['tenant_id']}): {error['error']}")


@ledger_cli.command('balance')
@click.option('--tenant', required=True, help='Tenant (workspace/store) id')
@click.option('--user-id', type=int, required=True, help='External (WordPress) user id')
@click.option('--history', type=int, default=0, help='Also list the N most recent transactions')
@with_appcontext
def balance_command(tenant, user_id, history):
    """Show a customer's cached wallet balance."""
    try:
        wallet = get_wallet(tenant, user_id)
        transactions = get_transaction_history(tenant, user_id, limit=history) if history > 0 else []
    except LedgerError as e:
        raise click.ClickException(e.message)

    if wallet is None:
        click.echo(f"No wallet for user {user_id} in tenant {tenant} (balance 0)")
        return

    click.echo(f"User {user_id} in tenant {tenant}: {wallet['points_balance']} points "
               f"(updated {wallet['updated_at']})")

    for t in transactions:
        click.echo(f"  {t['created_at']}  {t['delta']:+d}  {t['transaction_type']}  {t['description'] or ''}")


@ledger_cli.command('reconcile')
@click.option('--tenant', required=True, help='Tenant (workspace/store) id')
@with_appcontext
def reconcile_command(tenant):
    """
    Check that snapshots, batches and the transaction log agree.

    Exits non-zero when any customer is inconsistent.
    """
    try:
        reports = reconcile_tenant(tenant)
    except LedgerError as e:
        raise click.ClickException(e.message)

    mismatches = [r for r in reports if not r['consistent']]

    click.echo(f"Tenant {tenant}: {len(reports)} customers checked, {len(mismatches)} inconsistent")
    for report in mismatches[:10]:
        click.echo(
            f"  User {report['external_user_id']}: snapshot={report['snapshot_balance']} "
            f"batches={report['batch_balance']} ledger={report['ledger_balance']}"
        )

    if mismatches:
        raise SystemExit(1)


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(ledger_cli)
