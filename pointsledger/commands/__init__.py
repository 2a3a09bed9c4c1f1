"""
CLI Commands for the points ledger.

Usage:
    flask ledger ingest-events --tenant artly events.json
    flask ledger ingest-users --tenant artly users.json
    flask ledger ingest-charges --tenant artly charges.json
    flask ledger sync-balances --tenant artly balances.json
    flask ledger expire-points
    flask ledger balance --tenant artly --user-id 42
    flask ledger reconcile --tenant artly
"""
from .ledger import init_app as init_ledger_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_ledger_commands(app)
