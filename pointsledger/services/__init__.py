"""
Points ledger services.

The host application uses these entry points; everything else in the
package is internal.
"""
from .points_ingestion import (
    PointsIngestionService,
    ingest_points_events,
    ingest_users,
    ingest_charges,
    sync_points_balances,
)
from .expiry_sweeper import ExpirySweeper, expire_points
from .wallet_service import (
    get_wallet_balance,
    get_wallet,
    get_transaction_history,
    recalculate_wallet_snapshot,
    reconcile_customer,
    reconcile_tenant,
)
from .tenant_directory import ensure_tenant, get_tenant

__all__ = [
    'PointsIngestionService',
    'ingest_points_events',
    'ingest_users',
    'ingest_charges',
    'sync_points_balances',
    'ExpirySweeper',
    'expire_points',
    'get_wallet_balance',
    'get_wallet',
    'get_transaction_history',
    'recalculate_wallet_snapshot',
    'reconcile_customer',
    'reconcile_tenant',
    'ensure_tenant',
    'get_tenant',
]
