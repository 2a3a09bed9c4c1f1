"""
Wallet snapshot maintenance and the read path for balances.

The snapshot is a cache. It is rewritten inside the same unit of work as
every batch mutation, and can always be re-derived from the batches.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..extensions import db
from ..models.customer import Customer
from ..models.wallet import WalletSnapshot
from ..utils.exceptions import CustomerNotFoundError, TenantNotFoundError
from .points_batches import PointsBatchStore
from .tenant_directory import get_tenant, normalize_tenant_ref
from .transaction_log import TransactionLog


def recalculate_wallet_snapshot(tenant_id: str, customer_id: int) -> WalletSnapshot:
    """
    Recompute a customer's snapshot from their active batches.

    Flushes but does not commit; callers run this inside the unit of work
    that changed the batches. Safe to re-run.
    """
    balance = PointsBatchStore(tenant_id).active_points_total(customer_id)

    snapshot = db.session.get(WalletSnapshot, (tenant_id, customer_id))
    if snapshot is None:
        snapshot = WalletSnapshot(tenant_id=tenant_id, customer_id=customer_id)
        db.session.add(snapshot)

    snapshot.points_balance = balance
    snapshot.updated_at = datetime.utcnow()
    db.session.flush()
    return snapshot


def _snapshot_for(tenant_ref, external_user_id: int) -> Optional[WalletSnapshot]:
    tenant_id = normalize_tenant_ref(tenant_ref)
    return db.session.query(WalletSnapshot).join(
        Customer, Customer.id == WalletSnapshot.customer_id
    ).filter(
        WalletSnapshot.tenant_id == tenant_id,
        Customer.tenant_id == tenant_id,
        Customer.external_user_id == external_user_id
    ).first()


def get_wallet_balance(tenant_ref, external_user_id: int) -> int:
    """
    Current points for a customer, read from the snapshot only.

    Returns 0 for a customer the ledger has never seen.
    """
    snapshot = _snapshot_for(tenant_ref, external_user_id)
    return snapshot.points_balance if snapshot else 0


def get_wallet(tenant_ref, external_user_id: int) -> Optional[Dict[str, Any]]:
    """Snapshot details for dashboard display, or None."""
    snapshot = _snapshot_for(tenant_ref, external_user_id)
    if snapshot is None:
        return None

    data = snapshot.to_dict()
    data['external_user_id'] = external_user_id
    return data


def reconcile_customer(tenant_id: str, customer_id: int) -> Dict[str, Any]:
    """
    Cross-check the three views of a customer's balance.

    The snapshot, the sum of active batches and the sum of the transaction
    log must all agree.

    Raises:
        CustomerNotFoundError: If the customer does not belong to the tenant
    """
    customer = db.session.get(Customer, customer_id)
    if customer is None or customer.tenant_id != tenant_id:
        raise CustomerNotFoundError(customer_id)

    snapshot = db.session.get(WalletSnapshot, (tenant_id, customer_id))
    snapshot_balance = snapshot.points_balance if snapshot else 0
    batch_balance = PointsBatchStore(tenant_id).active_points_total(customer_id)
    ledger_balance = TransactionLog(tenant_id).balance_sum(customer_id)

    return {
        'customer_id': customer_id,
        'snapshot_balance': snapshot_balance,
        'batch_balance': batch_balance,
        'ledger_balance': ledger_balance,
        'consistent': snapshot_balance == batch_balance == ledger_balance,
    }


def reconcile_tenant(tenant_ref) -> List[Dict[str, Any]]:
    """Reconciliation report for every customer of a tenant."""
    tenant = get_tenant(tenant_ref)
    if tenant is None:
        raise TenantNotFoundError(normalize_tenant_ref(tenant_ref))
    tenant_id = tenant.id
    customers = Customer.query.filter_by(tenant_id=tenant_id).order_by(Customer.id).all()

    reports = []
    for customer in customers:
        report = reconcile_customer(tenant_id, customer.id)
        report['external_user_id'] = customer.external_user_id
        reports.append(report)
    return reports


def get_transaction_history(tenant_ref, external_user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent transactions for a customer, newest first. Empty if unknown."""
    tenant_id = normalize_tenant_ref(tenant_ref)
    customer = Customer.query.filter_by(
        tenant_id=tenant_id,
        external_user_id=external_user_id
    ).first()
    if customer is None:
        return []

    return [t.to_dict() for t in TransactionLog(tenant_id).history(customer.id, limit=limit)]
