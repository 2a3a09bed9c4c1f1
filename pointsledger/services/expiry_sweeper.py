"""
Expiry Sweeper.

Retires batches whose expiry date has passed. Runs daily from the
background scheduler or the ``flask ledger expire-points`` command, and is
safe to run any number of times: a batch is only expired while its status
is still ``active``.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.customer import Customer
from ..models.points import BatchStatus, PointsBatch, PointsTransactionType
from ..utils.exceptions import LedgerError
from .customer_registry import CustomerRegistry
from .points_batches import PointsBatchStore
from .transaction_log import TransactionLog
from .wallet_service import recalculate_wallet_snapshot

REFERENCE_BATCH = 'points_batch'


class ExpirySweeper:
    """
    Sweeps expired batches across all tenants.

    Work is committed per customer: all of a customer's expiring batches,
    their expiry transactions and one snapshot recompute share a single
    transaction. A crash mid-sweep leaves finished customers fully
    expired and the rest untouched for the next run.
    """

    def expire_points(self, now: datetime = None) -> Dict[str, Any]:
        """
        Expire every active batch with ``expires_at <= now`` and points left.

        Args:
            now: Sweep time (defaults to the current UTC time)

        Returns:
            Dict with expired batch count, points expired, customers
            affected and any per-customer errors
        """
        now = now or datetime.utcnow()

        results = {
            'expired_batches': 0,
            'points_expired': 0,
            'customers_affected': 0,
            'errors': [],
            'run_at': now.isoformat()
        }

        for tenant_id, customer_id in self._customers_with_expiring_batches(now):
            try:
                expired_batches, points_expired = self._expire_customer(tenant_id, customer_id, now)
                db.session.commit()
            except (LedgerError, SQLAlchemyError) as e:
                db.session.rollback()
                current_app.logger.error(
                    f"Points expiry failed for customer {customer_id} in tenant {tenant_id}: {e}"
                )
                results['errors'].append({
                    'tenant_id': tenant_id,
                    'customer_id': customer_id,
                    'error': str(e)
                })
                continue

            if expired_batches:
                results['expired_batches'] += expired_batches
                results['points_expired'] += points_expired
                results['customers_affected'] += 1

        current_app.logger.info(
            f"Points expiry completed: {results['expired_batches']} batches, "
            f"{results['points_expired']} points across {results['customers_affected']} customers"
        )
        return results

    def _customers_with_expiring_batches(self, now: datetime) -> List[Tuple[str, int]]:
        rows = db.session.query(
            PointsBatch.tenant_id,
            PointsBatch.customer_id
        ).filter(
            PointsBatch.status == BatchStatus.ACTIVE.value,
            PointsBatch.expires_at <= now,
            PointsBatch.points_remaining > 0
        ).order_by(
            PointsBatch.tenant_id,
            PointsBatch.customer_id
        ).all()

        # One entry per customer, in a stable order
        return list(OrderedDict(((row[0], row[1]), None) for row in rows))

    def _expire_customer(self, tenant_id: str, customer_id: int, now: datetime) -> Tuple[int, int]:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            return 0, 0

        CustomerRegistry(tenant_id).lock(customer)
        log = TransactionLog(tenant_id)

        # Re-read under the lock; batches expired by a concurrent sweep drop out here
        batches = PointsBatchStore(tenant_id).expiring_batches(customer_id, now)
        if not batches:
            return 0, 0

        points_expired = 0
        for batch in batches:
            points = batch.expire()
            if points <= 0:
                continue

            log.record(
                customer_id=customer_id,
                delta=-points,
                transaction_type=PointsTransactionType.EXPIRY.value,
                batch_id=batch.id,
                reference_type=REFERENCE_BATCH,
                reference_id=str(batch.id),
                description=f'Points expired (purchased {batch.purchased_at.strftime("%Y-%m-%d")})',
                created_at=now
            )
            points_expired += points

            current_app.logger.info(
                f"Expired {points} pts from batch {batch.id} for customer "
                f"{customer.external_user_id} in tenant {tenant_id}"
            )

        recalculate_wallet_snapshot(tenant_id, customer_id)
        return len(batches), points_expired


expiry_sweeper = ExpirySweeper()


def expire_points(now: datetime = None) -> Dict[str, Any]:
    """Run one expiry sweep. See ExpirySweeper.expire_points."""
    return expiry_sweeper.expire_points(now=now)
