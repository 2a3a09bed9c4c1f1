"""
Append-only points transaction log.

Besides the audit trail, the log is the idempotency guard: an event whose
external id is already recorded for the tenant has been processed.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func

from ..extensions import db
from ..models.points import BALANCE_TRANSACTION_TYPES, PointsTransaction


class TransactionLog:
    """Tenant-scoped writer/reader for PointsTransaction rows."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id

    def find_by_external_event_id(self, external_event_id: str) -> Optional[PointsTransaction]:
        if not external_event_id:
            return None
        return PointsTransaction.query.filter_by(
            tenant_id=self.tenant_id,
            external_event_id=external_event_id
        ).first()

    def has_event(self, external_event_id: str) -> bool:
        return self.find_by_external_event_id(external_event_id) is not None

    def record(
        self,
        customer_id: int,
        delta: int,
        transaction_type: str,
        batch_id: int = None,
        reference_type: str = None,
        reference_id: str = None,
        external_event_id: str = None,
        description: str = None,
        created_at: datetime = None
    ) -> PointsTransaction:
        """Append one transaction to the session. The caller commits."""
        transaction = PointsTransaction(
            tenant_id=self.tenant_id,
            customer_id=customer_id,
            batch_id=batch_id,
            delta=delta,
            transaction_type=transaction_type,
            reference_type=reference_type,
            reference_id=reference_id,
            external_event_id=external_event_id,
            description=description,
            created_at=created_at or datetime.utcnow()
        )
        db.session.add(transaction)
        return transaction

    def balance_sum(self, customer_id: int) -> int:
        """Net points according to the log (charges excluded)."""
        total = db.session.query(
            func.coalesce(func.sum(PointsTransaction.delta), 0)
        ).filter(
            PointsTransaction.tenant_id == self.tenant_id,
            PointsTransaction.customer_id == customer_id,
            PointsTransaction.transaction_type.in_(BALANCE_TRANSACTION_TYPES)
        ).scalar()
        return int(total or 0)

    def history(self, customer_id: int, limit: int = 50) -> List[PointsTransaction]:
        return PointsTransaction.query.filter_by(
            tenant_id=self.tenant_id,
            customer_id=customer_id
        ).order_by(
            PointsTransaction.created_at.desc(),
            PointsTransaction.id.desc()
        ).limit(limit).all()
