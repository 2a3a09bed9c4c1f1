"""
Points batches and the append-only points transaction log.

A batch is one acquisition of points with its own expiry clock. Every
balance-affecting operation writes exactly one PointsTransaction, which is
never updated or deleted afterwards.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from sqlalchemy import event, inspect

from ..extensions import db
from ..utils.exceptions import ImmutableRecordError


class BatchStatus(str, Enum):
    """Lifecycle of a points batch. active -> expired happens once."""
    ACTIVE = 'active'
    EXPIRED = 'expired'


class PointsTransactionType(str, Enum):
    """Types of points transactions."""
    PURCHASE = 'purchase'              # Points acquired (positive)
    SPEND_DOWNLOAD = 'spend_download'  # Points spent (negative)
    EXPIRY = 'expiry'                  # Points expired by the sweeper (negative)
    CHARGE = 'charge'                  # Payment bookkeeping, always zero


# Transaction types whose deltas add up to the wallet balance
BALANCE_TRANSACTION_TYPES = (
    PointsTransactionType.PURCHASE.value,
    PointsTransactionType.SPEND_DOWNLOAD.value,
    PointsTransactionType.EXPIRY.value,
)


class PointsBatch(db.Model):
    """
    Points acquired from one source event.

    points_total is fixed at creation; points_remaining only ever goes down.
    """
    __tablename__ = 'points_batches'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey('tenants.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)

    # Provenance
    source = db.Column(db.String(50), nullable=False)  # woo_order, balance_sync, ...
    external_order_id = db.Column(db.String(100))

    points_total = db.Column(db.Integer, nullable=False)
    points_remaining = db.Column(db.Integer, nullable=False)

    purchased_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=BatchStatus.ACTIVE.value)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint(
            'points_remaining >= 0 AND points_remaining <= points_total',
            name='ck_points_batches_remaining_bounds'
        ),
        db.Index('ix_points_batches_fifo', 'tenant_id', 'customer_id', 'status', 'purchased_at'),
        db.Index('ix_points_batches_expiry', 'status', 'expires_at'),
    )

    def __repr__(self):
        return f'<PointsBatch {self.id}: {self.points_remaining}/{self.points_total} pts ({self.status})>'

    @property
    def is_active(self) -> bool:
        return self.status == BatchStatus.ACTIVE.value

    def consume(self, amount: int) -> int:
        """Take up to ``amount`` points from this batch. Returns points taken."""
        if amount <= 0 or not self.is_active:
            return 0

        taken = min(self.points_remaining or 0, amount)
        self.points_remaining = (self.points_remaining or 0) - taken
        return taken

    def expire(self) -> int:
        """Retire the batch. Returns the points that were still remaining."""
        if not self.is_active:
            return 0

        expired = self.points_remaining or 0
        self.points_remaining = 0
        self.status = BatchStatus.EXPIRED.value
        return expired


class PointsTransaction(db.Model):
    """
    Immutable record of a balance-affecting operation.

    Used for:
    - Audit trail of purchases, spends and expiries
    - Duplicate delivery detection (external_event_id)
    - Reconciliation against batches and the wallet snapshot
    """
    __tablename__ = 'points_transactions'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey('tenants.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey('points_batches.id'))  # NULL for spends and charges

    # Transaction details
    delta = db.Column(db.Integer, nullable=False)  # Positive for purchase, negative for spend/expiry
    transaction_type = db.Column(db.String(50), nullable=False)

    # Source tracking
    reference_type = db.Column(db.String(50))  # woo_order, balance_sync, points_batch
    reference_id = db.Column(db.String(100))
    external_event_id = db.Column(db.String(100))  # De-duplication key, unique per tenant
    description = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    batch = db.relationship('PointsBatch', backref=db.backref('transactions', lazy='dynamic'))

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'external_event_id', name='uq_tenant_external_event'),
        db.Index('ix_points_transactions_tenant_customer', 'tenant_id', 'customer_id'),
    )

    def __repr__(self):
        return f'<PointsTransaction {self.id}: {self.delta} pts {self.transaction_type}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'batch_id': self.batch_id,
            'delta': self.delta,
            'transaction_type': self.transaction_type,
            'reference_type': self.reference_type,
            'reference_id': self.reference_id,
            'external_event_id': self.external_event_id,
            'description': self.description,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


@event.listens_for(PointsTransaction, 'before_update')
def _reject_transaction_update(mapper, connection, target):
    state = inspect(target)
    changed = [attr.key for attr in state.attrs if attr.history.has_changes()]
    if changed:
        raise ImmutableRecordError('PointsTransaction', target.id, 'modified')


@event.listens_for(PointsTransaction, 'before_delete')
def _reject_transaction_delete(mapper, connection, target):
    raise ImmutableRecordError('PointsTransaction', target.id, 'deleted')
