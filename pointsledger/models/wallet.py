"""
Wallet snapshot model.
"""
from datetime import datetime
from typing import Any, Dict

from ..extensions import db


class WalletSnapshot(db.Model):
    """
    Current points balance for a customer.

    This is a cached/denormalized balance for fast dashboard reads.
    The authoritative balance is the sum of points_remaining over the
    customer's active PointsBatch rows.

    Design notes:
    - One row per customer (composite primary key)
    - Rewritten in the same database transaction as every batch change
    """
    __tablename__ = 'wallet_snapshots'

    tenant_id = db.Column(db.String(64), db.ForeignKey('tenants.id'), primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), primary_key=True)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<WalletSnapshot customer={self.customer_id} pts={self.points_balance}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tenant_id': self.tenant_id,
            'customer_id': self.customer_id,
            'points_balance': self.points_balance,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
