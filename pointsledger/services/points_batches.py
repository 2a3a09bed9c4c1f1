"""
Points batch store and the FIFO consumption algorithm.
"""
from datetime import datetime, timedelta
from typing import List

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models.points import BatchStatus, PointsBatch


def expiry_for(purchased_at: datetime, days: int = None) -> datetime:
    """Expiry moment for points acquired at ``purchased_at``."""
    if days is None:
        days = current_app.config.get('POINTS_EXPIRY_DAYS', 30)
    return purchased_at + timedelta(days=days)


class PointsBatchStore:
    """Tenant-scoped access to point batches. Never commits."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id

    def create_batch(
        self,
        customer_id: int,
        points: int,
        purchased_at: datetime,
        source: str,
        external_order_id: str = None
    ) -> PointsBatch:
        """Open a new active batch holding ``points``."""
        if points <= 0:
            raise ValueError(f'Batch points must be positive, got {points}')

        batch = PointsBatch(
            tenant_id=self.tenant_id,
            customer_id=customer_id,
            source=source,
            external_order_id=external_order_id,
            points_total=points,
            points_remaining=points,
            purchased_at=purchased_at,
            expires_at=expiry_for(purchased_at),
            status=BatchStatus.ACTIVE.value
        )
        db.session.add(batch)
        db.session.flush()
        return batch

    def spendable_batches(self, customer_id: int) -> List[PointsBatch]:
        """Active batches with points left, oldest acquisition first."""
        return PointsBatch.query.filter(
            PointsBatch.tenant_id == self.tenant_id,
            PointsBatch.customer_id == customer_id,
            PointsBatch.status == BatchStatus.ACTIVE.value,
            PointsBatch.points_remaining > 0
        ).order_by(
            PointsBatch.purchased_at.asc(),
            PointsBatch.id.asc()
        ).all()

    def consume_points_fifo(self, customer_id: int, points_to_consume: int) -> int:
        """Consume points from the oldest batches first (FIFO).

        Older points are spent before newer ones so that customers do not
        lose them to expiry while newer points sit untouched.

        Args:
            customer_id: Customer whose points to consume
            points_to_consume: Number of points requested

        Returns:
            Actual points consumed (less than requested when the customer
            does not hold enough)
        """
        if points_to_consume <= 0:
            return 0

        remaining_to_consume = points_to_consume
        total_consumed = 0

        for batch in self.spendable_batches(customer_id):
            if remaining_to_consume <= 0:
                break

            taken = batch.consume(remaining_to_consume)
            remaining_to_consume -= taken
            total_consumed += taken

        return total_consumed

    def active_points_total(self, customer_id: int) -> int:
        """Sum of points_remaining over the customer's active batches."""
        total = db.session.query(
            func.coalesce(func.sum(PointsBatch.points_remaining), 0)
        ).filter(
            PointsBatch.tenant_id == self.tenant_id,
            PointsBatch.customer_id == customer_id,
            PointsBatch.status == BatchStatus.ACTIVE.value
        ).scalar()
        return int(total or 0)

    def expiring_batches(self, customer_id: int, now: datetime) -> List[PointsBatch]:
        """Active batches past expiry that still hold points."""
        return PointsBatch.query.filter(
            PointsBatch.tenant_id == self.tenant_id,
            PointsBatch.customer_id == customer_id,
            PointsBatch.status == BatchStatus.ACTIVE.value,
            PointsBatch.expires_at <= now,
            PointsBatch.points_remaining > 0
        ).order_by(
            PointsBatch.expires_at.asc(),
            PointsBatch.id.asc()
        ).all()
