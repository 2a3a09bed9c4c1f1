"""
Tests for FIFO consumption and the expiry sweep.

This test module covers:
- Oldest-first consumption across batches
- Expiring batches past their 30 day window
- Re-running the sweep
- Snapshot agreement after expiry
"""
from datetime import datetime
from unittest.mock import patch

from pointsledger.extensions import db
from pointsledger.models import PointsBatch, PointsTransaction
from pointsledger.services import expire_points, get_wallet_balance, ingest_points_events
from pointsledger.services.expiry_sweeper import ExpirySweeper
from pointsledger.services.points_batches import PointsBatchStore, expiry_for
from pointsledger.services.wallet_service import reconcile_tenant
from pointsledger.utils.exceptions import LedgerError


def _batches_by_purchase(tenant_id='artly'):
    return PointsBatch.query.filter_by(tenant_id=tenant_id).order_by(PointsBatch.purchased_at).all()


class TestFifoConsumption:
    """Spends draw down the oldest batches first."""

    def test_spend_drains_oldest_batch_first(self, app, make_event):
        """100 @ day 1 and 50 @ day 5, spend 120 leaves 0 and 30."""
        ingest_points_events('artly', [
            make_event(externalEventId='b1', pointsDelta=100, createdAt='2024-01-01T00:00:00Z'),
            make_event(externalEventId='b2', pointsDelta=50, createdAt='2024-01-05T00:00:00Z'),
            make_event(externalEventId='s1', pointsDelta=-120, eventType='spend',
                       createdAt='2024-01-06T00:00:00Z'),
        ])

        b1, b2 = _batches_by_purchase()
        assert b1.points_remaining == 0
        assert b2.points_remaining == 30
        assert get_wallet_balance('artly', 42) == 30

    def test_order_follows_purchase_time_not_arrival(self, app, make_event):
        """A late-arriving older purchase is still consumed first."""
        ingest_points_events('artly', [
            make_event(externalEventId='b2', pointsDelta=50, createdAt='2024-01-05T00:00:00Z'),
            make_event(externalEventId='b1', pointsDelta=100, createdAt='2024-01-01T00:00:00Z'),
            make_event(externalEventId='s1', pointsDelta=-120, eventType='spend',
                       createdAt='2024-01-06T00:00:00Z'),
        ])

        b1, b2 = _batches_by_purchase()
        assert b1.purchased_at == datetime(2024, 1, 1)
        assert b1.points_remaining == 0
        assert b2.points_remaining == 30

    def test_store_returns_consumed_amount(self, app, sample_customer):
        """consume_points_fifo reports what it actually took."""
        store = PointsBatchStore('artly')
        store.create_batch(sample_customer.id, 40, datetime(2024, 1, 1), 'woo_order')
        store.create_batch(sample_customer.id, 10, datetime(2024, 1, 2), 'woo_order')

        assert store.consume_points_fifo(sample_customer.id, 45) == 45
        assert store.consume_points_fifo(sample_customer.id, 45) == 5
        assert store.consume_points_fifo(sample_customer.id, 45) == 0
        assert store.active_points_total(sample_customer.id) == 0

    def test_expiry_window_from_config(self, app):
        """Batches expire POINTS_EXPIRY_DAYS after purchase."""
        app.config['POINTS_EXPIRY_DAYS'] = 7
        assert expiry_for(datetime(2024, 1, 1)) == datetime(2024, 1, 8)
        assert expiry_for(datetime(2024, 1, 1), days=30) == datetime(2024, 1, 31)


class TestExpirePoints:
    """The daily expiry sweep."""

    def test_expires_remaining_points(self, app, make_event):
        """A batch bought 2024-01-01 and spent down to 70 expires on 2024-02-01."""
        ingest_points_events('artly', [
            make_event(),
            make_event(externalEventId='evt-2', pointsDelta=-30, eventType='spend',
                       createdAt='2024-01-10T00:00:00Z'),
        ])

        result = expire_points(now=datetime(2024, 2, 1))

        assert result['expired_batches'] == 1
        assert result['points_expired'] == 70
        assert result['customers_affected'] == 1
        assert result['errors'] == []

        batch = PointsBatch.query.one()
        assert batch.status == 'expired'
        assert batch.points_remaining == 0
        assert get_wallet_balance('artly', 42) == 0

        expiry = PointsTransaction.query.filter_by(transaction_type='expiry').one()
        assert expiry.delta == -70
        assert expiry.batch_id == batch.id
        assert expiry.reference_type == 'points_batch'
        assert expiry.created_at == datetime(2024, 2, 1)
        assert 'purchased 2024-01-01' in expiry.description

    def test_not_yet_expired_batches_untouched(self, app, make_event):
        """Batches inside their window are left alone."""
        ingest_points_events('artly', [make_event()])

        result = expire_points(now=datetime(2024, 1, 30, 23, 59))

        assert result['expired_batches'] == 0
        assert PointsBatch.query.one().status == 'active'
        assert get_wallet_balance('artly', 42) == 100

    def test_expiry_boundary_is_inclusive(self, app, make_event):
        """A batch expires at exactly its expires_at."""
        ingest_points_events('artly', [make_event()])

        result = expire_points(now=datetime(2024, 1, 31))

        assert result['points_expired'] == 100

    def test_second_run_is_noop(self, app, make_event):
        """Re-running the sweep expires nothing new."""
        ingest_points_events('artly', [make_event()])

        first = expire_points(now=datetime(2024, 2, 1))
        second = expire_points(now=datetime(2024, 2, 2))

        assert first['expired_batches'] == 1
        assert second['expired_batches'] == 0
        assert second['points_expired'] == 0
        assert PointsTransaction.query.filter_by(transaction_type='expiry').count() == 1

    def test_fully_spent_batch_not_expired(self, app, make_event):
        """Batches with nothing left produce no expiry transaction."""
        ingest_points_events('artly', [
            make_event(),
            make_event(externalEventId='evt-2', pointsDelta=-100, eventType='spend'),
        ])

        result = expire_points(now=datetime(2024, 2, 1))

        assert result['expired_batches'] == 0
        assert PointsTransaction.query.filter_by(transaction_type='expiry').count() == 0

    def test_only_old_batches_expire(self, app, make_event):
        """Newer batches keep the customer's balance after the sweep."""
        ingest_points_events('artly', [
            make_event(externalEventId='old', pointsDelta=100, createdAt='2024-01-01T00:00:00Z'),
            make_event(externalEventId='new', pointsDelta=40, createdAt='2024-01-20T00:00:00Z'),
        ])

        result = expire_points(now=datetime(2024, 2, 1))

        assert result['points_expired'] == 100
        assert get_wallet_balance('artly', 42) == 40

    def test_sweeps_all_tenants(self, app, make_event):
        """One sweep covers every tenant."""
        ingest_points_events('artly', [make_event()])
        ingest_points_events('other-store', [make_event(wpUserId=7, email='c@d.com', pointsDelta=20)])

        result = expire_points(now=datetime(2024, 2, 1))

        assert result['customers_affected'] == 2
        assert result['points_expired'] == 120
        assert get_wallet_balance('artly', 42) == 0
        assert get_wallet_balance('other-store', 7) == 0

    def test_ledger_consistent_after_sweep(self, app, make_event):
        """Snapshot, batches and transaction log agree after expiry."""
        ingest_points_events('artly', [
            make_event(),
            make_event(externalEventId='evt-2', pointsDelta=-30, eventType='spend'),
            make_event(externalEventId='evt-3', pointsDelta=15, createdAt='2024-01-25T00:00:00Z'),
        ])
        expire_points(now=datetime(2024, 2, 1))

        reports = reconcile_tenant('artly')
        assert len(reports) == 1
        assert reports[0]['consistent'] is True
        assert reports[0]['snapshot_balance'] == 15

    def test_failure_for_one_customer_does_not_stop_sweep(self, app, make_event):
        """A customer whose expiry fails is reported; the others still expire."""
        ingest_points_events('artly', [make_event()])
        ingest_points_events('artly', [make_event(externalEventId='evt-2', wpUserId=7, email='c@d.com')])
        db.session.commit()

        real_expire = ExpirySweeper._expire_customer
        failing_customer = PointsBatch.query.order_by(PointsBatch.id).first().customer_id

        def flaky_expire(self, tenant_id, customer_id, now):
            if customer_id == failing_customer:
                raise LedgerError('simulated failure')
            return real_expire(self, tenant_id, customer_id, now)

        with patch.object(ExpirySweeper, '_expire_customer', flaky_expire):
            result = expire_points(now=datetime(2024, 2, 1))

        assert result['customers_affected'] == 1
        assert len(result['errors']) == 1
        assert result['errors'][0]['customer_id'] == failing_customer
        assert get_wallet_balance('artly', 42) == 100
        assert get_wallet_balance('artly', 7) == 0
