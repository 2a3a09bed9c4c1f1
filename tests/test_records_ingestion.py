"""
Tests for user, charge and balance sync ingestion.
"""
from datetime import datetime
from unittest.mock import patch

import pytest

from pointsledger.models import Customer, PointsBatch, PointsTransaction
from pointsledger.services import (
    get_wallet_balance,
    ingest_charges,
    ingest_points_events,
    ingest_users,
    reconcile_tenant,
    sync_points_balances,
)
from pointsledger.utils.exceptions import ValidationError


class TestIngestUsers:
    """Customer contact upserts."""

    def test_creates_customer(self, app):
        """A new user record creates the customer with contact fields."""
        result = ingest_users('artly', [{
            'wpUserId': 7,
            'email': 'Sara@Example.com',
            'phone': '+201001234567',
            'whatsapp': '+201001234567',
            'locale': 'ar',
            'timezone': 'Africa/Cairo',
        }])

        assert result['upserted'] == 1
        customer = Customer.query.filter_by(tenant_id='artly', external_user_id=7).one()
        assert customer.email == 'sara@example.com'
        assert customer.locale == 'ar'
        assert customer.timezone == 'Africa/Cairo'

    def test_sparse_update_keeps_existing_fields(self, app):
        """Fields missing from a later record are not erased."""
        ingest_users('artly', [{'wp_user_id': 7, 'email': 'sara@example.com', 'phone': '+20100'}])
        ingest_users('artly', [{'wp_user_id': 7, 'email': 'sara.new@example.com'}])

        customer = Customer.query.filter_by(tenant_id='artly', external_user_id=7).one()
        assert customer.email == 'sara.new@example.com'
        assert customer.phone == '+20100'
        assert Customer.query.count() == 1

    def test_points_event_reuses_user_record(self, app, make_event):
        """Points events and user records share one customer row."""
        ingest_users('artly', [{'wpUserId': 42, 'email': 'a@b.com', 'locale': 'ar'}])
        ingest_points_events('artly', [make_event()])

        customer = Customer.query.one()
        assert customer.locale == 'ar'
        assert get_wallet_balance('artly', 42) == 100

    def test_invalid_user_reported(self, app):
        """Records without a usable user id fail individually."""
        result = ingest_users('artly', [
            {'wpUserId': 0, 'email': 'a@b.com'},
            {'wpUserId': 8, 'email': 'c@d.com'},
        ])

        assert result['upserted'] == 1
        assert result['failed'] == 1
        assert result['errors'][0]['code'] == 'INVALID_WP_USER_ID'

    def test_non_list_rejected(self, app):
        with pytest.raises(ValidationError):
            ingest_users('artly', 'not a list')


class TestIngestCharges:
    """Payment charges are bookkeeping only."""

    def _charge(self, **overrides):
        payload = {
            'externalChargeId': 'ch_1',
            'wpUserId': 42,
            'email': 'a@b.com',
            'amount': 199.5,
            'status': 'succeeded',
            'orderId': 5001,
            'paymentMethod': 'card',
            'createdAt': '2024-01-02T10:00:00Z',
        }
        payload.update(overrides)
        return payload

    def test_charge_recorded_with_zero_delta(self, app):
        """A charge writes a zero-delta transaction and no batch."""
        result = ingest_charges('artly', [self._charge()])

        assert result['recorded'] == 1
        transaction = PointsTransaction.query.one()
        assert transaction.delta == 0
        assert transaction.transaction_type == 'charge'
        assert transaction.external_event_id == 'charge:ch_1'
        assert transaction.reference_id == '5001'
        assert '199.5 EGP' in transaction.description
        assert PointsBatch.query.count() == 0
        assert get_wallet_balance('artly', 42) == 0

    def test_duplicate_charge_skipped(self, app):
        ingest_charges('artly', [self._charge()])
        result = ingest_charges('artly', [self._charge()])

        assert result['recorded'] == 0
        assert result['skipped_existing'] == 1
        assert PointsTransaction.query.count() == 1

    def test_charge_without_customer_ignored(self, app):
        """Charges with no user id or email are ignored."""
        result = ingest_charges('artly', [
            self._charge(wpUserId=None),
            self._charge(externalChargeId='ch_2', email=None),
        ])

        assert result['ignored'] == 2
        assert result['recorded'] == 0
        assert Customer.query.count() == 0

    def test_non_positive_charge_still_upserts_customer(self, app):
        """A zero or refund amount records nothing but keeps the customer current."""
        result = ingest_charges('artly', [
            self._charge(amount=0),
            self._charge(externalChargeId='ch_2', amount=-5, email='new@b.com'),
        ])

        assert result['ignored'] == 2
        assert result['recorded'] == 0
        customer = Customer.query.one()
        assert customer.external_user_id == 42
        assert customer.email == 'new@b.com'
        assert PointsTransaction.query.count() == 0

    def test_malformed_charge_timestamp_counted_and_logged(self, app):
        """A defaulted created_at is reported the same way as for points events."""
        before = datetime.utcnow()
        with patch.object(app.logger, 'warning') as warning:
            result = ingest_charges('artly', [self._charge(createdAt='yesterday')])
        after = datetime.utcnow()

        assert result['recorded'] == 1
        assert result['normalized_timestamps'] == 1
        assert warning.call_count == 1
        assert 'Charge 0 for tenant artly' in warning.call_args[0][0]
        assert before <= PointsTransaction.query.one().created_at <= after

    def test_well_formed_charge_timestamp_not_counted(self, app):
        result = ingest_charges('artly', [self._charge()])

        assert result['normalized_timestamps'] == 0
        assert PointsTransaction.query.one().created_at == datetime(2024, 1, 2, 10, 0)

    def test_points_event_cannot_use_charge_key(self, app, make_event):
        """A points event id in the charge namespace is rejected, not skipped."""
        ingest_charges('artly', [self._charge()])

        result = ingest_points_events('artly', [make_event(externalEventId='charge:ch_1')])

        assert result['imported'] == 0
        assert result['skipped_existing'] == 0
        assert result['failed'] == 1
        assert result['errors'][0]['code'] == 'INVALID_EXTERNAL_EVENT_ID'
        assert PointsTransaction.query.count() == 1

    def test_charge_amount_must_be_numeric(self, app):
        result = ingest_charges('artly', [self._charge(amount='lots')])

        assert result['failed'] == 1
        assert result['errors'][0]['code'] == 'INVALID_AMOUNT'

    def test_charges_do_not_break_reconciliation(self, app, make_event):
        """Charge rows are excluded from the ledger balance."""
        ingest_points_events('artly', [make_event()])
        ingest_charges('artly', [self._charge(currency='USD')])

        report = reconcile_tenant('artly')[0]
        assert report['consistent'] is True
        assert report['ledger_balance'] == 100


class TestSyncPointsBalances:
    """Absolute balances posted through the ledger."""

    def test_sync_down_consumes_fifo(self, app, make_event):
        """A lower reported balance spends the difference oldest first."""
        ingest_points_events('artly', [
            make_event(externalEventId='b1', pointsDelta=100, createdAt='2024-01-01T00:00:00Z'),
            make_event(externalEventId='b2', pointsDelta=50, createdAt='2024-01-05T00:00:00Z'),
        ])

        result = sync_points_balances('artly', [{'wpUserId': 42, 'email': 'a@b.com', 'pointsBalance': 60}])

        assert result['adjusted'] == 1
        assert get_wallet_balance('artly', 42) == 60
        batches = PointsBatch.query.order_by(PointsBatch.purchased_at).all()
        assert [b.points_remaining for b in batches] == [10, 50]

        sync = PointsTransaction.query.filter_by(reference_type='balance_sync').one()
        assert sync.delta == -90
        assert sync.transaction_type == 'spend_download'

    def test_sync_up_creates_batch(self, app, make_event):
        """A higher reported balance opens a balance_sync batch."""
        ingest_points_events('artly', [make_event()])

        sync_points_balances('artly', [{'wp_user_id': 42, 'email': 'a@b.com', 'points_balance': 130}])

        assert get_wallet_balance('artly', 42) == 130
        batch = PointsBatch.query.filter_by(source='balance_sync').one()
        assert batch.points_total == 30

    def test_sync_same_balance_unchanged(self, app, make_event):
        ingest_points_events('artly', [make_event()])

        result = sync_points_balances('artly', [{'wpUserId': 42, 'email': 'a@b.com', 'balance': 100}])

        assert result['unchanged'] == 1
        assert result['adjusted'] == 0
        assert PointsTransaction.query.count() == 1

    def test_sync_new_customer(self, app):
        result = sync_points_balances('artly', [{'wpUserId': 9, 'email': 'n@e.com', 'pointsBalance': 25}])

        assert result['synced'] == 1
        assert get_wallet_balance('artly', 9) == 25

    def test_negative_balance_rejected(self, app):
        result = sync_points_balances('artly', [{'wpUserId': 9, 'email': 'n@e.com', 'pointsBalance': -5}])

        assert result['failed'] == 1
        assert result['errors'][0]['code'] == 'INVALID_POINTS_BALANCE'

    def test_sync_keeps_ledger_consistent(self, app, make_event):
        ingest_points_events('artly', [make_event()])
        sync_points_balances('artly', [
            {'wpUserId': 42, 'email': 'a@b.com', 'pointsBalance': 40},
            {'wpUserId': 9, 'email': 'n@e.com', 'pointsBalance': 25},
        ])

        reports = reconcile_tenant('artly')
        assert all(r['consistent'] for r in reports)
        assert {r['external_user_id']: r['snapshot_balance'] for r in reports} == {42: 40, 9: 25}
