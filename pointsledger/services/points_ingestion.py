"""
Points Ingestion Service.

Entry point for everything the commerce platform pushes into the ledger:
- Points events (purchases and spends)
- User contact records
- Payment charges (bookkeeping only)
- Absolute balance syncs

ARCHITECTURE:
- Items are processed one at a time, in input order
- Each item runs in its own database transaction (unit of work), so a bad
  item never rolls back the ones before it
- The customer row is locked at the start of every unit of work that moves
  points, serializing concurrent writers for the same customer
- Duplicate delivery is detected through the transaction log's
  (tenant_id, external_event_id) unique constraint, including the race
  where two deliveries of the same event commit at once
- The wallet snapshot is recomputed before each commit
"""

from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from ..extensions import db
from ..models.points import PointsTransactionType
from ..utils.exceptions import LedgerError
from .customer_registry import CustomerRegistry
from .events import BalanceRecord, ChargeRecord, PointsEvent, UserRecord, require_list
from .points_batches import PointsBatchStore
from .tenant_directory import ensure_tenant, normalize_tenant_ref
from .transaction_log import TransactionLog
from .wallet_service import recalculate_wallet_snapshot

# Reference types written to the transaction log
REFERENCE_ORDER = 'woo_order'
REFERENCE_BALANCE_SYNC = 'balance_sync'

BALANCE_SYNC_SOURCE = 'balance_sync'

# Returned by a unit of work that lost a duplicate-insert race
DUPLICATE = object()


class PointsIngestionService:
    """
    Applies inbound records to one tenant's ledger.

    Usage:
        service = PointsIngestionService('artly')

        result = service.ingest_points_events(payload)
        # {'imported': 3, 'skipped_existing': 1, ...}
    """

    def __init__(self, tenant_ref, tenant_name: str = None):
        self.tenant_id = normalize_tenant_ref(tenant_ref)
        self.tenant_name = tenant_name
        self.customers = CustomerRegistry(self.tenant_id)
        self.batches = PointsBatchStore(self.tenant_id)
        self.log = TransactionLog(self.tenant_id)

    # ==================== Points Events ====================

    def ingest_points_events(self, raw_events: Any) -> Dict[str, Any]:
        """
        Import a batch of purchase/spend events.

        Args:
            raw_events: List of event payloads (dicts)

        Returns:
            Dict with counts and a bounded list of per-item errors

        Raises:
            ValidationError: If the payload is not a list at all
        """
        events = require_list(raw_events, 'events')
        ensure_tenant(self.tenant_id, name=self.tenant_name)

        results = {
            'imported': 0,
            'skipped_existing': 0,
            'skipped_zero': 0,
            'normalized_timestamps': 0,
            'shortfalls': 0,
            'failed': 0,
            'errors': []
        }

        for index, payload in enumerate(events):
            try:
                event = PointsEvent.from_payload(payload)
            except LedgerError as e:
                self._record_failure(results, index, e)
                continue

            if event.timestamp_normalized:
                results['normalized_timestamps'] += 1
                current_app.logger.warning(
                    f"Points event {index} for tenant {self.tenant_id} had a missing or "
                    f"malformed created_at; using {event.created_at.isoformat()}"
                )

            if event.points_delta == 0:
                results['skipped_zero'] += 1
                continue

            if event.external_event_id and self.log.has_event(event.external_event_id):
                results['skipped_existing'] += 1
                continue

            try:
                outcome = self._run_unit_of_work(
                    partial(self._apply_points_event, event),
                    external_event_id=event.external_event_id
                )
            except (LedgerError, SQLAlchemyError) as e:
                self._record_failure(results, index, e)
                continue

            if outcome is DUPLICATE:
                results['skipped_existing'] += 1
                continue

            results['imported'] += 1
            if outcome['shortfall']:
                results['shortfalls'] += 1

        current_app.logger.info(
            f"Points events ingested for tenant {self.tenant_id}: "
            f"{results['imported']} imported, {results['skipped_existing']} duplicates, "
            f"{results['failed']} failed"
        )
        return results

    def _apply_points_event(self, event: PointsEvent) -> Dict[str, Any]:
        customer = self.customers.ensure_customer(event.wp_user_id, email=event.email)
        self.customers.lock(customer)

        reference_type = REFERENCE_ORDER if event.order_id else None
        shortfall = 0

        if event.is_purchase:
            batch = self.batches.create_batch(
                customer_id=customer.id,
                points=event.points_delta,
                purchased_at=event.created_at,
                source=event.source,
                external_order_id=event.order_id
            )
            self.log.record(
                customer_id=customer.id,
                delta=event.points_delta,
                transaction_type=PointsTransactionType.PURCHASE.value,
                batch_id=batch.id,
                reference_type=reference_type,
                reference_id=event.order_id,
                external_event_id=event.external_event_id,
                description=f'{event.event_type}: +{event.points_delta} points from {event.source}',
                created_at=event.created_at
            )
        else:
            requested = -event.points_delta
            consumed = self.batches.consume_points_fifo(customer.id, requested)
            shortfall = requested - consumed

            description = f'{event.event_type}: -{consumed} points'
            if shortfall:
                description += f' (requested {requested}, {shortfall} unavailable)'
                current_app.logger.warning(
                    f"Spend shortfall for customer {customer.external_user_id} in tenant "
                    f"{self.tenant_id}: requested {requested}, available {consumed}"
                )

            # The logged delta is what actually left the batches
            self.log.record(
                customer_id=customer.id,
                delta=-consumed,
                transaction_type=PointsTransactionType.SPEND_DOWNLOAD.value,
                reference_type=reference_type,
                reference_id=event.order_id,
                external_event_id=event.external_event_id,
                description=description,
                created_at=event.created_at
            )

        snapshot = recalculate_wallet_snapshot(self.tenant_id, customer.id)
        return {
            'customer_id': customer.id,
            'shortfall': shortfall,
            'balance': snapshot.points_balance
        }

    # ==================== Users ====================

    def ingest_users(self, raw_users: Any) -> Dict[str, Any]:
        """Upsert customer contact records."""
        users = require_list(raw_users, 'users')
        ensure_tenant(self.tenant_id, name=self.tenant_name)

        results = {'upserted': 0, 'failed': 0, 'errors': []}

        for index, payload in enumerate(users):
            try:
                record = UserRecord.from_payload(payload)
                self._run_unit_of_work(partial(self._apply_user, record))
            except (LedgerError, SQLAlchemyError) as e:
                self._record_failure(results, index, e)
                continue

            results['upserted'] += 1

        return results

    def _apply_user(self, record: UserRecord):
        fields = record.contact_fields()
        email = fields.pop('email')
        return self.customers.ensure_customer(record.wp_user_id, email=email, **fields)

    # ==================== Charges ====================

    def ingest_charges(self, raw_charges: Any) -> Dict[str, Any]:
        """
        Record payment charges as zero-delta ``charge`` transactions.

        Charges never create or consume batches. Charges without a customer
        identity are ignored. Charges with a non-positive amount still
        upsert the customer but record no transaction.
        """
        charges = require_list(raw_charges, 'charges')
        ensure_tenant(self.tenant_id, name=self.tenant_name)

        results = {
            'recorded': 0,
            'skipped_existing': 0,
            'ignored': 0,
            'normalized_timestamps': 0,
            'failed': 0,
            'errors': []
        }

        for index, payload in enumerate(charges):
            try:
                record = ChargeRecord.from_payload(payload)
            except LedgerError as e:
                self._record_failure(results, index, e)
                continue

            if not record.has_customer:
                results['ignored'] += 1
                continue

            if record.timestamp_normalized:
                results['normalized_timestamps'] += 1
                current_app.logger.warning(
                    f"Charge {index} for tenant {self.tenant_id} had a missing or "
                    f"malformed created_at; using {record.created_at.isoformat()}"
                )

            if record.amount <= 0:
                try:
                    self._run_unit_of_work(
                        partial(self.customers.ensure_customer, record.wp_user_id, email=record.email)
                    )
                except (LedgerError, SQLAlchemyError) as e:
                    self._record_failure(results, index, e)
                    continue
                results['ignored'] += 1
                continue

            if self.log.has_event(record.event_key):
                results['skipped_existing'] += 1
                continue

            try:
                outcome = self._run_unit_of_work(
                    partial(self._apply_charge, record),
                    external_event_id=record.event_key
                )
            except (LedgerError, SQLAlchemyError) as e:
                self._record_failure(results, index, e)
                continue

            if outcome is DUPLICATE:
                results['skipped_existing'] += 1
            else:
                results['recorded'] += 1

        return results

    def _apply_charge(self, record: ChargeRecord):
        customer = self.customers.ensure_customer(record.wp_user_id, email=record.email)

        description = f'Charge: {record.amount} {record.currency} ({record.status})'
        if record.payment_method:
            description += f' via {record.payment_method}'

        return self.log.record(
            customer_id=customer.id,
            delta=0,
            transaction_type=PointsTransactionType.CHARGE.value,
            reference_type=REFERENCE_ORDER,
            reference_id=record.order_id or record.external_charge_id,
            external_event_id=record.event_key,
            description=description,
            created_at=record.created_at
        )

    # ==================== Balance Sync ====================

    def sync_points_balances(self, raw_balances: Any) -> Dict[str, Any]:
        """
        Bring customers to an absolute balance reported by the source system.

        The difference is posted through the ledger (a new batch or a FIFO
        spend), so the snapshot stays derivable from the batches.
        """
        balances = require_list(raw_balances, 'balances')
        ensure_tenant(self.tenant_id, name=self.tenant_name)

        results = {'synced': 0, 'adjusted': 0, 'unchanged': 0, 'failed': 0, 'errors': []}

        for index, payload in enumerate(balances):
            try:
                record = BalanceRecord.from_payload(payload)
                difference = self._run_unit_of_work(partial(self._apply_balance, record))
            except (LedgerError, SQLAlchemyError) as e:
                self._record_failure(results, index, e)
                continue

            results['synced'] += 1
            if difference:
                results['adjusted'] += 1
            else:
                results['unchanged'] += 1

        return results

    def _apply_balance(self, record: BalanceRecord) -> int:
        customer = self.customers.ensure_customer(record.wp_user_id, email=record.email)
        self.customers.lock(customer)

        now = datetime.utcnow()
        current = self.batches.active_points_total(customer.id)
        difference = record.points_balance - current

        if difference > 0:
            batch = self.batches.create_batch(
                customer_id=customer.id,
                points=difference,
                purchased_at=now,
                source=BALANCE_SYNC_SOURCE
            )
            self.log.record(
                customer_id=customer.id,
                delta=difference,
                transaction_type=PointsTransactionType.PURCHASE.value,
                batch_id=batch.id,
                reference_type=REFERENCE_BALANCE_SYNC,
                description=f'Balance sync: {current} -> {record.points_balance}',
                created_at=now
            )
        elif difference < 0:
            consumed = self.batches.consume_points_fifo(customer.id, -difference)
            self.log.record(
                customer_id=customer.id,
                delta=-consumed,
                transaction_type=PointsTransactionType.SPEND_DOWNLOAD.value,
                reference_type=REFERENCE_BALANCE_SYNC,
                description=f'Balance sync: {current} -> {record.points_balance}',
                created_at=now
            )

        recalculate_wallet_snapshot(self.tenant_id, customer.id)
        return difference

    # ==================== Unit of Work ====================

    def _run_unit_of_work(self, work: Callable[[], Any], external_event_id: str = None) -> Any:
        """
        Run ``work`` and commit it as one transaction.

        IntegrityError and OperationalError roll back and retry the whole
        unit, up to LEDGER_WRITE_RETRIES attempts. If the integrity failure
        turns out to be a concurrent delivery of the same event, DUPLICATE
        is returned instead.
        """
        max_attempts = current_app.config.get('LEDGER_WRITE_RETRIES', 3)
        attempt = 0

        while True:
            attempt += 1
            try:
                result = work()
                db.session.commit()
                return result

            except IntegrityError as e:
                db.session.rollback()
                if external_event_id and self.log.has_event(external_event_id):
                    current_app.logger.info(
                        f"Event {external_event_id} for tenant {self.tenant_id} "
                        f"was committed concurrently; treating as duplicate"
                    )
                    return DUPLICATE
                if attempt >= max_attempts:
                    raise
                current_app.logger.warning(
                    f"Integrity conflict in tenant {self.tenant_id} "
                    f"(attempt {attempt}/{max_attempts}): {e.orig}"
                )

            except OperationalError as e:
                db.session.rollback()
                if attempt >= max_attempts:
                    raise
                current_app.logger.warning(
                    f"Transient write failure in tenant {self.tenant_id} "
                    f"(attempt {attempt}/{max_attempts}): {e.orig}"
                )

            except Exception:
                db.session.rollback()
                raise

    def _record_failure(self, results: Dict[str, Any], index: int, error: Exception) -> None:
        results['failed'] += 1

        if isinstance(error, LedgerError):
            entry = {
                'index': index,
                'code': error.code,
                'field': getattr(error, 'field', None),
                'message': error.message
            }
            current_app.logger.warning(
                f"Rejected item {index} for tenant {self.tenant_id}: {error.message}"
            )
        else:
            entry = {
                'index': index,
                'code': 'DATABASE_ERROR',
                'field': None,
                'message': str(getattr(error, 'orig', None) or error)
            }
            current_app.logger.error(
                f"Failed to apply item {index} for tenant {self.tenant_id}: {error}"
            )

        errors: List[Dict[str, Any]] = results['errors']
        if len(errors) < current_app.config.get('INGEST_MAX_ERRORS', 50):
            errors.append(entry)


# ==================== Module-level entry points ====================

def ingest_points_events(tenant_ref, events: Any) -> Dict[str, Any]:
    """Import points events for a tenant. See PointsIngestionService."""
    return PointsIngestionService(tenant_ref).ingest_points_events(events)


def ingest_users(tenant_ref, users: Any) -> Dict[str, Any]:
    return PointsIngestionService(tenant_ref).ingest_users(users)


def ingest_charges(tenant_ref, charges: Any) -> Dict[str, Any]:
    return PointsIngestionService(tenant_ref).ingest_charges(charges)


def sync_points_balances(tenant_ref, balances: Any) -> Dict[str, Any]:
    return PointsIngestionService(tenant_ref).sync_points_balances(balances)
