"""
Database models for the points ledger.
Tenants, customers, point batches, the transaction log and wallet snapshots.
"""
from .tenant import Tenant
from .customer import Customer
from .points import (
    BatchStatus,
    PointsTransactionType,
    BALANCE_TRANSACTION_TYPES,
    PointsBatch,
    PointsTransaction,
)
from .wallet import WalletSnapshot

__all__ = [
    'Tenant',
    'Customer',
    # Points ledger
    'BatchStatus',
    'PointsTransactionType',
    'BALANCE_TRANSACTION_TYPES',
    'PointsBatch',
    'PointsTransaction',
    'WalletSnapshot',
]
