"""
Utility modules for the points ledger.
"""
from .logging_config import setup_logging, get_logger
from .exceptions import (
    LedgerError,
    NotFoundError,
    TenantNotFoundError,
    CustomerNotFoundError,
    ValidationError,
    ImmutableRecordError,
    ConfigurationError
)
