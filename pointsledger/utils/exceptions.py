"""
Custom exceptions for points ledger business logic.

Every ledger error carries a human readable ``message`` and a machine
readable ``code`` so the ingestion pipeline can report per-item failures
without losing detail.
"""


class LedgerError(Exception):
    """Base exception for all points ledger errors."""

    def __init__(self, message: str, code: str = "LEDGER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(LedgerError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class TenantNotFoundError(NotFoundError):
    """Tenant not found."""

    def __init__(self, identifier=None):
        super().__init__("Tenant", identifier)


class CustomerNotFoundError(NotFoundError):
    """Customer not found."""

    def __init__(self, identifier=None):
        super().__init__("Customer", identifier)


class ValidationError(LedgerError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class ImmutableRecordError(LedgerError):
    """Attempt to change an append-only ledger record."""

    def __init__(self, resource: str, identifier=None, action: str = "modified"):
        message = f"{resource} records cannot be {action}"
        if identifier is not None:
            message = f"{resource} {identifier} cannot be {action}"
        super().__init__(message, "IMMUTABLE_RECORD")


class ConfigurationError(LedgerError):
    """Application configuration error."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")
