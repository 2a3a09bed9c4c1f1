"""
Validated input records for the ledger's ingestion interface.

The commerce platform posts loose JSON. Each payload item is parsed into a
frozen dataclass here; anything that does not conform raises
ValidationError instead of being coerced. The one graceful exception is
timestamps: a missing or unparseable ``created_at`` becomes "now" and the
record is flagged so the caller can count and log it.

Both snake_case keys (as sent by the WordPress bridge plugin) and camelCase
keys are accepted.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from ..utils.exceptions import ValidationError

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

MAX_REFERENCE_LENGTH = 100
DEFAULT_CHARGE_CURRENCY = 'EGP'

# Charge transactions are de-duplicated in the same namespace as points
# events; event ids with this prefix are reserved for them.
CHARGE_EVENT_PREFIX = 'charge:'

# Fractional seconds of any precision, normalized to the six digits
# datetime.fromisoformat accepts on every supported interpreter.
FRACTION_PATTERN = re.compile(r'(T\d{2}:\d{2}:\d{2})\.(\d+)')


def require_list(payload: Any, what: str) -> List[Any]:
    """Reject a whole payload that is not a JSON array."""
    if not isinstance(payload, list):
        raise ValidationError(
            f'{what} payload must be a list, got {type(payload).__name__}',
            field=what
        )
    return payload


def parse_timestamp(value: Any, now: datetime = None) -> Tuple[datetime, bool]:
    """
    Parse an ISO-8601 timestamp into naive UTC.

    Returns:
        Tuple of (timestamp, normalized). ``normalized`` is True when the
        value was missing or malformed and "now" was used instead.
    """
    fallback = now or datetime.utcnow()

    if not isinstance(value, str) or not value.strip():
        return fallback, True

    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    text = FRACTION_PATTERN.sub(lambda m: f'{m.group(1)}.{m.group(2)[:6].ljust(6, "0")}', text)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return fallback, True

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed, False


def _get(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _require_int(value: Any, name: str, minimum: int = None) -> int:
    # bool is an int subclass; a JSON true is never a user id or a delta
    if isinstance(value, bool) or not isinstance(value, int):
        if value is None:
            raise ValidationError(f'{name} is required', field=name)
        raise ValidationError(f'{name} must be an integer, got {value!r}', field=name)
    if minimum is not None and value < minimum:
        raise ValidationError(f'{name} must be >= {minimum}, got {value}', field=name)
    return value


def _require_str(value: Any, name: str, max_length: int = 255) -> str:
    if value is None:
        raise ValidationError(f'{name} is required', field=name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{name} must be a non-empty string', field=name)
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f'{name} exceeds {max_length} characters', field=name)
    return text


def _optional_str(value: Any, name: str, max_length: int = 255) -> Optional[str]:
    if value is None:
        return None
    return _require_str(value, name, max_length)


def _optional_reference(value: Any, name: str) -> Optional[str]:
    """External ids arrive as numbers or strings; both are stored as text."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be a string or integer', field=name)
    if isinstance(value, int):
        return str(value)
    return _require_str(value, name, MAX_REFERENCE_LENGTH)


def _event_reference(value: Any) -> Optional[str]:
    reference = _optional_reference(value, 'external_event_id')
    if reference is not None and reference.startswith(CHARGE_EVENT_PREFIX):
        raise ValidationError(
            f'external_event_id may not start with {CHARGE_EVENT_PREFIX!r}',
            field='external_event_id'
        )
    return reference


def _require_email(value: Any, name: str = 'email') -> str:
    email = _require_str(value, name)
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(f'{name} is not a valid email address: {email!r}', field=name)
    return email.lower()


def _require_mapping(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError(f'item must be an object, got {type(payload).__name__}')
    return payload


@dataclass(frozen=True)
class PointsEvent:
    """A purchase (positive delta) or spend (negative delta) of points."""
    wp_user_id: int
    email: str
    points_delta: int
    event_type: str
    source: str
    created_at: datetime
    external_event_id: Optional[str] = None
    order_id: Optional[str] = None
    timestamp_normalized: bool = False

    @classmethod
    def from_payload(cls, payload: Any, now: datetime = None) -> 'PointsEvent':
        data = _require_mapping(payload)
        created_at, normalized = parse_timestamp(_get(data, 'created_at', 'createdAt'), now)

        return cls(
            wp_user_id=_require_int(_get(data, 'wp_user_id', 'wpUserId'), 'wp_user_id', minimum=1),
            email=_require_email(_get(data, 'email')),
            points_delta=_require_int(_get(data, 'points_delta', 'pointsDelta'), 'points_delta'),
            event_type=_require_str(_get(data, 'event_type', 'eventType'), 'event_type', 50),
            source=_require_str(_get(data, 'source'), 'source', 50),
            created_at=created_at,
            external_event_id=_event_reference(_get(data, 'external_event_id', 'externalEventId')),
            order_id=_optional_reference(_get(data, 'order_id', 'orderId'), 'order_id'),
            timestamp_normalized=normalized,
        )

    @property
    def is_purchase(self) -> bool:
        return self.points_delta > 0


@dataclass(frozen=True)
class UserRecord:
    """Contact details for one customer."""
    wp_user_id: int
    email: str
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> 'UserRecord':
        data = _require_mapping(payload)
        return cls(
            wp_user_id=_require_int(_get(data, 'wp_user_id', 'wpUserId'), 'wp_user_id', minimum=1),
            email=_require_email(_get(data, 'email')),
            phone=_optional_str(_get(data, 'phone'), 'phone', 50),
            whatsapp=_optional_str(_get(data, 'whatsapp'), 'whatsapp', 50),
            locale=_optional_str(_get(data, 'locale'), 'locale', 16),
            timezone=_optional_str(_get(data, 'timezone'), 'timezone', 64),
        )

    def contact_fields(self) -> Dict[str, Optional[str]]:
        return {
            'email': self.email,
            'phone': self.phone,
            'whatsapp': self.whatsapp,
            'locale': self.locale,
            'timezone': self.timezone,
        }


@dataclass(frozen=True)
class ChargeRecord:
    """A payment taken by the store. Bookkeeping only, never moves points."""
    external_charge_id: str
    amount: Decimal
    status: str
    created_at: datetime
    wp_user_id: Optional[int] = None
    email: Optional[str] = None
    order_id: Optional[str] = None
    currency: str = DEFAULT_CHARGE_CURRENCY
    payment_method: Optional[str] = None
    timestamp_normalized: bool = False

    @classmethod
    def from_payload(cls, payload: Any, now: datetime = None) -> 'ChargeRecord':
        data = _require_mapping(payload)

        charge_id = _optional_reference(
            _get(data, 'external_charge_id', 'externalChargeId'), 'external_charge_id'
        )
        if charge_id is None:
            raise ValidationError('external_charge_id is required', field='external_charge_id')

        raw_user_id = _get(data, 'wp_user_id', 'wpUserId')
        raw_email = _get(data, 'email')
        created_at, normalized = parse_timestamp(_get(data, 'created_at', 'createdAt'), now)

        return cls(
            external_charge_id=charge_id,
            amount=_require_amount(_get(data, 'amount')),
            status=_require_str(_get(data, 'status'), 'status', 50),
            created_at=created_at,
            wp_user_id=None if raw_user_id is None else _require_int(raw_user_id, 'wp_user_id', minimum=1),
            email=None if raw_email is None else _require_email(raw_email),
            order_id=_optional_reference(_get(data, 'order_id', 'orderId'), 'order_id'),
            currency=_optional_str(_get(data, 'currency'), 'currency', 8) or DEFAULT_CHARGE_CURRENCY,
            payment_method=_optional_str(_get(data, 'payment_method', 'paymentMethod'), 'payment_method', 50),
            timestamp_normalized=normalized,
        )

    @property
    def has_customer(self) -> bool:
        return self.wp_user_id is not None and self.email is not None

    @property
    def event_key(self) -> str:
        """De-duplication key in the transaction log."""
        return f'{CHARGE_EVENT_PREFIX}{self.external_charge_id}'


def _require_amount(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        if value is None:
            raise ValidationError('amount is required', field='amount')
        raise ValidationError(f'amount must be a number, got {value!r}', field='amount')
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f'amount must be a number, got {value!r}', field='amount')
    if not amount.is_finite():
        raise ValidationError('amount must be finite', field='amount')
    return amount


@dataclass(frozen=True)
class BalanceRecord:
    """An absolute balance reported by the source system."""
    wp_user_id: int
    email: str
    points_balance: int

    @classmethod
    def from_payload(cls, payload: Any) -> 'BalanceRecord':
        data = _require_mapping(payload)
        return cls(
            wp_user_id=_require_int(_get(data, 'wp_user_id', 'wpUserId'), 'wp_user_id', minimum=1),
            email=_require_email(_get(data, 'email')),
            points_balance=_require_int(
                _get(data, 'points_balance', 'pointsBalance', 'balance'), 'points_balance', minimum=0
            ),
        )
