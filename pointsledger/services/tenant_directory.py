"""
Tenant directory: maps an external workspace/store id to a Tenant row.

Tenants are created on first use. There is no implicit default tenant;
every ledger entry point takes the tenant reference explicitly.
"""
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.tenant import Tenant
from ..utils.exceptions import ValidationError

MAX_TENANT_ID_LENGTH = 64


def normalize_tenant_ref(tenant_ref) -> str:
    """Validate a tenant reference and return it as a tenant id."""
    if isinstance(tenant_ref, Tenant):
        return tenant_ref.id

    if not isinstance(tenant_ref, str) or not tenant_ref.strip():
        raise ValidationError('A tenant reference is required', field='tenant')

    tenant_id = tenant_ref.strip()
    if len(tenant_id) > MAX_TENANT_ID_LENGTH:
        raise ValidationError(
            f'Tenant reference exceeds {MAX_TENANT_ID_LENGTH} characters', field='tenant'
        )
    return tenant_id


def get_tenant(tenant_ref) -> Optional[Tenant]:
    """Look up a tenant without creating it."""
    return db.session.get(Tenant, normalize_tenant_ref(tenant_ref))


def ensure_tenant(tenant_ref, name: str = None, timezone: str = None) -> Tenant:
    """
    Return the tenant for ``tenant_ref``, creating it if it does not exist.

    Commits on creation so that the row exists before any per-event unit
    of work references it. A concurrent creator losing the insert race
    reads the winner's row.

    Args:
        tenant_ref: External workspace/store identifier
        name: Display name for a newly created tenant (defaults to the id)
        timezone: Timezone for a newly created tenant

    Returns:
        The Tenant row
    """
    tenant_id = normalize_tenant_ref(tenant_ref)

    tenant = db.session.get(Tenant, tenant_id)
    if tenant:
        return tenant

    tenant = Tenant(
        id=tenant_id,
        name=name or tenant_id,
        timezone=timezone or current_app.config.get('DEFAULT_TENANT_TIMEZONE', 'UTC')
    )
    db.session.add(tenant)

    try:
        db.session.commit()
        current_app.logger.info(f"Created tenant {tenant_id}")
    except IntegrityError:
        db.session.rollback()
        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            raise

    return tenant
