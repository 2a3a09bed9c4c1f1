"""
Shared pytest fixtures for the points ledger tests.
"""
import pytest

from pointsledger import create_app
from pointsledger.extensions import db
from pointsledger.models import Customer, Tenant


@pytest.fixture
def app():
    """Create test application with a fresh in-memory database."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def sample_tenant(app):
    """Create a test tenant."""
    tenant = Tenant(id='artly', name='Artly Store', timezone='Africa/Cairo')
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def sample_customer(app, sample_tenant):
    """Create a test customer with no points."""
    customer = Customer(
        tenant_id=sample_tenant.id,
        external_user_id=42,
        email='a@b.com'
    )
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def make_event():
    """Factory for points event payloads as the WordPress bridge sends them."""
    def _make_event(**overrides):
        payload = {
            'externalEventId': 'evt-1',
            'wpUserId': 42,
            'email': 'a@b.com',
            'pointsDelta': 100,
            'eventType': 'purchase',
            'source': 'woo_order',
            'createdAt': '2024-01-01T00:00:00Z',
        }
        payload.update(overrides)
        return payload

    return _make_event
