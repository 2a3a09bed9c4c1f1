"""
Customer model, mirrored from the commerce platform's user records.
"""
from datetime import datetime
from ..extensions import db


class Customer(db.Model):
    """
    A tenant's customer, keyed by the external (WordPress) user id.

    Contact fields follow whatever the source system last reported.
    """
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey('tenants.id'), nullable=False)
    external_user_id = db.Column(db.BigInteger, nullable=False)

    # Contact info (synced from the source system)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50))
    whatsapp = db.Column(db.String(50))
    locale = db.Column(db.String(16), default='en')
    timezone = db.Column(db.String(64))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    points_batches = db.relationship('PointsBatch', backref='customer', lazy='dynamic')
    points_transactions = db.relationship('PointsTransaction', backref='customer', lazy='dynamic')
    wallet_snapshot = db.relationship('WalletSnapshot', backref='customer', uselist=False)

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'external_user_id', name='uq_tenant_external_user'),
        db.Index('ix_customers_tenant_email', 'tenant_id', 'email'),
    )

    CONTACT_FIELDS = ('email', 'phone', 'whatsapp', 'locale', 'timezone')

    def __repr__(self):
        return f'<Customer {self.tenant_id}:{self.external_user_id}>'
