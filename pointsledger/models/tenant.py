"""
Tenant model for multi-tenant isolation.
"""
from datetime import datetime
from ..extensions import db


class Tenant(db.Model):
    """
    A store or workspace whose ledger data never mixes with another's.

    The primary key is the external workspace identifier, so a tenant can be
    created the first time an event arrives for it.
    """
    __tablename__ = 'tenants'

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default='UTC')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customers = db.relationship('Customer', backref='tenant', lazy='dynamic')

    def __repr__(self):
        return f'<Tenant {self.id}>'
