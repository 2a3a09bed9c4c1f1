"""
Customer registry: one shared "ensure customer exists" operation for every
kind of inbound record (points events, users, charges, balance syncs).
"""
from typing import Optional

from ..extensions import db
from ..models.customer import Customer


class CustomerRegistry:
    """
    Tenant-scoped lookup and upsert of customers.

    Methods never commit; they run inside the caller's unit of work.
    """

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id

    def find(self, external_user_id: int) -> Optional[Customer]:
        return Customer.query.filter_by(
            tenant_id=self.tenant_id,
            external_user_id=external_user_id
        ).first()

    def ensure_customer(self, external_user_id: int, email: str, **contact) -> Customer:
        """
        Create the customer if absent, otherwise update changed contact fields.

        Contact values that are None are left untouched on an existing
        customer, so a sparse record never erases data from a richer one.

        Args:
            external_user_id: The source system's user id
            email: Current email address
            **contact: Optional phone, whatsapp, locale, timezone

        Returns:
            The Customer row (flushed, so ``id`` is set)
        """
        fields = {'email': email}
        fields.update({k: v for k, v in contact.items() if k in Customer.CONTACT_FIELDS})

        customer = self.find(external_user_id)
        if customer is None:
            customer = Customer(
                tenant_id=self.tenant_id,
                external_user_id=external_user_id,
                **{k: v for k, v in fields.items() if v is not None}
            )
            db.session.add(customer)
            db.session.flush()
            return customer

        for key, value in fields.items():
            if value is not None and getattr(customer, key) != value:
                setattr(customer, key, value)

        return customer

    def lock(self, customer: Customer) -> Customer:
        """
        Take a row lock on the customer for the rest of the transaction.

        Every unit of work that touches a customer's batches or wallet
        snapshot acquires this first, which serializes writers for the same
        customer while leaving other customers uncontended.
        """
        return Customer.query.filter_by(
            tenant_id=self.tenant_id,
            id=customer.id
        ).with_for_update().one()
