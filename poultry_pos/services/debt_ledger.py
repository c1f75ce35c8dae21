"""
DebtLedger - owner of each customer's running balance.

Every change to Customer.total_debt goes through DebtLedger.adjust(),
which stages an atomic $inc in the same unit of work as the invoice or
payment that causes it, so a balance change is never committed apart from
its cause.
"""

import logging
from decimal import Decimal
from functools import partial
from typing import Hashable, Optional

from bson import ObjectId

from poultry_pos.core.errors import ConcurrentBalanceChangeError, NotFoundError
from poultry_pos.models.customer import Customer
from poultry_pos.models.invoice import Invoice
from poultry_pos.models.payment import Payment
from poultry_pos.repositories.unit_of_work import UnitOfWork
from poultry_pos.services.invoice_calculator import ZERO, round_money

logger = logging.getLogger(__name__)


class DebtLedger:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    async def snapshot(self, customer_id: ObjectId) -> Customer:
        """Customer as stored right now; its total_debt is the previous balance."""
        customer = await self.uow.customers.get_by_id(customer_id, session=self.uow.session)
        if customer is None:
            raise NotFoundError("Customer not found.")
        return customer

    async def verify_unchanged(self, customer: Customer) -> Customer:
        """Re-read a customer and fail if the balance moved since the snapshot."""
        current = await self.snapshot(customer.id)
        if current.total_debt != customer.total_debt:
            raise ConcurrentBalanceChangeError(customer.id, customer.total_debt, current.total_debt)
        return current

    def adjust(self, customer_id: ObjectId, delta: Decimal, reason: str, group: Optional[Hashable] = None) -> Decimal:
        """Stage a balance change; the single mutation entry point for total_debt."""
        delta = round_money(delta)
        if delta == ZERO:
            return delta
        logger.debug("Staging balance change %s for customer %s (%s)", delta, customer_id, reason)
        self.uow.add(
            f"{reason}: customer {customer_id} balance {delta:+}",
            partial(self.uow.customers.update_balance, customer_id, delta),
            group=group,
            undo=partial(self.uow.customers.update_balance, customer_id, -delta),
        )
        return delta

    def charge_invoice(self, invoice: Invoice) -> Decimal:
        return self.adjust(invoice.customer_id, invoice.final_amount, f"invoice {invoice.invoice_number}")

    def reverse_invoice(self, invoice: Invoice) -> Decimal:
        """Undo the effect a committed invoice had on the balance."""
        return self.adjust(invoice.customer_id, -invoice.final_amount, f"reverse invoice {invoice.invoice_number}")

    def apply_payment(self, payment: Payment, group: Optional[Hashable] = None) -> Decimal:
        return self.adjust(payment.customer_id, -payment.amount, f"payment {payment.id}", group=group)
