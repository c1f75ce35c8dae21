"""
Store contracts consumed by the ledger core.

The Motor repositories in this package implement them; tests use
in-memory implementations. Every write, and every read made while a
balance is being computed, accepts the session of the unit of work it
belongs to.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Protocol, Tuple

from bson import ObjectId

from poultry_pos.models.customer import Customer
from poultry_pos.models.invoice import Invoice
from poultry_pos.models.payment import Payment
from poultry_pos.schemas.invoice import InvoiceDetails


class CustomerStore(Protocol):
    async def get_by_id(self, customer_id: ObjectId | str, session: Any = None) -> Optional[Customer]: ...

    async def get_by_name(self, customer_name: str, exclude_id: Optional[ObjectId] = None) -> Optional[Customer]: ...

    async def get_by_phone(self, phone_number: str, exclude_id: Optional[ObjectId] = None) -> Optional[Customer]: ...

    async def update_balance(self, customer_id: ObjectId, delta: Decimal, session: Any = None) -> None: ...

    async def find_active(self, term: Optional[str] = None, page: int = 1, page_size: int = 50) -> Tuple[List[Customer], int]: ...

    async def list_with_debt(self) -> List[Customer]: ...

    async def create(self, customer: Customer, session: Any = None) -> Customer: ...

    async def update(self, customer_id: ObjectId, fields: dict, session: Any = None) -> Optional[Customer]: ...

    async def set_active(self, customer_id: ObjectId, is_active: bool, session: Any = None) -> bool: ...

    async def delete(self, customer_id: ObjectId, session: Any = None) -> bool: ...

    async def has_transactions(self, customer_id: ObjectId) -> bool: ...


class InvoiceStore(Protocol):
    async def generate_next_number(self, on: Optional[datetime] = None, session: Any = None) -> str: ...

    async def create(self, invoice: Invoice, session: Any = None) -> Invoice: ...

    async def update(
        self, invoice: Invoice, session: Any = None, expected_final_amount: Optional[Decimal] = None
    ) -> Invoice: ...

    async def get_by_id(self, invoice_id: ObjectId | str, session: Any = None) -> Optional[Invoice]: ...

    async def get_with_details(self, invoice_id: ObjectId | str) -> Optional[InvoiceDetails]: ...

    async def search(
        self,
        term: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Invoice]: ...

    async def totals_for_customer(self, customer_id: ObjectId, session: Any = None) -> Tuple[Decimal, int]: ...


class PaymentStore(Protocol):
    async def create(self, payment: Payment, session: Any = None) -> Payment: ...

    async def summary_in_range(self, start: datetime, end: datetime) -> Tuple[Decimal, int]: ...

    async def last_for_customer(self, customer_id: ObjectId) -> Optional[Payment]: ...

    async def totals_for_customer(self, customer_id: ObjectId, session: Any = None) -> Tuple[Decimal, int]: ...


class AuditStore(Protocol):
    async def record(self, actor_tag: str, changes: List[str], session: Any = None) -> None: ...
