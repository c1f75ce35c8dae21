from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from poultry_pos.api.deps import (
    get_customer_service,
    get_invoice_repository,
    get_payment_repository,
    get_transaction_service,
)
from poultry_pos.core.errors import NotFoundError, StaleInvoiceError
from poultry_pos.main import app
from poultry_pos.models.audit import AuditLog
from poultry_pos.models.base import as_object_id
from poultry_pos.models.customer import Customer
from poultry_pos.models.invoice import Invoice
from poultry_pos.models.payment import Payment
from poultry_pos.repositories.invoice_repo import format_invoice_number, next_sequence
from poultry_pos.repositories.unit_of_work import UnitOfWork
from poultry_pos.schemas.invoice import InvoiceDetails
from poultry_pos.services.customer_service import CustomerService
from poultry_pos.services.customer_validation import CustomerValidationPipeline
from poultry_pos.services.transaction_service import TransactionService
from poultry_pos.utils.customer_rules import phone_digits


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------

_MISSING = object()


class FakeDatabase:
    """Collections held as dicts of models; models are replaced, never mutated."""

    def __init__(self):
        self.customers: Dict[ObjectId, Customer] = {}
        self.invoices: Dict[ObjectId, Invoice] = {}
        self.payments: Dict[ObjectId, Payment] = {}
        self.audit_logs: List[AuditLog] = []


def journal(session, table: dict, key) -> None:
    """Let the open transaction of session put table[key] back on abort."""
    if session is None or not session.in_transaction:
        return
    previous = table.get(key, _MISSING)

    def undo():
        if previous is _MISSING:
            table.pop(key, None)
        else:
            table[key] = previous

    session.undo_log.append(undo)


class InMemoryCustomerStore:
    def __init__(self, data: FakeDatabase):
        self.data = data

    async def get_by_id(self, customer_id, session=None):
        return self.data.customers.get(as_object_id(customer_id))

    async def get_by_name(self, customer_name, exclude_id=None):
        for customer in self.data.customers.values():
            if customer.customer_name == customer_name.strip() and customer.id != exclude_id:
                return customer
        return None

    async def get_by_phone(self, phone_number, exclude_id=None):
        digits = phone_digits(phone_number)
        for customer in self.data.customers.values():
            if digits and customer.phone_digits == digits and customer.id != exclude_id:
                return customer
        return None

    async def update_balance(self, customer_id, delta, session=None):
        customer = self.data.customers.get(customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        journal(session, self.data.customers, customer_id)
        self.data.customers[customer_id] = customer.model_copy(
            update={"total_debt": customer.total_debt + delta}
        )

    async def find_active(self, term=None, page=1, page_size=50):
        matches = [
            c for c in self.data.customers.values()
            if c.is_active and (not term or term.lower() in c.customer_name.lower())
        ]
        matches.sort(key=lambda c: c.customer_name)
        start = (page - 1) * page_size
        return matches[start:start + page_size], len(matches)

    async def list_with_debt(self):
        return [c for c in self.data.customers.values() if c.is_active and c.has_debt]

    async def create(self, customer, session=None):
        journal(session, self.data.customers, customer.id)
        self.data.customers[customer.id] = customer
        return customer

    async def update(self, customer_id, fields, session=None):
        customer = self.data.customers.get(customer_id)
        if customer is None:
            return None
        fields = {k: v for k, v in fields.items() if k not in ("total_debt", "phone_digits")}
        journal(session, self.data.customers, customer_id)
        self.data.customers[customer_id] = customer.model_copy(update=fields)
        return self.data.customers[customer_id]

    async def set_active(self, customer_id, is_active, session=None):
        customer = self.data.customers.get(customer_id)
        if customer is None:
            return False
        journal(session, self.data.customers, customer_id)
        self.data.customers[customer_id] = customer.model_copy(update={"is_active": is_active})
        return True

    async def delete(self, customer_id, session=None):
        journal(session, self.data.customers, customer_id)
        return self.data.customers.pop(customer_id, None) is not None

    async def has_transactions(self, customer_id):
        return any(i.customer_id == customer_id for i in self.data.invoices.values()) or any(
            p.customer_id == customer_id for p in self.data.payments.values()
        )


class InMemoryInvoiceStore:
    def __init__(self, data: FakeDatabase):
        self.data = data

    async def generate_next_number(self, on: Optional[datetime] = None, session=None):
        on = on or datetime.now()
        prefix = f"{on:%Y%m%d}"
        numbers = sorted(
            i.invoice_number for i in self.data.invoices.values()
            if i.invoice_number.startswith(prefix) and not i.is_draft
        )
        last = numbers[-1] if numbers else None
        return format_invoice_number(on, next_sequence(last, prefix))

    async def create(self, invoice, session=None):
        if any(i.invoice_number == invoice.invoice_number for i in self.data.invoices.values()):
            raise DuplicateKeyError(f"duplicate invoice_number {invoice.invoice_number}")
        journal(session, self.data.invoices, invoice.id)
        self.data.invoices[invoice.id] = invoice
        return invoice

    async def update(self, invoice, session=None, expected_final_amount=None):
        stored = self.data.invoices.get(invoice.id)
        if stored is None:
            raise NotFoundError(f"Invoice {invoice.id} not found")
        if expected_final_amount is not None and stored.final_amount != expected_final_amount:
            raise StaleInvoiceError(invoice.invoice_number)
        journal(session, self.data.invoices, invoice.id)
        self.data.invoices[invoice.id] = invoice
        return invoice

    async def get_by_id(self, invoice_id, session=None):
        return self.data.invoices.get(as_object_id(invoice_id))

    async def get_with_details(self, invoice_id):
        invoice = await self.get_by_id(invoice_id)
        if invoice is None:
            return None
        customer = self.data.customers.get(invoice.customer_id)
        return InvoiceDetails(
            invoice=invoice,
            customer_name=customer.customer_name if customer else None,
            payments=[p for p in self.data.payments.values() if p.invoice_id == invoice.id],
        )

    async def search(self, term=None, start=None, end=None, limit=100):
        results = [
            i for i in self.data.invoices.values()
            if (not term or term in i.invoice_number)
            and (start is None or i.invoice_date >= start)
            and (end is None or i.invoice_date <= end)
        ]
        return sorted(results, key=lambda i: i.invoice_date, reverse=True)[:limit]

    async def totals_for_customer(self, customer_id, session=None):
        invoices = [i for i in self.data.invoices.values() if i.customer_id == customer_id]
        return sum((i.final_amount for i in invoices), Decimal("0")), len(invoices)


class InMemoryPaymentStore:
    def __init__(self, data: FakeDatabase):
        self.data = data

    async def create(self, payment, session=None):
        journal(session, self.data.payments, payment.id)
        self.data.payments[payment.id] = payment
        return payment

    async def summary_in_range(self, start, end):
        payments = [p for p in self.data.payments.values() if start <= p.payment_date <= end]
        return sum((p.amount for p in payments), Decimal("0")), len(payments)

    async def last_for_customer(self, customer_id):
        payments = [p for p in self.data.payments.values() if p.customer_id == customer_id]
        return max(payments, key=lambda p: p.payment_date) if payments else None

    async def totals_for_customer(self, customer_id, session=None):
        payments = [p for p in self.data.payments.values() if p.customer_id == customer_id]
        return sum((p.amount for p in payments), Decimal("0")), len(payments)


class InMemoryAuditStore:
    def __init__(self, data: FakeDatabase):
        self.data = data

    async def record(self, actor_tag, changes, session=None):
        entry = AuditLog(actor_tag=actor_tag, changes=changes)
        self.data.audit_logs.append(entry)
        if session is not None and session.in_transaction:
            session.undo_log.append(lambda: self.data.audit_logs.remove(entry))


# ---------------------------------------------------------------------------
# Fake Motor client: an aborted transaction undoes only its own writes
# ---------------------------------------------------------------------------

class FakeTransaction:
    def __init__(self, session: "FakeSession"):
        self.session = session

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            await self.session.abort_transaction()
        else:
            await self.session.commit_transaction()
        return False


class FakeSession:
    def __init__(self):
        self.in_transaction = False
        self.undo_log: List[Any] = []
        self.committed = 0
        self.aborted = 0
        self.ended = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.end_session()
        return False

    def start_transaction(self):
        self.in_transaction = True
        self.undo_log = []
        return FakeTransaction(self)

    async def commit_transaction(self):
        self.in_transaction = False
        self.undo_log = []
        self.committed += 1

    async def abort_transaction(self):
        for undo in reversed(self.undo_log):
            undo()
        self.in_transaction = False
        self.undo_log = []
        self.aborted += 1

    async def end_session(self):
        if self.in_transaction:
            await self.abort_transaction()
        self.ended = True


class FakeClient:
    def __init__(self):
        self.sessions: List[FakeSession] = []

    async def start_session(self):
        session = FakeSession()
        self.sessions.append(session)
        return session


class Stores:
    def __init__(self, data: FakeDatabase):
        self.customers = InMemoryCustomerStore(data)
        self.invoices = InMemoryInvoiceStore(data)
        self.payments = InMemoryPaymentStore(data)
        self.audit = InMemoryAuditStore(data)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def ledger_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def stores(ledger_db) -> Stores:
    return Stores(ledger_db)


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def uow_factory(fake_client, stores):
    """Builds units of work over the in-memory stores, like make_unit_of_work."""
    def factory(transactional: bool = True) -> UnitOfWork:
        return UnitOfWork(
            customers=stores.customers,
            invoices=stores.invoices,
            payments=stores.payments,
            audit=stores.audit,
            client=fake_client,
            transactional=transactional,
            retry_attempts=0 if transactional else 2,
            retry_backoff=0,
        )
    return factory


@pytest.fixture
def transaction_service(uow_factory) -> TransactionService:
    return TransactionService(uow_factory)


@pytest.fixture
def customer_service(stores) -> CustomerService:
    return CustomerService(stores.customers)


@pytest.fixture
def add_customer(ledger_db):
    def add(name: str = "Abu Khalil", debt: Any = "0", **kwargs) -> Customer:
        customer = Customer(customer_name=name, total_debt=Decimal(str(debt)), **kwargs)
        ledger_db.customers[customer.id] = customer
        return customer
    return add


@pytest.fixture(autouse=True)
def database_checks_enabled():
    CustomerValidationPipeline.enable_database_checks()
    yield
    CustomerValidationPipeline.enable_database_checks()


@pytest.fixture
def mock_db():
    """Motor database double: one MagicMock collection per name with async methods."""
    collections = {}

    def collection(name):
        if name not in collections:
            col = MagicMock(name=name)
            col.find_one = AsyncMock(return_value=None)
            col.insert_one = AsyncMock()
            col.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
            col.find_one_and_update = AsyncMock(return_value=None)
            col.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
            col.count_documents = AsyncMock(return_value=0)
            col.distinct = AsyncMock(return_value=[])
            collections[name] = col
        return collections[name]

    db = MagicMock()
    db.__getitem__.side_effect = collection
    return db


@pytest.fixture
def client(stores, uow_factory):
    """Test client wired to the in-memory stores; the Mongo lifespan is not started."""
    app.dependency_overrides[get_transaction_service] = lambda: TransactionService(uow_factory)
    app.dependency_overrides[get_customer_service] = lambda: CustomerService(stores.customers)
    app.dependency_overrides[get_invoice_repository] = lambda: stores.invoices
    app.dependency_overrides[get_payment_repository] = lambda: stores.payments
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
