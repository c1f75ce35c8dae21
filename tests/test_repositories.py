"""Tests for the Motor repositories against a mocked database."""
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from bson.decimal128 import Decimal128

from poultry_pos.core.errors import NotFoundError, StaleInvoiceError
from poultry_pos.models.customer import Customer
from poultry_pos.models.invoice import Invoice
from poultry_pos.models.payment import Payment, PaymentMethod
from poultry_pos.repositories.audit_repo import AuditLogRepository
from poultry_pos.repositories.customer_repo import CustomerRepository
from poultry_pos.repositories.invoice_repo import InvoiceRepository, format_invoice_number, next_sequence
from poultry_pos.repositories.payment_repo import PaymentRepository


def aggregate_result(mock_collection, rows):
    cursor = MagicMock()
    cursor.to_list = AsyncMock(return_value=rows)
    mock_collection.aggregate = MagicMock(return_value=cursor)


@pytest.mark.asyncio
class TestCustomerRepository:
    """Test CustomerRepository queries and balance updates."""

    async def test_get_by_id_invalid_id(self, mock_db):
        repo = CustomerRepository(mock_db)

        assert await repo.get_by_id("not-an-id") is None
        mock_db["customers"].find_one.assert_not_awaited()

    async def test_get_by_id_reads_decimal128(self, mock_db):
        customer_id = ObjectId()
        mock_db["customers"].find_one.return_value = {
            "_id": customer_id,
            "customer_name": "Abu Khalil",
            "total_debt": Decimal128("150.25"),
            "is_active": True,
        }

        customer = await CustomerRepository(mock_db).get_by_id(str(customer_id))

        assert customer.id == customer_id
        assert customer.total_debt == Decimal("150.25")

    async def test_get_by_id_reads_in_session(self, mock_db):
        customer_id = ObjectId()
        session = object()

        await CustomerRepository(mock_db).get_by_id(customer_id, session=session)

        mock_db["customers"].find_one.assert_awaited_once_with({"_id": customer_id}, session=session)

    async def test_get_by_phone_matches_digits(self, mock_db):
        excluded = ObjectId()

        await CustomerRepository(mock_db).get_by_phone(" 555-123-4567 ", exclude_id=excluded)

        mock_db["customers"].find_one.assert_awaited_once_with(
            {"phone_digits": "5551234567", "_id": {"$ne": excluded}}
        )

    async def test_get_by_phone_without_digits(self, mock_db):
        assert await CustomerRepository(mock_db).get_by_phone("()") is None
        mock_db["customers"].find_one.assert_not_awaited()

    async def test_create_stores_phone_digits(self, mock_db):
        customer = Customer(customer_name="Abu Khalil", phone_number="(555) 123-4567")

        await CustomerRepository(mock_db).create(customer)

        document = mock_db["customers"].insert_one.call_args[0][0]
        assert document["phone_number"] == "(555) 123-4567"
        assert document["phone_digits"] == "5551234567"

    async def test_update_keeps_phone_digits_in_step(self, mock_db):
        await CustomerRepository(mock_db).update(ObjectId(), {"phone_number": "555 123 4567", "phone_digits": "1"})

        update = mock_db["customers"].find_one_and_update.call_args[0][1]
        assert update["$set"]["phone_digits"] == "5551234567"

    async def test_get_by_name_excludes_record(self, mock_db):
        excluded = ObjectId()

        await CustomerRepository(mock_db).get_by_name(" Abu Khalil ", exclude_id=excluded)

        mock_db["customers"].find_one.assert_awaited_once_with(
            {"customer_name": "Abu Khalil", "_id": {"$ne": excluded}}
        )

    async def test_update_balance_increments(self, mock_db):
        customer_id = ObjectId()
        session = object()

        await CustomerRepository(mock_db).update_balance(customer_id, Decimal("-20.50"), session=session)

        args, kwargs = mock_db["customers"].update_one.call_args
        assert args[0] == {"_id": customer_id}
        assert args[1]["$inc"] == {"total_debt": Decimal128("-20.50")}
        assert kwargs["session"] is session

    async def test_update_balance_unknown_customer(self, mock_db):
        mock_db["customers"].update_one.return_value = MagicMock(matched_count=0)

        with pytest.raises(NotFoundError):
            await CustomerRepository(mock_db).update_balance(ObjectId(), Decimal("1"))

    async def test_update_never_writes_balance(self, mock_db):
        await CustomerRepository(mock_db).update(ObjectId(), {"address": "Market St.", "total_debt": Decimal("0")})

        update = mock_db["customers"].find_one_and_update.call_args[0][1]
        assert "total_debt" not in update["$set"]
        assert update["$set"]["address"] == "Market St."

    async def test_has_transactions(self, mock_db):
        repo = CustomerRepository(mock_db)
        assert await repo.has_transactions(ObjectId()) is False

        mock_db["payments"].count_documents.return_value = 1
        assert await repo.has_transactions(ObjectId()) is True


def test_invoice_number_format():
    assert format_invoice_number(datetime(2024, 3, 5), 7) == "202403050007"
    assert next_sequence("202403050007", "20240305") == 8
    assert next_sequence("202403040099", "20240305") == 1
    assert next_sequence(None, "20240305") == 1


@pytest.mark.asyncio
class TestInvoiceRepository:
    async def test_generate_next_number(self, mock_db):
        mock_db["invoices"].find_one.return_value = {"invoice_number": "202403050041"}

        number = await InvoiceRepository(mock_db).generate_next_number(datetime(2024, 3, 5, 14, 30))

        assert number == "202403050042"
        query = mock_db["invoices"].find_one.call_args[0][0]
        assert query == {"invoice_number": {"$regex": "^20240305\\d{4}$"}}

    async def test_first_number_of_the_day(self, mock_db):
        number = await InvoiceRepository(mock_db).generate_next_number(datetime(2024, 3, 5))
        assert number == "202403050001"

    async def test_create_stores_decimal128(self, mock_db):
        invoice = Invoice(invoice_number="202403050001", final_amount=Decimal("123.45"))

        await InvoiceRepository(mock_db).create(invoice)

        document = mock_db["invoices"].insert_one.call_args[0][0]
        assert document["_id"] == invoice.id
        assert document["final_amount"] == Decimal128("123.45")

    async def test_update_unknown_invoice(self, mock_db):
        mock_db["invoices"].update_one.return_value = MagicMock(matched_count=0)

        with pytest.raises(NotFoundError):
            await InvoiceRepository(mock_db).update(Invoice(invoice_number="202403050001"))

    async def test_update_requires_expected_final_amount(self, mock_db):
        invoice = Invoice(invoice_number="202403050001", final_amount=Decimal("200.00"))
        session = object()

        await InvoiceRepository(mock_db).update(invoice, session=session, expected_final_amount=Decimal("100.00"))

        args, kwargs = mock_db["invoices"].update_one.call_args
        assert args[0] == {"_id": invoice.id, "final_amount": Decimal128("100.00")}
        assert args[1]["$set"]["final_amount"] == Decimal128("200.00")
        assert kwargs["session"] is session

    async def test_update_of_changed_invoice_is_stale(self, mock_db):
        mock_db["invoices"].update_one.return_value = MagicMock(matched_count=0)
        mock_db["invoices"].count_documents.return_value = 1

        with pytest.raises(StaleInvoiceError):
            await InvoiceRepository(mock_db).update(
                Invoice(invoice_number="202403050001"), expected_final_amount=Decimal("100.00")
            )

    async def test_totals_for_customer(self, mock_db):
        aggregate_result(mock_db["invoices"], [{"_id": None, "total": Decimal128("500.00"), "count": 2}])

        session = object()

        total, count = await InvoiceRepository(mock_db).totals_for_customer(ObjectId(), session=session)

        assert total == Decimal("500.00")
        assert count == 2
        assert mock_db["invoices"].aggregate.call_args[1]["session"] is session


@pytest.mark.asyncio
class TestPaymentRepository:
    async def test_create_stores_enum_value(self, mock_db):
        payment = Payment(customer_id=ObjectId(), amount=Decimal("10"), payment_method=PaymentMethod.CHECK)

        await PaymentRepository(mock_db).create(payment)

        document = mock_db["payments"].insert_one.call_args[0][0]
        assert document["payment_method"] == "CHECK"
        assert document["amount"] == Decimal128("10")

    async def test_summary_in_range_empty(self, mock_db):
        aggregate_result(mock_db["payments"], [])

        total, count = await PaymentRepository(mock_db).summary_in_range(datetime(2024, 1, 1), datetime(2024, 2, 1))

        assert total == 0
        assert count == 0


@pytest.mark.asyncio
async def test_audit_record(mock_db):
    session = object()

    await AuditLogRepository(mock_db).record("POS_USER", ["create invoice"], session=session)

    document = mock_db["audit_logs"].insert_one.call_args[0][0]
    assert document["actor_tag"] == "POS_USER"
    assert document["changes"] == ["create invoice"]
    assert mock_db["audit_logs"].insert_one.call_args[1]["session"] is session
