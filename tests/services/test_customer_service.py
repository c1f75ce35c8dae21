from decimal import Decimal

import pytest
from bson import ObjectId

from poultry_pos.core.errors import CustomerValidationError, NotFoundError
from poultry_pos.models.invoice import Invoice
from poultry_pos.schemas.customer import CustomerCreate, CustomerUpdate


@pytest.mark.asyncio
class TestCustomerService:
    async def test_create_customer(self, customer_service, ledger_db):
        customer = await customer_service.create_customer(
            CustomerCreate(customer_name="  Abu Khalil ", phone_number="0599-123-456")
        )

        assert customer.customer_name == "Abu Khalil"
        assert customer.phone_number == "0599-123-456"
        assert customer.address is None
        assert customer.total_debt == 0
        assert customer.id in ledger_db.customers

    async def test_create_rejects_duplicates(self, customer_service, add_customer):
        add_customer(name="Abu Khalil", phone_number="0599123456")

        with pytest.raises(CustomerValidationError) as exc_info:
            await customer_service.create_customer(
                CustomerCreate(customer_name="Abu Khalil", phone_number="0599123456")
            )

        assert exc_info.value.errors == [
            "A customer with this name already exists.",
            "This phone number is already used by another customer.",
        ]

    async def test_phone_duplicates_ignore_formatting(self, customer_service, add_customer):
        add_customer(name="Abu Khalil", phone_number="555-123-4567")

        with pytest.raises(CustomerValidationError) as exc_info:
            await customer_service.create_customer(
                CustomerCreate(customer_name="Abu Samir", phone_number="5551234567")
            )

        assert exc_info.value.errors == ["This phone number is already used by another customer."]

    async def test_create_rejects_bad_structure(self, customer_service, ledger_db):
        with pytest.raises(CustomerValidationError) as exc_info:
            await customer_service.create_customer(CustomerCreate(customer_name="A", phone_number="123"))

        assert exc_info.value.errors == ["Customer name is too short.", "Phone number is not valid."]
        assert ledger_db.customers == {}

    async def test_update_keeps_balance(self, customer_service, add_customer, ledger_db):
        customer = add_customer(name="Abu Khalil", debt="75")

        updated = await customer_service.update_customer(
            str(customer.id), CustomerUpdate(customer_name="Abu Khalil", address="Market St. 4")
        )

        assert updated.address == "Market St. 4"
        assert ledger_db.customers[customer.id].total_debt == Decimal("75")

    async def test_update_rejects_name_of_another_customer(self, customer_service, add_customer):
        add_customer(name="Taken")
        customer = add_customer(name="Mine")

        with pytest.raises(CustomerValidationError):
            await customer_service.update_customer(customer.id, CustomerUpdate(customer_name="Taken"))

    async def test_get_unknown(self, customer_service):
        with pytest.raises(NotFoundError):
            await customer_service.get(ObjectId())

    async def test_find_active(self, customer_service, add_customer):
        add_customer(name="Abu Khalil")
        add_customer(name="Abu Samir")
        add_customer(name="Abu Old", is_active=False)

        customers, total = await customer_service.find_active("abu")

        assert total == 2
        assert [c.customer_name for c in customers] == ["Abu Khalil", "Abu Samir"]

    async def test_delete_without_history(self, customer_service, add_customer, ledger_db):
        customer = add_customer()

        assert await customer_service.delete_customer(customer.id) is True
        assert customer.id not in ledger_db.customers

    async def test_delete_with_history_deactivates(self, customer_service, add_customer, ledger_db):
        customer = add_customer()
        invoice = Invoice(invoice_number="202401010001", customer_id=customer.id)
        ledger_db.invoices[invoice.id] = invoice

        assert await customer_service.delete_customer(customer.id) is False
        assert ledger_db.customers[customer.id].is_active is False
