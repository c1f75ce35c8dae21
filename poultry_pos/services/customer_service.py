import logging
from typing import List, Optional, Tuple

from bson import ObjectId

from poultry_pos.core.errors import CustomerValidationError, NotFoundError
from poultry_pos.models.customer import Customer
from poultry_pos.repositories.stores import CustomerStore
from poultry_pos.schemas.customer import CustomerCreate, CustomerUpdate
from poultry_pos.utils.customer_rules import check_address, check_name, check_phone, normalize_text

logger = logging.getLogger(__name__)


class CustomerService:
    """
    Customer records. Contact fields only: the balance belongs to the
    ledger, and customers with history are deactivated instead of deleted.
    """

    def __init__(self, customers: CustomerStore):
        self.customers = customers

    async def _check(
        self,
        customer_name: Optional[str],
        phone_number: Optional[str],
        address: Optional[str],
        exclude_id: Optional[ObjectId] = None,
    ) -> None:
        errors = check_name(customer_name) + check_phone(phone_number) + check_address(address)
        if not errors:
            if await self.customers.get_by_name(normalize_text(customer_name), exclude_id=exclude_id):
                errors.append("A customer with this name already exists.")
            phone = normalize_text(phone_number)
            if phone and await self.customers.get_by_phone(phone, exclude_id=exclude_id):
                errors.append("This phone number is already used by another customer.")
        if errors:
            raise CustomerValidationError(errors)

    async def create_customer(self, customer_in: CustomerCreate) -> Customer:
        await self._check(customer_in.customer_name, customer_in.phone_number, customer_in.address)

        customer = Customer(
            customer_name=normalize_text(customer_in.customer_name),
            phone_number=normalize_text(customer_in.phone_number) or None,
            address=normalize_text(customer_in.address) or None,
        )
        await self.customers.create(customer)
        logger.info("Created customer %s (%s)", customer.customer_name, customer.id)
        return customer

    async def update_customer(self, customer_id: ObjectId | str, customer_in: CustomerUpdate) -> Customer:
        existing = await self.get(customer_id)

        fields = customer_in.model_dump(exclude_unset=True)
        merged = existing.model_copy(update=fields)
        await self._check(merged.customer_name, merged.phone_number, merged.address, exclude_id=existing.id)

        for key in ("customer_name", "phone_number", "address"):
            if key in fields:
                fields[key] = normalize_text(fields[key]) or None

        updated = await self.customers.update(existing.id, fields)
        if updated is None:
            raise NotFoundError("Customer not found.")
        return updated

    async def get(self, customer_id: ObjectId | str) -> Customer:
        customer = await self.customers.get_by_id(customer_id)
        if customer is None:
            raise NotFoundError("Customer not found.")
        return customer

    async def find_active(
        self,
        term: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[Customer], int]:
        return await self.customers.find_active(term, page=max(page, 1), page_size=page_size)

    async def list_with_debt(self) -> List[Customer]:
        return await self.customers.list_with_debt()

    async def delete_customer(self, customer_id: ObjectId | str) -> bool:
        """
        Remove a customer. Returns True if the record was deleted and False
        if it was only deactivated because invoices or payments reference it.
        """
        customer = await self.get(customer_id)

        if await self.customers.has_transactions(customer.id):
            await self.customers.set_active(customer.id, False)
            logger.info("Deactivated customer %s; transaction history exists", customer.id)
            return False

        await self.customers.delete(customer.id)
        logger.info("Deleted customer %s", customer.id)
        return True
