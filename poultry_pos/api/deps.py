from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from poultry_pos.db.session import get_database
from poultry_pos.repositories.customer_repo import CustomerRepository
from poultry_pos.repositories.invoice_repo import InvoiceRepository
from poultry_pos.repositories.payment_repo import PaymentRepository
from poultry_pos.repositories.unit_of_work import make_unit_of_work
from poultry_pos.services.customer_service import CustomerService
from poultry_pos.services.transaction_service import TransactionService


async def get_transaction_service(db: AsyncIOMotorDatabase = Depends(get_database)) -> TransactionService:
    return TransactionService(lambda **kwargs: make_unit_of_work(db, **kwargs))


async def get_customer_service(db: AsyncIOMotorDatabase = Depends(get_database)) -> CustomerService:
    return CustomerService(CustomerRepository(db))


async def get_invoice_repository(db: AsyncIOMotorDatabase = Depends(get_database)) -> InvoiceRepository:
    return InvoiceRepository(db)


async def get_payment_repository(db: AsyncIOMotorDatabase = Depends(get_database)) -> PaymentRepository:
    return PaymentRepository(db)
