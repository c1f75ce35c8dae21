from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class CustomerCreate(BaseModel):
    customer_name: str = Field(..., max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=200)


class CustomerUpdate(BaseModel):
    customer_name: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=200)


class CustomerResponse(BaseModel):
    id: str
    customer_name: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    total_debt: Decimal
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_customer(cls, customer) -> "CustomerResponse":
        return cls(id=str(customer.id), **customer.model_dump(exclude={"id"}))


class CustomerPage(BaseModel):
    items: List[CustomerResponse]
    total: int
    page: int
    page_size: int


class TransactionSummary(BaseModel):
    customer_id: str
    customer_name: str
    current_balance: Decimal
    total_sales: Decimal
    invoice_count: int
    total_payments: Decimal
    last_payment_amount: Decimal = Decimal("0")
    last_payment_date: Optional[datetime] = None
