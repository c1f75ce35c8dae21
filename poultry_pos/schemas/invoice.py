from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, computed_field

from poultry_pos.models.base import Amount, PyObjectId
from poultry_pos.models.invoice import Invoice, LineItem
from poultry_pos.models.payment import Payment, PaymentMethod


class LineItemIn(BaseModel):
    gross_weight: Amount = Decimal("0")
    cages_count: int = 0
    cage_weight: Amount = Decimal("0")
    unit_price: Amount = Decimal("0")
    discount_percentage: Amount = Decimal("0")

    def to_line_item(self) -> LineItem:
        return LineItem(**self.model_dump())


class InvoiceCreate(BaseModel):
    """Invoice plus the payment taken at the counter."""
    customer_id: Optional[PyObjectId] = None
    truck_id: Optional[PyObjectId] = None
    invoice_date: Optional[datetime] = None
    items: List[LineItemIn] = []
    payment_amount: Amount = Decimal("0")
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=500)


class InvoiceUpdate(BaseModel):
    items: List[LineItemIn] = []
    payment_amount: Amount = Decimal("0")
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=500)


class InvoiceDetails(BaseModel):
    """An invoice with its customer name and the payments linked to it."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    invoice: Invoice
    customer_name: Optional[str] = None
    payments: List[Payment] = []

    @computed_field
    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0"))


class InvoiceEdit(BaseModel):
    """A stored invoice and the single line item the edit form starts from."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    invoice: Invoice
    line_item: LineItem
