"""
Invoice model and the ephemeral line items it is composed from.

Design principles:
- Line items exist only while an invoice is being composed; the invoice
  stores the aggregate fields only.
- invoice_number is a temporary placeholder until the invoice is committed.
- All weights and amounts are Decimal.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from poultry_pos.models.base import Amount, MongoModel, PyObjectId, _utcnow

TEMP_NUMBER_MARKER = "-TEMP-"


class LineItem(BaseModel):
    """One weighed batch: gross weight, cages and price."""
    model_config = ConfigDict(frozen=True)

    gross_weight: Amount = Decimal("0")
    cages_count: int = 0
    cage_weight: Amount = Decimal("0")
    unit_price: Amount = Decimal("0")
    discount_percentage: Amount = Decimal("0")


class Invoice(MongoModel):
    """
    Invariants (at commit):
    - net_weight = gross_weight - cages_weight
    - final_amount = total_amount * (1 - discount_percentage / 100)
    - current_balance = previous_balance + final_amount
    """
    invoice_number: str = Field(..., max_length=30)
    invoice_date: datetime = Field(default_factory=_utcnow)
    customer_id: Optional[PyObjectId] = None
    truck_id: Optional[PyObjectId] = None

    gross_weight: Amount = Decimal("0")
    cages_weight: Amount = Decimal("0")
    cages_count: int = 0
    net_weight: Amount = Decimal("0")
    unit_price: Amount = Decimal("0")
    discount_percentage: Amount = Decimal("0")
    total_amount: Amount = Decimal("0")
    final_amount: Amount = Decimal("0")

    previous_balance: Amount = Decimal("0")
    current_balance: Amount = Decimal("0")

    @property
    def is_draft(self) -> bool:
        return TEMP_NUMBER_MARKER in self.invoice_number


def temporary_invoice_number(now: Optional[datetime] = None) -> str:
    """Placeholder shown on a draft until the invoice is committed."""
    now = now or datetime.now()
    return f"{now:%Y%m%d}{TEMP_NUMBER_MARKER}{now:%H%M%S}"
