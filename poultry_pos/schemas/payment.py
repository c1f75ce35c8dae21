from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from poultry_pos.models.base import Amount, PyObjectId
from poultry_pos.models.payment import PaymentMethod


class QuickPaymentRequest(BaseModel):
    """Either amount or percentage (a fraction of the debt); neither pays the full debt."""
    customer_id: PyObjectId
    amount: Optional[Amount] = None
    percentage: Optional[Amount] = Field(None, ge=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=500)


class BulkPaymentRequest(BaseModel):
    customer_ids: List[PyObjectId] = []  # empty means every customer with debt
    fraction: Optional[Amount] = None


class PaymentSummaryResponse(BaseModel):
    total_amount: Decimal
    payment_count: int
