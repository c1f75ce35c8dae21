from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from poultry_pos.models.base import Amount, MongoModel, PyObjectId, _utcnow


PAYMENT_NOTES_MAX_LENGTH = 500


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CHECK = "CHECK"
    TRANSFER = "TRANSFER"


class Payment(MongoModel):
    """Money received from a customer. Immutable once committed."""
    customer_id: PyObjectId
    invoice_id: Optional[PyObjectId] = None  # None for on-account payments
    amount: Amount = Field(..., gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: datetime = Field(default_factory=_utcnow)
    notes: Optional[str] = Field(None, max_length=PAYMENT_NOTES_MAX_LENGTH)
