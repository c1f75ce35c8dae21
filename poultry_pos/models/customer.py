from decimal import Decimal
from typing import Optional

from pydantic import Field, computed_field

from poultry_pos.models.base import Amount, MongoModel
from poultry_pos.utils.customer_rules import phone_digits as digits_of


class Customer(MongoModel):
    """
    A ledger participant.

    total_debt is the running balance: positive means the customer owes
    money, negative is a credit. Only DebtLedger changes it.
    phone_digits is stored alongside the number and is what phone
    uniqueness is checked on.
    """
    customer_name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=200)
    total_debt: Amount = Decimal("0")
    is_active: bool = True

    @computed_field
    @property
    def phone_digits(self) -> Optional[str]:
        return digits_of(self.phone_number) or None

    @property
    def has_debt(self) -> bool:
        return self.total_debt > 0
