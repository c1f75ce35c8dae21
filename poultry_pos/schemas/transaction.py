from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from poultry_pos.models.customer import Customer
from poultry_pos.models.invoice import Invoice
from poultry_pos.models.payment import Payment


class TransactionResult(BaseModel):
    """
    Everything the POS needs to confirm a sale or payment without
    inspecting the ledger.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    invoice: Optional[Invoice] = None
    payment: Optional[Payment] = None
    amount_due: Decimal = Decimal("0")
    payment_received: Decimal = Decimal("0")
    remaining_balance: Decimal = Decimal("0")
    overpayment_amount: Decimal = Decimal("0")
    is_overpayment: bool = False
    customer_balance: Optional[Decimal] = None
    message: str = ""
    error: Optional[str] = None
    validation_errors: List[str] = []


class BulkPaymentSummary(BaseModel):
    success: bool
    processed_count: int = 0
    total_amount: Decimal = Decimal("0")
    failed_customers: List[str] = []
    payments: List[Payment] = []
    message: str = ""
    error: Optional[str] = None


class BalanceRecalculation(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    customer: Customer
    stored_balance: Decimal
    calculated_balance: Decimal

    @property
    def discrepancy(self) -> Decimal:
        return self.calculated_balance - self.stored_balance
