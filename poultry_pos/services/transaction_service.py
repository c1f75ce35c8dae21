"""
TransactionService - coordinates invoice arithmetic, the debt ledger and
payments into single units of work.

Single-invoice operations (create, edit, quick payment) are all-or-nothing:
every write is staged and committed in one transaction, and any failure
leaves no trace. Bulk operations isolate failures per customer and commit
the successful payments together in one non-transactional batch.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from functools import partial
from typing import Callable, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from poultry_pos.core.config import settings
from poultry_pos.core.errors import ErrorHandler, NotFoundError, PreconditionError, describe, error_handler
from poultry_pos.models.customer import Customer
from poultry_pos.models.invoice import Invoice, LineItem, temporary_invoice_number
from poultry_pos.models.payment import PAYMENT_NOTES_MAX_LENGTH, Payment, PaymentMethod
from poultry_pos.repositories.unit_of_work import UnitOfWork
from poultry_pos.schemas.customer import TransactionSummary
from poultry_pos.schemas.transaction import BalanceRecalculation, BulkPaymentSummary, TransactionResult
from poultry_pos.services import invoice_calculator as calc
from poultry_pos.services.debt_ledger import DebtLedger
from poultry_pos.utils.invoice_validation import validate_invoice_request, validate_line_items

logger = logging.getLogger(__name__)

ZERO = calc.ZERO

# Audit labels attached to each committed change-set
POS_USER = "POS_USER"
INVOICE_EDIT = "INVOICE_EDIT"
QUICK_PAYMENT = "QUICK_PAYMENT"
PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
BULK_DEBT_SETTLEMENT = "BULK_DEBT_SETTLEMENT"
BULK_PAYMENTS = "BULK_PAYMENTS"
BALANCE_RECALCULATION = "BALANCE_RECALCULATION"

INVOICE_NUMBER_ATTEMPTS = 2


def _money(value: Decimal) -> str:
    return f"{value:,.2f} {settings.CURRENCY}"


def _display_name(customer: Customer) -> str:
    return customer.customer_name or f"Customer {customer.id}"


class TransactionService:
    def __init__(
        self,
        uow_factory: Callable[..., UnitOfWork],
        errors: ErrorHandler = error_handler,
    ):
        self._uow_factory = uow_factory
        self._errors = errors

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    @staticmethod
    def new_draft(
        customer_id: Optional[ObjectId] = None,
        truck_id: Optional[ObjectId] = None,
        invoice_date: Optional[datetime] = None,
    ) -> Invoice:
        """In-memory invoice with a temporary number; nothing is persisted."""
        return Invoice(
            invoice_number=temporary_invoice_number(),
            invoice_date=invoice_date or datetime.now(timezone.utc),
            customer_id=customer_id,
            truck_id=truck_id,
        )

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    async def create_invoice_with_payment(
        self,
        draft: Invoice,
        line_items: Sequence[LineItem],
        payment_amount: Decimal = ZERO,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        notes: Optional[str] = None,
    ) -> TransactionResult:
        """
        Commit a draft invoice, its ledger charge and the counter payment.

        The real invoice number is assigned here. previous_balance is the
        customer's debt read once at the start.
        """
        payment_amount = Decimal(payment_amount)
        errors = validate_invoice_request(draft.customer_id, draft.truck_id, line_items)
        if payment_amount < 0:
            errors.append("Payment amount cannot be negative.")
        if errors:
            return TransactionResult(
                success=False,
                message="The invoice has validation errors.",
                validation_errors=errors,
            )

        aggregate = calc.aggregate_line_items(line_items)

        attempt = 1
        while True:
            try:
                invoice, payment = await self._commit_invoice(draft, aggregate, payment_amount, payment_method, notes)
                break
            except DuplicateKeyError as exc:
                # Two sales drew the same number; the losing transaction left nothing behind
                if attempt < INVOICE_NUMBER_ATTEMPTS:
                    attempt += 1
                    logger.warning("Invoice number collision, retrying (attempt %d): %s", attempt, exc)
                    continue
                return TransactionResult(
                    success=False,
                    message=self._errors.handle(exc, "create invoice"),
                    error=describe(exc),
                )
            except PreconditionError as exc:
                return TransactionResult(success=False, message=str(exc))
            except Exception as exc:
                return TransactionResult(
                    success=False,
                    message=self._errors.handle(exc, "create invoice"),
                    error=describe(exc),
                )

        applied = payment.amount if payment else ZERO
        logger.info(
            "Invoice %s committed for customer %s: amount %s, payment %s",
            invoice.invoice_number, invoice.customer_id, invoice.final_amount, applied,
        )
        return self._invoice_result(invoice, payment, payment_amount, invoice.current_balance - applied)

    async def _commit_invoice(
        self,
        draft: Invoice,
        aggregate: calc.InvoiceAggregate,
        payment_amount: Decimal,
        payment_method: PaymentMethod,
        notes: Optional[str],
    ) -> Tuple[Invoice, Optional[Payment]]:
        async with self._uow_factory(transactional=True) as uow:
            ledger = DebtLedger(uow)
            customer = await ledger.snapshot(draft.customer_id)
            if not customer.is_active:
                raise PreconditionError("The selected customer is inactive.")

            number = await uow.invoices.generate_next_number(session=uow.session)
            invoice = calc.apply_aggregate(draft, aggregate, customer.total_debt).model_copy(
                update={"invoice_number": number, "updated_at": datetime.now(timezone.utc)}
            )

            uow.add(f"create invoice {number}", partial(uow.invoices.create, invoice))
            ledger.charge_invoice(invoice)
            payment = self._stage_invoice_payment(
                uow, ledger, invoice, payment_amount, customer.total_debt, payment_method, notes
            )

            await uow.save_changes(POS_USER)
        return invoice, payment

    async def load_invoice_for_edit(self, invoice_id: ObjectId | str) -> Tuple[Invoice, LineItem]:
        """
        Stored invoice and the line item an edit starts from.

        Saving that line item unchanged through update_invoice reproduces
        the invoice's final amount, so the customer's balance does not move.
        """
        invoice = await self._uow_factory().invoices.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found.")
        return invoice, calc.reconstruct_line_item(invoice)

    async def update_invoice(
        self,
        invoice_id: ObjectId | str,
        line_items: Sequence[LineItem],
        payment_amount: Decimal = ZERO,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        notes: Optional[str] = None,
    ) -> TransactionResult:
        """
        Rewrite an invoice from new line items.

        The old final amount is reversed on the customer's balance and the
        new one applied, in the same commit as the invoice update. Number,
        date, customer and previous_balance are kept.
        """
        payment_amount = Decimal(payment_amount)
        errors = validate_line_items(line_items)
        if payment_amount < 0:
            errors.append("Payment amount cannot be negative.")
        if errors:
            return TransactionResult(
                success=False,
                message="The invoice has validation errors.",
                validation_errors=errors,
            )

        aggregate = calc.aggregate_line_items(line_items)

        try:
            async with self._uow_factory(transactional=True) as uow:
                existing = await uow.invoices.get_by_id(invoice_id, session=uow.session)
                if existing is None:
                    raise NotFoundError("Invoice not found.")

                ledger = DebtLedger(uow)
                customer = await ledger.snapshot(existing.customer_id)

                invoice = calc.apply_aggregate(existing, aggregate, existing.previous_balance).model_copy(
                    update={"updated_at": datetime.now(timezone.utc)}
                )
                uow.add(
                    f"update invoice {invoice.invoice_number}",
                    partial(uow.invoices.update, invoice, expected_final_amount=existing.final_amount),
                )
                ledger.reverse_invoice(existing)
                ledger.charge_invoice(invoice)

                debt_without_invoice = customer.total_debt - existing.final_amount
                payment = self._stage_invoice_payment(
                    uow, ledger, invoice, payment_amount, debt_without_invoice, payment_method, notes
                )

                await uow.save_changes(INVOICE_EDIT)
        except PreconditionError as exc:
            return TransactionResult(success=False, message=str(exc))
        except Exception as exc:
            return TransactionResult(
                success=False,
                message=self._errors.handle(exc, "update invoice"),
                error=describe(exc),
            )

        applied = payment.amount if payment else ZERO
        balance = debt_without_invoice + invoice.final_amount - applied
        logger.info(
            "Invoice %s updated: amount %s -> %s",
            invoice.invoice_number, existing.final_amount, invoice.final_amount,
        )
        return self._invoice_result(invoice, payment, payment_amount, balance)

    def _stage_invoice_payment(
        self,
        uow: UnitOfWork,
        ledger: DebtLedger,
        invoice: Invoice,
        payment_amount: Decimal,
        prior_debt: Decimal,
        payment_method: PaymentMethod,
        notes: Optional[str],
    ) -> Optional[Payment]:
        if payment_amount <= 0:
            return None
        applied = calc.round_money(calc.applied_payment(payment_amount, invoice.final_amount, prior_debt))
        if applied <= 0:
            return None

        payment = Payment(
            customer_id=invoice.customer_id,
            invoice_id=invoice.id,
            amount=applied,
            payment_method=payment_method,
            notes=self._invoice_payment_notes(notes, payment_amount, invoice.final_amount),
        )
        uow.add(f"create payment {payment.id}", partial(uow.payments.create, payment))
        ledger.apply_payment(payment)
        return payment

    @staticmethod
    def _invoice_payment_notes(notes: Optional[str], payment_amount: Decimal, amount_due: Decimal) -> str:
        text = notes.strip() if notes and notes.strip() else "Payment with invoice"
        suffix = ""
        if payment_amount > amount_due:
            suffix = " (includes overpayment)"
        elif payment_amount < amount_due:
            suffix = " (partial payment)"
        return text[:PAYMENT_NOTES_MAX_LENGTH - len(suffix)] + suffix

    def _invoice_result(
        self,
        invoice: Invoice,
        payment: Optional[Payment],
        payment_received: Decimal,
        customer_balance: Decimal,
    ) -> TransactionResult:
        amount_due = invoice.final_amount
        remaining = calc.remaining_balance(amount_due, payment_received)
        overpayment = calc.overpayment_amount(amount_due, payment_received)

        message = f"Invoice {invoice.invoice_number} saved for {_money(amount_due)}."
        if payment is not None:
            message += f" Payment of {_money(payment.amount)} recorded."
            if remaining > 0:
                message += f" Remaining {_money(remaining)} added to the customer's debt."
            elif overpayment > 0:
                message += f" Overpayment of {_money(overpayment)}."
            else:
                message += " Paid in full."
        else:
            message += f" {_money(amount_due)} added to the customer's debt."

        return TransactionResult(
            success=True,
            invoice=invoice,
            payment=payment,
            amount_due=amount_due,
            payment_received=payment_received,
            remaining_balance=remaining,
            overpayment_amount=overpayment,
            is_overpayment=calc.is_overpayment(amount_due, payment_received),
            customer_balance=customer_balance,
            message=message,
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @staticmethod
    def quick_payment_amount(
        debt: Decimal,
        amount: Optional[Decimal] = None,
        percentage: Optional[Decimal] = None,
    ) -> Decimal:
        """Full debt, an explicit amount, or a fraction of the debt; never negative."""
        if percentage is not None:
            value = calc.round_money(debt * Decimal(percentage))
        elif amount is not None:
            value = Decimal(amount)
        else:
            value = debt
        return calc.clamp_non_negative(value)

    async def quick_payment(
        self,
        customer_id: ObjectId | str,
        amount: Optional[Decimal] = None,
        percentage: Optional[Decimal] = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        notes: Optional[str] = None,
    ) -> TransactionResult:
        """
        On-account payment against a customer's debt.

        Amounts above QUICK_PAYMENT_MAX_DEBT_MULTIPLE times the debt are
        refused as a guard against mistyped input.
        """
        try:
            async with self._uow_factory(transactional=True) as uow:
                ledger = DebtLedger(uow)
                customer = await ledger.snapshot(customer_id)
                debt = customer.total_debt
                if debt <= 0:
                    raise PreconditionError("The customer has no outstanding debt.")

                value = calc.round_money(self.quick_payment_amount(debt, amount, percentage))
                if value <= 0:
                    raise PreconditionError("Payment amount must be greater than zero.")
                if value > debt * settings.QUICK_PAYMENT_MAX_DEBT_MULTIPLE:
                    raise PreconditionError(
                        f"Payment amount {_money(value)} is more than "
                        f"{settings.QUICK_PAYMENT_MAX_DEBT_MULTIPLE} times the debt."
                    )

                payment = Payment(
                    customer_id=customer.id,
                    amount=value,
                    payment_method=payment_method,
                    notes=notes or "Quick payment",
                )
                uow.add(f"create payment {payment.id}", partial(uow.payments.create, payment))
                ledger.apply_payment(payment)

                await uow.save_changes(QUICK_PAYMENT)
        except PreconditionError as exc:
            return TransactionResult(success=False, message=str(exc))
        except Exception as exc:
            return TransactionResult(
                success=False,
                message=self._errors.handle(exc, "quick payment"),
                error=describe(exc),
            )

        return TransactionResult(
            success=True,
            payment=payment,
            amount_due=debt,
            payment_received=value,
            remaining_balance=calc.remaining_balance(debt, value),
            overpayment_amount=calc.overpayment_amount(debt, value),
            is_overpayment=calc.is_overpayment(debt, value),
            customer_balance=debt - value,
            message=f"Quick payment of {_money(value)} recorded for {customer.customer_name}.",
        )

    async def process_payment(self, payment: Payment) -> TransactionResult:
        """Record a payment entered in the payment dialog."""
        try:
            async with self._uow_factory(transactional=True) as uow:
                ledger = DebtLedger(uow)
                customer = await ledger.snapshot(payment.customer_id)
                payment = payment.model_copy(update={"amount": calc.round_money(payment.amount)})
                if payment.amount <= 0:
                    raise PreconditionError("Payment amount must be greater than zero.")

                uow.add(f"create payment {payment.id}", partial(uow.payments.create, payment))
                ledger.apply_payment(payment)

                await uow.save_changes(PAYMENT_PROCESSING)
        except PreconditionError as exc:
            return TransactionResult(success=False, message=str(exc))
        except Exception as exc:
            return TransactionResult(
                success=False,
                message=self._errors.handle(exc, "process payment"),
                error=describe(exc),
            )

        debt = customer.total_debt
        return TransactionResult(
            success=True,
            payment=payment,
            amount_due=debt,
            payment_received=payment.amount,
            remaining_balance=calc.remaining_balance(debt, payment.amount),
            overpayment_amount=calc.overpayment_amount(debt, payment.amount),
            is_overpayment=calc.is_overpayment(debt, payment.amount),
            customer_balance=debt - payment.amount,
            message=f"Payment of {_money(payment.amount)} recorded.",
        )

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    async def bulk_settle_debt(self, customers: Sequence[Customer]) -> BulkPaymentSummary:
        """Pay off every listed customer's full debt."""
        return await self._bulk_payments(
            customers,
            amount_for=lambda customer: customer.total_debt,
            notes="Full debt settlement",
            actor_tag=BULK_DEBT_SETTLEMENT,
        )

    async def bulk_partial_payment(
        self,
        customers: Sequence[Customer],
        fraction: Decimal = settings.BULK_PARTIAL_FRACTION,
    ) -> BulkPaymentSummary:
        """Pay round(debt * fraction, 2) for every listed customer."""
        fraction = Decimal(fraction)
        if fraction <= 0 or fraction > 1:
            return BulkPaymentSummary(success=False, message="Fraction must be greater than 0 and at most 1.")

        return await self._bulk_payments(
            customers,
            amount_for=lambda customer: customer.total_debt * fraction,
            notes=f"Bulk payment - {fraction:.0%} of debt",
            actor_tag=BULK_PAYMENTS,
        )

    async def _bulk_payments(
        self,
        customers: Sequence[Customer],
        amount_for: Callable[[Customer], Decimal],
        notes: str,
        actor_tag: str,
    ) -> BulkPaymentSummary:
        targets = list({c.id: c for c in customers if c is not None and c.has_debt}.values())
        if not targets:
            return BulkPaymentSummary(success=False, message="No customers with outstanding debt.")

        staged = []
        failed = []

        async with self._uow_factory(transactional=False) as uow:
            ledger = DebtLedger(uow)
            for customer in targets:
                try:
                    amount = calc.round_money(amount_for(customer))
                    if amount <= 0:
                        continue
                    await ledger.verify_unchanged(customer)
                    payment = Payment(
                        customer_id=customer.id,
                        amount=amount,
                        payment_method=PaymentMethod(settings.DEFAULT_PAYMENT_METHOD),
                        notes=notes,
                    )
                except Exception as exc:
                    logger.warning("%s skipped customer %s: %s", actor_tag, customer.id, exc)
                    failed.append(_display_name(customer))
                    continue

                # Balance first: a failed insert is undone, a failed $inc leaves nothing behind
                ledger.apply_payment(payment, group=customer.id)
                uow.add(f"create payment {payment.id}", partial(uow.payments.create, payment), group=customer.id)
                staged.append((customer, payment))

            try:
                await uow.save_changes(actor_tag)
            except Exception as exc:
                return BulkPaymentSummary(
                    success=False,
                    failed_customers=failed,
                    message=self._errors.handle(exc, actor_tag),
                    error=describe(exc),
                )

            payments = []
            for customer, payment in staged:
                exc = uow.failed_groups.get(customer.id)
                if exc is not None:
                    self._errors.handle(exc, f"{actor_tag} customer {customer.id}")
                    failed.append(_display_name(customer))
                else:
                    payments.append(payment)

        total = sum((payment.amount for payment in payments), ZERO)
        message = f"Processed {len(payments)} payment(s) totalling {_money(total)}."
        if failed:
            message += f" {len(failed)} customer(s) failed: {', '.join(failed)}."
        logger.info("%s: %s", actor_tag, message)

        return BulkPaymentSummary(
            success=True,
            processed_count=len(payments),
            total_amount=total,
            failed_customers=failed,
            payments=payments,
            message=message,
        )

    # ------------------------------------------------------------------
    # Customer account
    # ------------------------------------------------------------------

    async def get_transaction_summary(self, customer_id: ObjectId | str) -> TransactionSummary:
        uow = self._uow_factory()
        customer = await DebtLedger(uow).snapshot(customer_id)
        total_sales, invoice_count = await uow.invoices.totals_for_customer(customer.id)
        total_payments, _ = await uow.payments.totals_for_customer(customer.id)
        last_payment = await uow.payments.last_for_customer(customer.id)

        return TransactionSummary(
            customer_id=str(customer.id),
            customer_name=customer.customer_name,
            current_balance=customer.total_debt,
            total_sales=total_sales,
            invoice_count=invoice_count,
            total_payments=total_payments,
            last_payment_amount=last_payment.amount if last_payment else ZERO,
            last_payment_date=last_payment.payment_date if last_payment else None,
        )

    async def recalculate_customer_balance(self, customer_id: ObjectId | str) -> BalanceRecalculation:
        """
        Rebuild a balance from history (invoices minus payments) and correct
        the stored one through the ledger when they disagree.
        """
        async with self._uow_factory(transactional=True) as uow:
            ledger = DebtLedger(uow)
            customer = await ledger.snapshot(customer_id)
            total_sales, _ = await uow.invoices.totals_for_customer(customer.id, session=uow.session)
            total_payments, _ = await uow.payments.totals_for_customer(customer.id, session=uow.session)

            result = BalanceRecalculation(
                customer=customer,
                stored_balance=customer.total_debt,
                calculated_balance=calc.round_money(total_sales - total_payments),
            )
            if result.discrepancy != 0:
                logger.warning(
                    "Balance discrepancy for customer %s: stored %s, calculated %s",
                    customer.id, result.stored_balance, result.calculated_balance,
                )
                ledger.adjust(customer.id, result.discrepancy, "balance recalculation")
                await uow.save_changes(BALANCE_RECALCULATION)

        return result
