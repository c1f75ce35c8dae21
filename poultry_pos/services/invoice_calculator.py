"""
Pure invoice arithmetic: line item derivation, aggregation and balances.

No repositories and no I/O here. Intermediate values are never rounded;
round_money() is applied by callers only when a value is persisted, so
rounding error does not compound across line items.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List

from poultry_pos.models.invoice import Invoice, LineItem

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Fixed 2-decimal rounding, half away from zero (no banker's rounding)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


@dataclass(frozen=True)
class ComputedLineItem:
    item: LineItem
    cages_weight: Decimal
    net_weight: Decimal
    total_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


@dataclass(frozen=True)
class InvoiceAggregate:
    gross_weight: Decimal
    cages_weight: Decimal
    cages_count: int
    net_weight: Decimal
    unit_price: Decimal
    discount_percentage: Decimal
    total_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


# ---------------------------------------------------------------------------
# Invoice-level invariants
# ---------------------------------------------------------------------------

def net_weight(gross_weight: Decimal, cages_weight: Decimal) -> Decimal:
    """Never negative; a cages weight above gross is rejected by validation."""
    return clamp_non_negative(gross_weight - cages_weight)


def total_amount(weight: Decimal, unit_price: Decimal) -> Decimal:
    return weight * unit_price


def discount_amount(amount: Decimal, discount_percentage: Decimal) -> Decimal:
    return amount * discount_percentage / HUNDRED


def final_amount(amount: Decimal, discount_percentage: Decimal) -> Decimal:
    return amount - discount_amount(amount, discount_percentage)


def current_balance(previous_balance: Decimal, invoice_final_amount: Decimal) -> Decimal:
    return previous_balance + invoice_final_amount


def remaining_balance(amount_due: Decimal, payment_received: Decimal) -> Decimal:
    return clamp_non_negative(amount_due - payment_received)


def overpayment_amount(amount_due: Decimal, payment_received: Decimal) -> Decimal:
    return clamp_non_negative(payment_received - amount_due)


def is_overpayment(amount_due: Decimal, payment_received: Decimal) -> bool:
    return payment_received > amount_due and amount_due > ZERO


def applied_payment(payment_received: Decimal, invoice_final_amount: Decimal, prior_debt: Decimal) -> Decimal:
    """
    Part of a payment taken off the customer's balance when paying with an invoice.

    Capped at what the customer owes after the invoice (prior debt plus the
    invoice); anything above that is change handed back.
    """
    owed = clamp_non_negative(invoice_final_amount + prior_debt)
    return min(clamp_non_negative(payment_received), owed)


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------

def compute_line_item(item: LineItem) -> ComputedLineItem:
    cages_weight = item.cages_count * item.cage_weight
    net = net_weight(item.gross_weight, cages_weight)
    total = total_amount(net, item.unit_price)
    discount = discount_amount(total, item.discount_percentage)
    return ComputedLineItem(
        item=item,
        cages_weight=cages_weight,
        net_weight=net,
        total_amount=total,
        discount_amount=discount,
        final_amount=total - discount,
    )


def aggregate_line_items(items: Iterable[LineItem]) -> InvoiceAggregate:
    """
    Reduce line items to the fields an invoice stores.

    unit_price is the net-weight-weighted average price and
    discount_percentage the amount-weighted average discount; an arithmetic
    mean would misprice invoices that mix batches.
    """
    computed: List[ComputedLineItem] = [compute_line_item(i) for i in items]

    total_net = sum((c.net_weight for c in computed), ZERO)
    total = sum((c.total_amount for c in computed), ZERO)

    if total_net > ZERO:
        unit_price = sum((c.item.unit_price * c.net_weight for c in computed), ZERO) / total_net
    else:
        unit_price = ZERO

    if total > ZERO:
        discount = sum((c.item.discount_percentage * c.total_amount for c in computed), ZERO) / total
    else:
        discount = ZERO

    return InvoiceAggregate(
        gross_weight=sum((c.item.gross_weight for c in computed), ZERO),
        cages_weight=sum((c.cages_weight for c in computed), ZERO),
        cages_count=sum(c.item.cages_count for c in computed),
        net_weight=total_net,
        unit_price=unit_price,
        discount_percentage=discount,
        total_amount=total,
        discount_amount=sum((c.discount_amount for c in computed), ZERO),
        final_amount=sum((c.final_amount for c in computed), ZERO),
    )


def apply_aggregate(invoice: Invoice, aggregate: InvoiceAggregate, previous_balance: Decimal) -> Invoice:
    """
    Copy an aggregate onto an invoice, rounding each stored value once.

    final_amount comes from the unrounded total and weighted discount, which
    equals the sum of the line finals; the stored discount_percentage is
    rounded, so the invariant holds to within that rounding.
    """
    total = round_money(aggregate.total_amount)
    discount = round_money(aggregate.discount_percentage)
    final = round_money(final_amount(aggregate.total_amount, aggregate.discount_percentage))
    gross = round_money(aggregate.gross_weight)
    cages = round_money(aggregate.cages_weight)
    previous = round_money(previous_balance)
    return invoice.model_copy(update={
        "gross_weight": gross,
        "cages_weight": cages,
        "cages_count": aggregate.cages_count,
        "net_weight": round_money(aggregate.net_weight),
        "unit_price": round_money(aggregate.unit_price),
        "discount_percentage": discount,
        "total_amount": total,
        "final_amount": final,
        "previous_balance": previous,
        "current_balance": current_balance(previous, final),
    })


def reconstruct_line_item(invoice: Invoice) -> LineItem:
    """
    Rebuild a single representative line item from a stored invoice.

    Lossy: per-item prices and discounts are not recoverable, only their
    weighted averages. Re-aggregating the result yields the invoice's
    final amount within rounding tolerance.
    """
    cage_weight = invoice.cages_weight / invoice.cages_count if invoice.cages_count else ZERO
    return LineItem(
        gross_weight=invoice.gross_weight,
        cages_count=invoice.cages_count,
        cage_weight=cage_weight,
        unit_price=invoice.unit_price,
        discount_percentage=invoice.discount_percentage,
    )
