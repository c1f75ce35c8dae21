"""Invoice validation utilities.

Problems are returned as lists of human-readable messages; nothing here
raises, so the POS can show every problem at once.
"""
from decimal import Decimal
from typing import List, Optional, Sequence

from poultry_pos.models.invoice import LineItem
from poultry_pos.services.invoice_calculator import compute_line_item

MAX_DISCOUNT = Decimal("100")


def is_billable(item: LineItem) -> bool:
    return item.gross_weight > 0 and item.cages_count > 0 and item.unit_price > 0


def validate_line_items(items: Sequence[LineItem]) -> List[str]:
    """
    Validate invoice line items.

    Rules:
    - at least one item with gross weight, cages and price all positive
    - cages weight must be below gross weight on every weighed item
    - discount between 0 and 100
    - no negative weights, counts or prices
    """
    errors: List[str] = []

    if not items:
        return ["Add at least one line item."]

    if not any(is_billable(item) for item in items):
        errors.append("At least one item needs a gross weight, cage count and unit price.")

    for number, item in enumerate(items, start=1):
        if item.gross_weight < 0 or item.cage_weight < 0 or item.cages_count < 0:
            errors.append(f"Item {number}: weights and cage count cannot be negative.")
        if item.unit_price < 0:
            errors.append(f"Item {number}: unit price cannot be negative.")
        if item.discount_percentage < 0 or item.discount_percentage > MAX_DISCOUNT:
            errors.append(f"Item {number}: discount must be between 0 and 100.")

        cages_weight = compute_line_item(item).cages_weight
        if item.gross_weight > 0 and cages_weight >= item.gross_weight:
            errors.append(
                f"Item {number}: cages weight ({cages_weight}) must be less than gross weight ({item.gross_weight})."
            )

    return errors


def validate_invoice_request(
    customer_id: Optional[object],
    truck_id: Optional[object],
    items: Sequence[LineItem],
) -> List[str]:
    errors: List[str] = []
    if customer_id is None:
        errors.append("Select a customer.")
    if truck_id is None:
        errors.append("Select a truck.")
    errors.extend(validate_line_items(items))
    return errors
