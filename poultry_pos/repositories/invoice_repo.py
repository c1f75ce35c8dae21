"""
InvoiceRepository - persisted invoices.

Invoice numbers are YYYYMMDD followed by a 4-digit daily sequence and are
only generated when an invoice is committed; drafts carry a temporary
number. A unique index on invoice_number backs the sequence.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from bson import ObjectId
from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorDatabase

from poultry_pos.core.errors import NotFoundError, StaleInvoiceError
from poultry_pos.models.base import as_object_id, to_decimal
from poultry_pos.models.invoice import Invoice
from poultry_pos.models.payment import Payment
from poultry_pos.schemas.invoice import InvoiceDetails

SEQUENCE_DIGITS = 4


def format_invoice_number(on: datetime, sequence: int) -> str:
    return f"{on:%Y%m%d}{sequence:0{SEQUENCE_DIGITS}d}"


def next_sequence(last_number: Optional[str], prefix: str) -> int:
    """Sequence following last_number, 1 if there is none for the prefix."""
    if not last_number or not last_number.startswith(prefix):
        return 1
    suffix = last_number[len(prefix):len(prefix) + SEQUENCE_DIGITS]
    return int(suffix) + 1 if suffix.isdigit() else 1


class InvoiceRepository:
    """Repository for committed invoices."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["invoices"]

    async def generate_next_number(self, on: Optional[datetime] = None, session: Any = None) -> str:
        on = on or datetime.now()
        prefix = f"{on:%Y%m%d}"
        last = await self.collection.find_one(
            {"invoice_number": {"$regex": f"^{prefix}\\d{{{SEQUENCE_DIGITS}}}$"}},
            projection={"invoice_number": 1},
            sort=[("invoice_number", -1)],
            session=session,
        )
        return format_invoice_number(on, next_sequence(last["invoice_number"] if last else None, prefix))

    async def create(self, invoice: Invoice, session: Any = None) -> Invoice:
        await self.collection.insert_one(invoice.to_document(), session=session)
        return invoice

    async def update(self, invoice: Invoice, session: Any = None, expected_final_amount: Optional[Decimal] = None) -> Invoice:
        """
        Replace the stored aggregate fields. With expected_final_amount the
        write only applies while the stored final_amount still has that
        value, so a concurrent edit cannot be reversed twice.
        """
        query: dict = {"_id": invoice.id}
        if expected_final_amount is not None:
            query["final_amount"] = Decimal128(expected_final_amount)

        document = invoice.to_document(exclude={"id", "created_at"})
        result = await self.collection.update_one(query, {"$set": document}, session=session)
        if result.matched_count == 0:
            if expected_final_amount is not None and await self.collection.count_documents(
                {"_id": invoice.id}, limit=1, session=session
            ):
                raise StaleInvoiceError(invoice.invoice_number)
            raise NotFoundError(f"Invoice {invoice.id} not found")
        return invoice

    async def get_by_id(self, invoice_id: ObjectId | str, session: Any = None) -> Optional[Invoice]:
        oid = as_object_id(invoice_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid}, session=session)
        return Invoice(**doc) if doc else None

    async def get_with_details(self, invoice_id: ObjectId | str) -> Optional[InvoiceDetails]:
        invoice = await self.get_by_id(invoice_id)
        if invoice is None:
            return None

        customer = await self.db["customers"].find_one(
            {"_id": invoice.customer_id}, projection={"customer_name": 1}
        )
        payment_docs = await self.db["payments"].find(
            {"invoice_id": invoice.id}
        ).sort("payment_date", 1).to_list(None)

        return InvoiceDetails(
            invoice=invoice,
            customer_name=customer["customer_name"] if customer else None,
            payments=[Payment(**doc) for doc in payment_docs],
        )

    async def search(
        self,
        term: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Invoice]:
        """Invoices by number or customer name within an optional date range, newest first."""
        query: dict = {}
        if start or end:
            query["invoice_date"] = {}
            if start:
                query["invoice_date"]["$gte"] = start
            if end:
                query["invoice_date"]["$lte"] = end

        if term and term.strip():
            pattern = re.escape(term.strip())
            customer_ids = await self.db["customers"].distinct(
                "_id", {"customer_name": {"$regex": pattern, "$options": "i"}}
            )
            query["$or"] = [
                {"invoice_number": {"$regex": pattern}},
                {"customer_id": {"$in": customer_ids}},
            ]

        docs = await self.collection.find(query).sort("invoice_date", -1).limit(limit).to_list(None)
        return [Invoice(**doc) for doc in docs]

    async def totals_for_customer(self, customer_id: ObjectId, session: Any = None) -> Tuple[Decimal, int]:
        """(sum of final amounts, invoice count) for a customer."""
        result = await self.collection.aggregate([
            {"$match": {"customer_id": customer_id}},
            {"$group": {"_id": None, "total": {"$sum": "$final_amount"}, "count": {"$sum": 1}}},
        ], session=session).to_list(1)
        if not result:
            return Decimal("0"), 0
        return to_decimal(result[0]["total"]), result[0]["count"]
