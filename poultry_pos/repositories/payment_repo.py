from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from poultry_pos.models.base import to_decimal
from poultry_pos.models.payment import Payment


class PaymentRepository:
    """Payments are insert-only; they are never updated after creation."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["payments"]

    async def create(self, payment: Payment, session: Any = None) -> Payment:
        await self.collection.insert_one(payment.to_document(), session=session)
        return payment

    async def summary_in_range(self, start: datetime, end: datetime) -> Tuple[Decimal, int]:
        """(total amount, payment count) for payments dated within [start, end]."""
        return await self._totals({"payment_date": {"$gte": start, "$lte": end}})

    async def totals_for_customer(self, customer_id: ObjectId, session: Any = None) -> Tuple[Decimal, int]:
        return await self._totals({"customer_id": customer_id}, session=session)

    async def last_for_customer(self, customer_id: ObjectId) -> Optional[Payment]:
        doc = await self.collection.find_one(
            {"customer_id": customer_id},
            sort=[("payment_date", -1)],
        )
        return Payment(**doc) if doc else None

    async def _totals(self, match: dict, session: Any = None) -> Tuple[Decimal, int]:
        result = await self.collection.aggregate([
            {"$match": match},
            {"$group": {"_id": None, "total": {"$sum": "$amount"}, "count": {"$sum": 1}}},
        ], session=session).to_list(1)
        if not result:
            return Decimal("0"), 0
        return to_decimal(result[0]["total"]), result[0]["count"]
