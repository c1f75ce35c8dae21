import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from bson import ObjectId
from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from poultry_pos.core.errors import NotFoundError
from poultry_pos.models.base import as_object_id, to_bson
from poultry_pos.models.customer import Customer
from poultry_pos.utils.customer_rules import phone_digits


class CustomerRepository:
    """Customer database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["customers"]

    # ---- Queries ----------------------------------------------------------

    async def get_by_id(self, customer_id: ObjectId | str, session: Any = None) -> Optional[Customer]:
        oid = as_object_id(customer_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid}, session=session)
        return Customer(**doc) if doc else None

    async def get_by_name(self, customer_name: str, exclude_id: Optional[ObjectId] = None) -> Optional[Customer]:
        query = {"customer_name": customer_name.strip()}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        doc = await self.collection.find_one(query)
        return Customer(**doc) if doc else None

    async def get_by_phone(self, phone_number: str, exclude_id: Optional[ObjectId] = None) -> Optional[Customer]:
        digits = phone_digits(phone_number)
        if not digits:
            return None
        query = {"phone_digits": digits}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        doc = await self.collection.find_one(query)
        return Customer(**doc) if doc else None

    async def find_active(
        self,
        term: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[Customer], int]:
        """Active customers by name, paged; term matches name or phone."""
        query: dict = {"is_active": True}
        if term and term.strip():
            pattern = re.escape(term.strip())
            query["$or"] = [
                {"customer_name": {"$regex": pattern, "$options": "i"}},
                {"phone_number": {"$regex": pattern}},
            ]

        total = await self.collection.count_documents(query)
        cursor = (
            self.collection.find(query)
            .sort("customer_name", 1)
            .skip(max(page - 1, 0) * page_size)
            .limit(page_size)
        )
        docs = await cursor.to_list(None)
        return [Customer(**doc) for doc in docs], total

    async def list_with_debt(self) -> List[Customer]:
        docs = await self.collection.find({
            "is_active": True,
            "total_debt": {"$gt": Decimal128("0")},
        }).sort("total_debt", -1).to_list(None)
        return [Customer(**doc) for doc in docs]

    async def has_transactions(self, customer_id: ObjectId) -> bool:
        """True if any invoice or payment references the customer."""
        if await self.db["invoices"].count_documents({"customer_id": customer_id}, limit=1):
            return True
        return bool(await self.db["payments"].count_documents({"customer_id": customer_id}, limit=1))

    # ---- Mutations --------------------------------------------------------

    async def create(self, customer: Customer, session: Any = None) -> Customer:
        await self.collection.insert_one(customer.to_document(), session=session)
        return customer

    async def update(self, customer_id: ObjectId, fields: dict, session: Any = None) -> Optional[Customer]:
        """Update contact fields; total_debt is not writable here."""
        fields = {k: v for k, v in fields.items() if k not in ("total_debt", "phone_digits")}
        if "phone_number" in fields:
            fields["phone_digits"] = phone_digits(fields["phone_number"]) or None
        fields["updated_at"] = datetime.now(timezone.utc)
        doc = await self.collection.find_one_and_update(
            {"_id": customer_id},
            {"$set": to_bson(fields)},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        return Customer(**doc) if doc else None

    async def update_balance(self, customer_id: ObjectId, delta: Decimal, session: Any = None) -> None:
        """Atomically add delta to total_debt. Only DebtLedger calls this."""
        result = await self.collection.update_one(
            {"_id": customer_id},
            {
                "$inc": {"total_debt": Decimal128(delta)},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            session=session,
        )
        if result.matched_count == 0:
            raise NotFoundError(f"Customer {customer_id} not found")

    async def set_active(self, customer_id: ObjectId, is_active: bool, session: Any = None) -> bool:
        result = await self.collection.update_one(
            {"_id": customer_id},
            {"$set": {"is_active": is_active, "updated_at": datetime.now(timezone.utc)}},
            session=session,
        )
        return result.matched_count > 0

    async def delete(self, customer_id: ObjectId, session: Any = None) -> bool:
        result = await self.collection.delete_one({"_id": customer_id}, session=session)
        return result.deleted_count > 0
