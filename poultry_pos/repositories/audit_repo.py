from typing import Any, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from poultry_pos.models.audit import AuditLog


class AuditLogRepository:
    """Change-set records written alongside every committed unit of work."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["audit_logs"]

    async def record(self, actor_tag: str, changes: List[str], session: Any = None) -> None:
        entry = AuditLog(actor_tag=actor_tag, changes=changes)
        await self.collection.insert_one(entry.to_document(), session=session)
