from typing import List

from poultry_pos.models.base import MongoModel


class AuditLog(MongoModel):
    """One record per committed unit of work."""
    actor_tag: str
    changes: List[str] = []
