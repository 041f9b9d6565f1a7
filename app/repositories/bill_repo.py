"""
BillRepository - bills with their embedded participants.

Participant updates use the positional operator so each one is a single-document
write; nothing here needs a multi-document transaction.
"""

from typing import Any, Dict, Optional
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.base import to_mongo
from app.models.bill import Bill, BillStatus


class BillRepository:
    """Repository for bills."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["bills"]

    async def create(self, bill: Bill) -> Bill:
        """Insert the bill together with its full participant set."""
        await self.collection.insert_one(bill.to_document())
        return bill

    async def get(self, bill_id: str) -> Optional[Bill]:
        doc = await self.collection.find_one({"_id": bill_id, "is_deleted": False})
        if doc:
            return Bill(**doc)
        return None

    async def update_participant(
        self, bill_id: str, participant_id: str, fields: Dict[str, Any]
    ) -> bool:
        """Set fields on one embedded participant."""
        update = {f"participants.$.{key}": value for key, value in fields.items()}
        update["updated_at"] = datetime.now(timezone.utc)
        result = await self.collection.update_one(
            {"_id": bill_id, "participants.id": participant_id},
            {"$set": to_mongo(update)}
        )
        return result.matched_count > 0

    async def set_status(
        self, bill_id: str, status: BillStatus, expected: Optional[BillStatus] = None
    ) -> bool:
        query: Dict[str, Any] = {"_id": bill_id, "is_deleted": False}
        if expected is not None:
            query["status"] = expected.value
        result = await self.collection.update_one(
            query,
            {"$set": {"status": status.value, "updated_at": datetime.now(timezone.utc)}}
        )
        return result.modified_count > 0

    async def soft_delete(self, bill_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": bill_id, "is_deleted": False},
            {"$set": {"is_deleted": True, "updated_at": datetime.now(timezone.utc)}}
        )
        return result.modified_count > 0
