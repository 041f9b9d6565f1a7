"""
PaymentRepository - payment intents.

State changes go through transition(), a conditional find_one_and_update: the
filter names the statuses the intent may move from, so a second caller racing
the first finds nothing to update. That is what makes reconciliation safe to
run any number of times.
"""

from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.errors import ConflictError
from app.models.base import to_mongo
from app.models.payment import OPEN_STATUSES, PaymentIntent, PaymentStatus


class PaymentRepository:
    """Repository for payment intents."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["payments"]

    async def insert(self, intent: PaymentIntent) -> PaymentIntent:
        """
        Persist a new intent.

        The partial unique index on open intents per participant is the
        backstop for two concurrent "pay my share" calls.
        """
        try:
            await self.collection.insert_one(intent.to_document())
        except DuplicateKeyError as e:
            raise ConflictError("Payment already in progress", code="payment_in_progress") from e
        return intent

    async def get(self, intent_id: str) -> Optional[PaymentIntent]:
        doc = await self.collection.find_one({"_id": intent_id})
        if doc:
            return PaymentIntent(**doc)
        return None

    async def get_by_external_id(self, external_id: str, provider: str) -> Optional[PaymentIntent]:
        doc = await self.collection.find_one({"external_id": external_id, "provider": provider})
        if doc:
            return PaymentIntent(**doc)
        return None

    async def find_open_for_participant(self, participant_id: str) -> Optional[PaymentIntent]:
        doc = await self.collection.find_one({
            "participant_id": participant_id,
            "status": {"$in": [s.value for s in OPEN_STATUSES]}
        })
        if doc:
            return PaymentIntent(**doc)
        return None

    async def list_open(
        self,
        providers: Optional[Iterable[str]] = None,
        created_before: Optional[datetime] = None,
    ) -> List[PaymentIntent]:
        """Open intents, newest first."""
        query: Dict[str, Any] = {"status": {"$in": [s.value for s in OPEN_STATUSES]}}
        if providers is not None:
            query["provider"] = {"$in": [str(getattr(p, "value", p)) for p in providers]}
        if created_before is not None:
            query["created_at"] = {"$lt": created_before}

        docs = await self.collection.find(query).sort("created_at", -1).to_list(None)
        return [PaymentIntent(**doc) for doc in docs]

    async def list_unsettled(self) -> List[PaymentIntent]:
        """Confirmed intents whose participant update did not go through."""
        docs = await self.collection.find(
            {"status": PaymentStatus.CONFIRMED.value, "settled": False}
        ).to_list(None)
        return [PaymentIntent(**doc) for doc in docs]

    async def mark_settled(self, intent_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": intent_id, "status": PaymentStatus.CONFIRMED.value},
            {"$set": {"settled": True, "updated_at": datetime.now(timezone.utc)}}
        )
        return result.modified_count > 0

    async def exists_for_bill(self, bill_id: str) -> bool:
        doc = await self.collection.find_one({"bill_id": bill_id}, {"_id": 1})
        return doc is not None

    async def transition(
        self,
        intent_id: str,
        to_status: PaymentStatus,
        from_statuses: Iterable[PaymentStatus] = OPEN_STATUSES,
        **fields: Any,
    ) -> Optional[PaymentIntent]:
        """
        Move an intent to to_status if it is currently in from_statuses.

        Returns the updated intent, or None when the intent is missing or
        someone else already moved it.
        """
        update = {
            "status": to_status.value,
            "is_open": to_status in OPEN_STATUSES,
            "updated_at": datetime.now(timezone.utc),
            **fields,
        }
        doc = await self.collection.find_one_and_update(
            {"_id": intent_id, "status": {"$in": [s.value for s in from_statuses]}},
            {"$set": to_mongo(update)},
            return_document=ReturnDocument.AFTER
        )
        if doc:
            return PaymentIntent(**doc)
        return None

    async def delete_open(self, intent_id: str) -> bool:
        """Delete an intent only while it is still open."""
        result = await self.collection.delete_one({
            "_id": intent_id,
            "status": {"$in": [s.value for s in OPEN_STATUSES]}
        })
        return result.deleted_count > 0
