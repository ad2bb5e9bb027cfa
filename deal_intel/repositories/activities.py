"""
Activity Repository
Email and meeting records plus their idempotency receipts.
"""
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
import datetime as dt

from .base import BaseRepository, to_object_id
from ..models.activity import ActivityBase, ProcessingReceipt, parse_activity


class ActivityRepository(BaseRepository[ActivityBase]):
    """
    Repository for activities.
    Documents are resolved to EmailActivity or MeetingActivity by their `kind`.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "activities", ActivityBase)

    def _to_model(self, doc: Dict[str, Any]):
        if "_id" in doc:
            doc["_id"] = str(doc["_id"])
        return parse_activity(doc)

    async def find_history(
        self,
        contact_ids: List[str],
        until: dt.datetime,
        limit: int = 200,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> List[ActivityBase]:
        """Activities involving any of the contacts up to `until`, newest first."""
        return await self.find_many(
            {"contact_ids": {"$in": contact_ids}, "date": {"$lte": until}},
            limit=limit,
            sort=[("date", -1)],
            session=session,
        )

    async def add_receipts(
        self,
        activity_id: str,
        receipts: List[ProcessingReceipt],
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> None:
        """
        Append receipts to the activity's processed_for set.

        Raises:
            RuntimeError: If the activity no longer exists
        """
        if not receipts:
            return
        result = await self.collection.update_one(
            {"_id": to_object_id(activity_id)},
            {"$addToSet": {"processed_for": {"$each": [r.model_dump() for r in receipts]}}},
            session=session,
        )
        if result.matched_count == 0:
            raise RuntimeError(f"Activity {activity_id} not found")

    async def find_for_deal(
        self,
        deal_id: str,
        contact_ids: List[str],
        prospect_id: Optional[str] = None,
        limit: int = 5000,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> List[ActivityBase]:
        """
        Activities that can be attributed to the deal, oldest first.

        That is activities pinned to the deal, activities involving its
        contacts, and prospect-level activities with no contacts of their own.
        """
        clauses: List[Dict[str, Any]] = [{"deal_id": deal_id}]
        if contact_ids:
            clauses.append({"contact_ids": {"$in": contact_ids}})
        if prospect_id:
            clauses.append({"prospect_id": prospect_id, "contact_ids": {"$size": 0}})
        return await self.find_many(
            {"$or": clauses},
            limit=limit,
            sort=[("date", 1)],
            session=session,
        )

    async def remove_receipts(
        self,
        deal_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> int:
        """Pull every receipt for the deal; returns how many activities carried one."""
        result = await self.collection.update_many(
            {"processed_for.deal_id": deal_id},
            {"$pull": {"processed_for": {"deal_id": deal_id}}},
            session=session,
        )
        return result.modified_count
