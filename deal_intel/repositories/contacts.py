"""
Contact Repository
Contact lookups and deal-scoped relationship intelligence writes.
"""
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
import datetime as dt

from .base import BaseRepository
from ..models.contact import Contact


class ContactRepository(BaseRepository[Contact]):
    """
    Repository for Contact documents.

    Relationship intelligence is written per deal with a targeted `$set` on
    `relationship_intelligence.<deal_id>`, so records for other deals and the
    contact's own profile fields are never overwritten by the pipeline.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "contacts", Contact)

    async def find_by_prospect(
        self,
        prospect_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> List[Contact]:
        return await self.find_many({"prospect_id": prospect_id}, limit=500, session=session)

    async def save_intelligence(
        self,
        contact: Contact,
        deal_ids: List[str],
        expected_version: int,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> bool:
        """
        Write the given deals' relationship intelligence for a contact.

        Args:
            contact: Snapshot holding the updated records
            deal_ids: Deals whose records changed
            expected_version: Version the snapshot was loaded at
            session: Transaction session

        Returns:
            False when the stored version no longer matches (concurrent write)
        """
        update_fields = {
            f"relationship_intelligence.{deal_id}": contact.relationship_intelligence[deal_id].model_dump()
            for deal_id in deal_ids
        }
        return await self.versioned_update(
            contact.id, expected_version, {"$set": update_fields}, session=session
        )

    async def clear_intelligence(
        self,
        deal_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> int:
        """Drop every contact's record for the deal; returns how many contacts held one."""
        field_name = f"relationship_intelligence.{deal_id}"
        result = await self.collection.update_many(
            {field_name: {"$exists": True}},
            {
                "$unset": {field_name: ""},
                "$set": {"updated_at": dt.datetime.now(dt.UTC)},
                "$inc": {"version": 1},
            },
            session=session,
        )
        return result.modified_count
