"""
Deal Repository
Deal lookups and aggregate intelligence writes.
"""
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
import datetime as dt

from .base import BaseRepository, to_object_id
from ..models.deal import Deal

# Fields owned by the intelligence pipeline; everything else on a deal belongs to other writers
INTELLIGENCE_FIELDS = {
    "qualification",
    "deal_temperature_history",
    "deal_health_trend",
    "momentum_direction",
    "latest_deal_narrative",
    "deal_narrative_history",
}


class DealRepository(BaseRepository[Deal]):
    """Repository for Deal documents."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, "deals", Deal)

    async def find_by_contact(
        self,
        contact_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> List[Deal]:
        """All deals the contact participates in, most recently updated first."""
        return await self.find_many(
            {"contact_ids": contact_id},
            limit=200,
            sort=[("updated_at", -1)],
            session=session,
        )

    async def save_intelligence(
        self,
        deal: Deal,
        expected_version: int,
        intelligence_timestamp: dt.datetime,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> bool:
        """
        Write the pipeline-owned fields and advance last_intelligence_update.

        `$max` keeps last_intelligence_update monotonic even when an older
        activity is processed after a newer one.

        Returns:
            False when the stored version no longer matches (concurrent write)
        """
        return await self.versioned_update(
            deal.id,
            expected_version,
            {
                "$set": deal.model_dump(include=INTELLIGENCE_FIELDS),
                "$max": {"last_intelligence_update": intelligence_timestamp},
            },
            session=session,
        )

    async def reset_intelligence(
        self,
        deal_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> bool:
        """
        Return the pipeline-owned fields to their defaults and clear
        last_intelligence_update.

        Returns:
            False when the deal does not exist
        """
        blank = Deal(name="").model_dump(include=INTELLIGENCE_FIELDS)
        result = await self.collection.update_one(
            {"_id": to_object_id(deal_id)},
            {
                "$set": {**blank, "last_intelligence_update": None, "updated_at": dt.datetime.now(dt.UTC)},
                "$inc": {"version": 1},
            },
            session=session,
        )
        return result.matched_count == 1
