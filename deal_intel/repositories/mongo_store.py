"""
MongoDB Intelligence Store
Motor-backed store; the commit runs inside a multi-document transaction.
"""
from typing import List, Optional
import datetime as dt

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from .activities import ActivityRepository
from .contacts import ContactRepository
from .deals import DealRepository
from .store import CommitBatch, IntelligenceStore
from ..core.errors import CommitError, ConcurrentModificationError, EntityNotFoundError
from ..models.activity import ActivityBase
from ..models.contact import Contact
from ..models.deal import Deal
from ..utils.observability import logger


class MongoIntelligenceStore(IntelligenceStore):
    """
    Production store.

    Requires a replica set or sharded cluster (transactions are not available
    on a standalone mongod).

    Usage:
        >>> await db_manager.connect()
        >>> store = MongoIntelligenceStore(db_manager.client, db_manager.database)
    """

    def __init__(self, client: AsyncIOMotorClient, database: AsyncIOMotorDatabase):
        self.client = client
        self.database = database
        self.contacts = ContactRepository(database)
        self.deals = DealRepository(database)
        self.activities = ActivityRepository(database)

    async def get_activity(self, activity_id: str) -> Optional[ActivityBase]:
        return await self.activities.find_by_id(activity_id)

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return await self.contacts.find_by_id(contact_id)

    async def get_contacts(self, contact_ids: List[str]) -> List[Contact]:
        return await self.contacts.find_by_ids(contact_ids)

    async def get_prospect_contacts(self, prospect_id: str) -> List[Contact]:
        return await self.contacts.find_by_prospect(prospect_id)

    async def get_deal(self, deal_id: str) -> Optional[Deal]:
        return await self.deals.find_by_id(deal_id)

    async def find_deals_for_contact(self, contact_id: str) -> List[Deal]:
        return await self.deals.find_by_contact(contact_id)

    async def find_activity_history(
        self,
        contact_ids: List[str],
        until: dt.datetime,
        limit: int = 200,
    ) -> List[ActivityBase]:
        return await self.activities.find_history(contact_ids, until, limit)

    async def find_deal_activities(self, deal: Deal) -> List[ActivityBase]:
        return await self.activities.find_for_deal(deal.id, deal.contact_ids, deal.prospect_id)

    async def _reset_deal(self, session: AsyncIOMotorClientSession, deal_id: str) -> None:
        if not await self.deals.reset_intelligence(deal_id, session=session):
            raise EntityNotFoundError(f"Deal {deal_id} not found")
        contacts = await self.contacts.clear_intelligence(deal_id, session=session)
        activities = await self.activities.remove_receipts(deal_id, session=session)
        logger.info(f"🧹 Deal {deal_id} reset: {contacts} contact records, receipts on {activities} activities")

    async def reset_deal_intelligence(self, deal_id: str) -> None:
        try:
            async with await self.client.start_session() as session:
                await session.with_transaction(lambda s: self._reset_deal(s, deal_id))
        except EntityNotFoundError:
            raise
        except PyMongoError as e:
            raise CommitError(f"Reset failed for deal {deal_id}: {e}") from e

    async def _write_batch(self, session: AsyncIOMotorClientSession, batch: CommitBatch) -> None:
        for contact in batch.contacts:
            deal_ids = batch.contact_deals.get(contact.id, [])
            if not deal_ids:
                continue
            saved = await self.contacts.save_intelligence(contact, deal_ids, contact.version, session=session)
            if not saved:
                raise ConcurrentModificationError(
                    f"Contact {contact.id} changed since version {contact.version}"
                )

        for deal in batch.deals:
            saved = await self.deals.save_intelligence(
                deal, deal.version, batch.intelligence_timestamp, session=session
            )
            if not saved:
                raise ConcurrentModificationError(
                    f"Deal {deal.id} changed since version {deal.version}"
                )

        await self.activities.add_receipts(batch.activity_id, batch.receipts, session=session)

    async def commit(self, batch: CommitBatch) -> None:
        if batch.is_empty:
            return

        logger.info(
            f"💾 Committing activity {batch.activity_id}: "
            f"{len(batch.contacts)} contacts, {len(batch.deals)} deals, {len(batch.receipts)} receipts"
        )

        try:
            async with await self.client.start_session() as session:
                await session.with_transaction(lambda s: self._write_batch(s, batch))
        except ConcurrentModificationError:
            raise
        except PyMongoError as e:
            raise CommitError(f"Transaction failed for activity {batch.activity_id}: {e}") from e
        except RuntimeError as e:
            raise CommitError(str(e)) from e

        logger.success(f"✅ Activity {batch.activity_id} committed")
