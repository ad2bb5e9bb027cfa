"""
In-Memory Intelligence Store

Dict-backed store for tests and dry runs. Data is lost on restart.
Commits are all-or-nothing: every version check passes before anything is written.
"""
import asyncio
from typing import Dict, List, Optional
import datetime as dt

from .deals import INTELLIGENCE_FIELDS
from .store import CommitBatch, IntelligenceStore
from ..core.errors import CommitError, ConcurrentModificationError, EntityNotFoundError
from ..models.activity import ActivityBase
from ..models.base import as_utc
from ..models.contact import Contact
from ..models.deal import Deal


class InMemoryIntelligenceStore(IntelligenceStore):
    """
    In-memory store implementation.

    Suitable for:
    - Testing
    - Local dry runs of the pipeline

    Not suitable for:
    - Anything that needs durability or more than one process
    """

    def __init__(self):
        self.contacts: Dict[str, Contact] = {}
        self.deals: Dict[str, Deal] = {}
        self.activities: Dict[str, ActivityBase] = {}
        self.commit_count = 0
        self._lock = asyncio.Lock()
        # Raised by the next commit, then cleared (failure injection for tests)
        self.fail_next_commit: Optional[Exception] = None

    # Seeding helpers
    def add_contact(self, contact: Contact) -> Contact:
        self.contacts[contact.id] = contact.model_copy(deep=True)
        return contact

    def add_deal(self, deal: Deal) -> Deal:
        self.deals[deal.id] = deal.model_copy(deep=True)
        return deal

    def add_activity(self, activity: ActivityBase) -> ActivityBase:
        self.activities[activity.id] = activity.model_copy(deep=True)
        return activity

    async def get_activity(self, activity_id: str) -> Optional[ActivityBase]:
        activity = self.activities.get(activity_id)
        return activity.model_copy(deep=True) if activity else None

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        contact = self.contacts.get(contact_id)
        return contact.model_copy(deep=True) if contact else None

    async def get_contacts(self, contact_ids: List[str]) -> List[Contact]:
        return [
            self.contacts[contact_id].model_copy(deep=True)
            for contact_id in contact_ids
            if contact_id in self.contacts
        ]

    async def get_prospect_contacts(self, prospect_id: str) -> List[Contact]:
        return [
            contact.model_copy(deep=True)
            for contact in self.contacts.values()
            if contact.prospect_id == prospect_id
        ]

    async def get_deal(self, deal_id: str) -> Optional[Deal]:
        deal = self.deals.get(deal_id)
        return deal.model_copy(deep=True) if deal else None

    async def find_deals_for_contact(self, contact_id: str) -> List[Deal]:
        matches = [deal for deal in self.deals.values() if contact_id in deal.contact_ids]
        matches.sort(key=lambda deal: deal.updated_at, reverse=True)
        return [deal.model_copy(deep=True) for deal in matches]

    async def find_activity_history(
        self,
        contact_ids: List[str],
        until: dt.datetime,
        limit: int = 200,
    ) -> List[ActivityBase]:
        wanted = set(contact_ids)
        until = as_utc(until)
        matches = [
            activity for activity in self.activities.values()
            if wanted.intersection(activity.contact_ids) and as_utc(activity.date) <= until
        ]
        matches.sort(key=lambda activity: as_utc(activity.date), reverse=True)
        return [activity.model_copy(deep=True) for activity in matches[:limit]]

    async def find_deal_activities(self, deal: Deal) -> List[ActivityBase]:
        contact_ids = set(deal.contact_ids)
        matches = [
            activity for activity in self.activities.values()
            if activity.deal_id == deal.id
            or contact_ids.intersection(activity.contact_ids)
            or (deal.prospect_id and not activity.contact_ids and activity.prospect_id == deal.prospect_id)
        ]
        matches.sort(key=lambda activity: as_utc(activity.date))
        return [activity.model_copy(deep=True) for activity in matches]

    async def reset_deal_intelligence(self, deal_id: str) -> None:
        async with self._lock:
            if self.fail_next_commit is not None:
                error, self.fail_next_commit = self.fail_next_commit, None
                raise CommitError(f"Reset failed for deal {deal_id}: {error}") from error

            stored = self.deals.get(deal_id)
            if stored is None:
                raise EntityNotFoundError(f"Deal {deal_id} not found")

            now = dt.datetime.now(dt.UTC)
            blank = Deal(name=stored.name)
            update = {name: getattr(blank, name) for name in INTELLIGENCE_FIELDS}
            update["last_intelligence_update"] = None
            update["version"] = stored.version + 1
            update["updated_at"] = now
            self.deals[deal_id] = stored.model_copy(update=update, deep=True)

            for contact_id, contact in list(self.contacts.items()):
                if deal_id not in contact.relationship_intelligence:
                    continue
                records = dict(contact.relationship_intelligence)
                del records[deal_id]
                self.contacts[contact_id] = contact.model_copy(update={
                    "relationship_intelligence": records,
                    "version": contact.version + 1,
                    "updated_at": now,
                })

            for activity_id, activity in list(self.activities.items()):
                receipts = [r for r in activity.processed_for if r.deal_id != deal_id]
                if len(receipts) != len(activity.processed_for):
                    self.activities[activity_id] = activity.model_copy(update={"processed_for": receipts})

    def _check_versions(self, batch: CommitBatch) -> None:
        for contact in batch.contacts:
            stored = self.contacts.get(contact.id)
            if stored is None:
                raise CommitError(f"Contact {contact.id} not found")
            if stored.version != contact.version:
                raise ConcurrentModificationError(
                    f"Contact {contact.id} changed since version {contact.version}"
                )
        for deal in batch.deals:
            stored = self.deals.get(deal.id)
            if stored is None:
                raise CommitError(f"Deal {deal.id} not found")
            if stored.version != deal.version:
                raise ConcurrentModificationError(
                    f"Deal {deal.id} changed since version {deal.version}"
                )
        if batch.activity_id not in self.activities:
            raise CommitError(f"Activity {batch.activity_id} not found")

    async def commit(self, batch: CommitBatch) -> None:
        if batch.is_empty:
            return

        async with self._lock:
            if self.fail_next_commit is not None:
                error, self.fail_next_commit = self.fail_next_commit, None
                raise CommitError(f"Commit failed for activity {batch.activity_id}: {error}") from error

            self._check_versions(batch)

            now = dt.datetime.now(dt.UTC)

            for contact in batch.contacts:
                stored = self.contacts[contact.id]
                records = dict(stored.relationship_intelligence)
                for deal_id in batch.contact_deals.get(contact.id, []):
                    records[deal_id] = contact.relationship_intelligence[deal_id].model_copy(deep=True)
                self.contacts[contact.id] = stored.model_copy(update={
                    "relationship_intelligence": records,
                    "version": stored.version + 1,
                    "updated_at": now,
                })

            for deal in batch.deals:
                stored = self.deals[deal.id]
                update = {name: getattr(deal, name) for name in INTELLIGENCE_FIELDS}
                previous = stored.last_intelligence_update
                timestamp = as_utc(batch.intelligence_timestamp)
                update["last_intelligence_update"] = (
                    max(as_utc(previous), timestamp) if previous else timestamp
                )
                update["version"] = stored.version + 1
                update["updated_at"] = now
                self.deals[deal.id] = stored.model_copy(update=update, deep=True)

            activity = self.activities[batch.activity_id]
            receipts = list(activity.processed_for)
            seen = {(r.contact_id, r.deal_id) for r in receipts}
            for receipt in batch.receipts:
                if (receipt.contact_id, receipt.deal_id) not in seen:
                    seen.add((receipt.contact_id, receipt.deal_id))
                    receipts.append(receipt)
            self.activities[batch.activity_id] = activity.model_copy(update={"processed_for": receipts})

            self.commit_count += 1
