"""
Intelligence Store Interface
Everything the pipeline reads and the all-or-nothing writes it performs.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import datetime as dt

from ..models.activity import ActivityBase, ProcessingReceipt
from ..models.base import as_utc, utc_now
from ..models.contact import Contact
from ..models.deal import Deal


@dataclass
class CommitBatch:
    """
    Everything one activity produced, written in one transaction.

    Attributes:
        activity_id: Activity receiving the receipts
        intelligence_timestamp: Value folded into each deal's last_intelligence_update
        contacts: Updated contact snapshots (one per contact, however many deals touched it)
        contact_deals: For each contact id, the deals whose records changed
        deals: Updated deal snapshots
        receipts: One per successfully processed pair
    """
    activity_id: str
    intelligence_timestamp: dt.datetime
    contacts: List[Contact] = field(default_factory=list)
    contact_deals: Dict[str, List[str]] = field(default_factory=dict)
    deals: List[Deal] = field(default_factory=list)
    receipts: List[ProcessingReceipt] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.receipts


def intelligence_timestamp(activity: ActivityBase, now: Optional[dt.datetime] = None) -> dt.datetime:
    """
    Timestamp an activity contributes to last_intelligence_update.

    Meetings use their start time. A future-dated activity falls back to when it
    was received, and the result is never later than now.
    """
    now = as_utc(now or utc_now())
    when = getattr(activity, "start_time", None) or activity.date
    when = as_utc(when)
    if when > now and activity.received_at:
        when = as_utc(activity.received_at)
    return min(when, now)


class IntelligenceStore(ABC):
    """
    Storage contract for the pipeline.

    Reads return independent copies; callers may treat them as private snapshots.
    """

    @abstractmethod
    async def get_activity(self, activity_id: str) -> Optional[ActivityBase]:
        pass

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        pass

    @abstractmethod
    async def get_contacts(self, contact_ids: List[str]) -> List[Contact]:
        pass

    @abstractmethod
    async def get_prospect_contacts(self, prospect_id: str) -> List[Contact]:
        pass

    @abstractmethod
    async def get_deal(self, deal_id: str) -> Optional[Deal]:
        pass

    @abstractmethod
    async def find_deals_for_contact(self, contact_id: str) -> List[Deal]:
        pass

    @abstractmethod
    async def find_activity_history(
        self,
        contact_ids: List[str],
        until: dt.datetime,
        limit: int = 200,
    ) -> List[ActivityBase]:
        """Activities involving any of the contacts, dated at or before `until`, newest first."""
        pass

    @abstractmethod
    async def commit(self, batch: CommitBatch) -> None:
        """
        Persist the batch atomically.

        Raises:
            ConcurrentModificationError: An entity changed since it was loaded
            CommitError: Any other persistence failure; nothing was written
        """
        pass

    @abstractmethod
    async def find_deal_activities(self, deal: Deal) -> List[ActivityBase]:
        """
        Activities attributable to the deal, oldest first: those pinned to it,
        those involving its contacts and contact-less activities on its prospect.
        """
        pass

    @abstractmethod
    async def reset_deal_intelligence(self, deal_id: str) -> None:
        """
        Clear everything the pipeline derived for a deal, atomically.

        The deal's pipeline-owned fields and last_intelligence_update return to
        their defaults, every contact loses its record for the deal and every
        activity loses its receipts for the deal. Versions are bumped, so a
        commit built on the old state fails its version check.

        Raises:
            EntityNotFoundError: The deal does not exist
            CommitError: The write failed; nothing was cleared
        """
        pass
