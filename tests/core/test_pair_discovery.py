"""
Tests for pair discovery
Deal attribution per contact, prospect fallback and receipt-based skipping.
"""
import datetime as dt
import pytest

from deal_intel.core.pair_discovery import Pair, discover_pairs, select_deal
from deal_intel.models.activity import ProcessingReceipt
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal, PipelineStage
from tests.fakes import NOW

CLOSED_WON = PipelineStage(name="Closed Won", is_closed_won=True)
CLOSED_LOST = PipelineStage(name="Closed Lost", is_closed_lost=True)


def deal(deal_id, days_ago, stage=None, contact_ids=()):
    return Deal(
        id=deal_id,
        name=deal_id,
        stage=stage or PipelineStage(name="Discovery"),
        contact_ids=list(contact_ids),
        updated_at=NOW - dt.timedelta(days=days_ago),
    )


class TestSelectDeal:

    def test_no_deals(self):
        assert select_deal([]) is None

    def test_single_open_deal_wins_over_newer_closed(self):
        deals = [deal("closed", 0, CLOSED_WON), deal("open", 30)]
        assert select_deal(deals).id == "open"

    def test_most_recent_open_deal(self):
        deals = [deal("old", 10), deal("new", 1), deal("closed", 0, CLOSED_LOST)]
        assert select_deal(deals).id == "new"

    def test_falls_back_to_most_recent_closed(self):
        deals = [deal("lost", 5, CLOSED_LOST), deal("won", 2, CLOSED_WON)]
        assert select_deal(deals).id == "won"


@pytest.mark.asyncio
class TestDiscoverPairs:

    async def test_every_linked_contact_gets_a_pair(self, store, email_activity):
        pairs = await discover_pairs(email_activity, store)

        assert pairs == [
            Pair(contact_id="contact-ana", deal_id="deal-acme"),
            Pair(contact_id="contact-ben", deal_id="deal-acme"),
        ]

    async def test_receipts_skip_processed_pairs(self, store, email_activity):
        activity = email_activity.model_copy(update={
            "processed_for": [ProcessingReceipt(contact_id="contact-ana", deal_id="deal-acme")],
        })

        pairs = await discover_pairs(activity, store)

        assert pairs == [Pair(contact_id="contact-ben", deal_id="deal-acme")]

    async def test_prospect_contacts_used_when_none_linked(self, store, email_activity):
        activity = email_activity.model_copy(update={"contact_ids": []})

        pairs = await discover_pairs(activity, store)

        assert {pair.contact_id for pair in pairs} == {"contact-ana", "contact-ben"}

    async def test_no_contacts_no_pairs(self, store, email_activity):
        activity = email_activity.model_copy(update={"contact_ids": [], "prospect_id": None})

        assert await discover_pairs(activity, store) == []

    async def test_contact_without_deal_is_skipped(self, store, email_activity):
        store.add_contact(Contact(id="contact-cara", emails=["cara@acme.com"]))
        activity = email_activity.model_copy(update={"contact_ids": ["contact-ana", "contact-cara"]})

        pairs = await discover_pairs(activity, store)

        assert pairs == [Pair(contact_id="contact-ana", deal_id="deal-acme")]

    async def test_explicit_deal_overrides_attribution(self, store, email_activity):
        store.add_deal(deal("deal-expansion", 0, contact_ids=["contact-ana"]))
        activity = email_activity.model_copy(update={
            "contact_ids": ["contact-ana"],
            "deal_id": "deal-expansion",
        })

        pairs = await discover_pairs(activity, store)

        assert pairs == [Pair(contact_id="contact-ana", deal_id="deal-expansion")]

    async def test_attribution_prefers_single_open_deal(self, store, email_activity):
        store.add_deal(deal("deal-renewal", 0, CLOSED_WON, contact_ids=["contact-ana"]))
        activity = email_activity.model_copy(update={"contact_ids": ["contact-ana"]})

        pairs = await discover_pairs(activity, store)

        assert pairs == [Pair(contact_id="contact-ana", deal_id="deal-acme")]
