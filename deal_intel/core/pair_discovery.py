"""
Pair Discovery
Decides which (contact, deal) pairs an activity updates.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence

from loguru import logger

from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal


@dataclass(frozen=True)
class Pair:
    contact_id: str
    deal_id: str


def select_deal(deals: Sequence[Deal]) -> Optional[Deal]:
    """
    Pick the one deal an activity is attributed to for a contact.

    Precedence:
        1. Exactly one open deal: use it
        2. Several open deals: the most recently updated
        3. No open deals: the most recently updated closed deal
    """
    if not deals:
        return None

    open_deals = [deal for deal in deals if not deal.is_closed]
    if len(open_deals) == 1:
        return open_deals[0]
    candidates = open_deals or list(deals)
    return max(candidates, key=lambda deal: deal.updated_at)


async def discover_pairs(activity, store) -> List[Pair]:
    """
    Resolve the activity's contacts and attribute each to a single deal.
    Pairs that already carry a receipt on this activity are dropped.

    Args:
        activity: The activity being processed
        store: IntelligenceStore used to resolve contacts and deals

    Returns:
        Unprocessed pairs; empty when there is nothing to do
    """
    contacts: List[Contact]
    if activity.contact_ids:
        contacts = await store.get_contacts(activity.contact_ids)
    elif activity.prospect_id:
        contacts = await store.get_prospect_contacts(activity.prospect_id)
    else:
        contacts = []

    if not contacts:
        logger.info(f"No contacts linked to activity {activity.id}")
        return []

    pairs: List[Pair] = []
    for contact in contacts:
        if activity.deal_id:
            deal = await store.get_deal(activity.deal_id)
        else:
            deal = select_deal(await store.find_deals_for_contact(contact.id))

        if deal is None:
            logger.debug(f"Contact {contact.id} has no deal, skipping")
            continue

        if activity.has_receipt(contact.id, deal.id):
            logger.debug(f"Pair ({contact.id}, {deal.id}) already processed for activity {activity.id}")
            continue

        pairs.append(Pair(contact_id=contact.id, deal_id=deal.id))

    return pairs
