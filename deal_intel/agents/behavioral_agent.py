from typing import List

from loguru import logger

from deal_intel.agents.prompts import (
    AnyActivity,
    contact_participated,
    current_date_line,
    describe_activity,
    describe_contact,
    describe_deal,
)
from deal_intel.config import Settings, get_settings
from deal_intel.models.analysis import BehavioralSignals, ProposedIndicator
from deal_intel.models.base import Relevance
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal
from deal_intel.utils.context_budget import ContextWindow
from deal_intel.utils.inference_gateway import InferenceGateway, InferenceRequest

BEHAVIORAL_INSTRUCTIONS = (
    "You extract behavioral signals shown by one prospect contact in a sales activity. "
    "Each signal has a category (Interest, Disinterest, Question, Mention, Risk, Action), "
    "a one-sentence text, confidence, a verbatim quote, and relevance. "
    "Relevance measures how directly the signal relates to the seller's own solution: "
    "High for direct statements about it, Medium for related business context, Low for anything incidental. "
    "Only report what this contact said or did. Return an empty list when nothing applies."
)


class BehavioralSignalExtractor:
    """Extracts behavioral indicators for one contact. Low relevance is dropped here and again on apply."""

    name = "BehavioralSignalExtractor"

    def __init__(self, gateway: InferenceGateway, settings: Settings | None = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    def _prompt(self, contact: Contact, deal: Deal, activity: AnyActivity, window: ContextWindow) -> str:
        return f"""
        {current_date_line()}

        CONTACT:
        {describe_contact(contact)}

        DEAL:
        {describe_deal(deal)}

        ACTIVITY:
        {describe_activity(activity, window)}
        """

    async def extract(self, contact: Contact, deal: Deal, activity: AnyActivity) -> List[ProposedIndicator]:
        if not contact_participated(contact, activity):
            return []

        result = await self.gateway.generate(InferenceRequest(
            agent_name=self.name,
            model=self.settings.behavioral_model,
            instructions=BEHAVIORAL_INSTRUCTIONS,
            prompt=self._prompt(contact, deal, activity, ContextWindow.normal(self.settings)),
            output_type=BehavioralSignals,
            degraded_prompt=self._prompt(contact, deal, activity, ContextWindow.emergency(self.settings)),
        ))

        kept = [signal for signal in result.signals if signal.relevance != Relevance.LOW]
        dropped = len(result.signals) - len(kept)
        if dropped:
            logger.debug(f"Dropped {dropped} low-relevance signals for {contact.id}")

        logger.success(f"Extracted {len(kept)} behavioral signals for {contact.id}")
        return kept
