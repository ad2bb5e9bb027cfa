from typing import Optional, Sequence

from loguru import logger

from deal_intel.agents.prompts import AnyActivity, current_date_line, describe_contact, describe_deal
from deal_intel.config import Settings, get_settings
from deal_intel.models.analysis import ResponsivenessAssessment
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal
from deal_intel.models.intelligence import ResponsivenessStatus
from deal_intel.utils.context_budget import ContextWindow, render_history
from deal_intel.utils.inference_gateway import InferenceGateway, InferenceRequest

RESPONSIVENESS_INSTRUCTIONS = (
    "You assess how responsive one prospect contact is in an ongoing sales conversation, "
    "using the chronological email and meeting history. Choose exactly one status: "
    "Ghosting (repeatedly not replying to the seller), Delayed (replies, but slowly), "
    "Engaged (timely, substantive replies), OOO (out of office or on leave), "
    "Handed Off (explicitly delegated to a colleague; give that colleague's email as active_responding_contact), "
    "Disengaged (replies but has lost interest), Uninvolved (not part of this conversation). "
    "Set is_awaiting_response when the seller's last message to this contact is still unanswered. "
    "Summarize the evidence in one or two sentences."
)


class ResponsivenessClassifier:
    """
    Responsiveness state of one contact from recent history.
    Secondary analyzer: failure omits the entry.
    """

    name = "ResponsivenessClassifier"

    def __init__(self, gateway: InferenceGateway, settings: Settings | None = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    def _prompt(self, contact: Contact, deal: Deal, history: Sequence[AnyActivity], window: ContextWindow) -> str:
        return f"""
        {current_date_line()}

        CONTACT BEING ASSESSED:
        {describe_contact(contact)}

        DEAL:
        {describe_deal(deal)}

        HISTORY (oldest first):
        {render_history(history, window)}
        """

    async def classify(
        self,
        contact: Contact,
        deal: Deal,
        history: Sequence[AnyActivity],
    ) -> Optional[ResponsivenessAssessment]:
        if not history:
            logger.debug(f"No history for {contact.id}, skipping responsiveness")
            return None

        result = await self.gateway.generate(InferenceRequest(
            agent_name=self.name,
            model=self.settings.responsiveness_model,
            instructions=RESPONSIVENESS_INSTRUCTIONS,
            prompt=self._prompt(contact, deal, history, ContextWindow.normal(self.settings)),
            output_type=ResponsivenessAssessment,
            degraded_prompt=self._prompt(contact, deal, history, ContextWindow.emergency(self.settings)),
        ))

        if result.status != ResponsivenessStatus.HANDED_OFF and result.active_responding_contact:
            result = result.model_copy(update={"active_responding_contact": None})

        logger.success(f"Responsiveness for {contact.id}: {result.status}")
        return result
