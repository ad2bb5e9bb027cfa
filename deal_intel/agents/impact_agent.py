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
from deal_intel.models.analysis import ImpactScore
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal
from deal_intel.utils.context_budget import ContextWindow
from deal_intel.utils.inference_gateway import InferenceGateway, InferenceRequest

IMPACT_INSTRUCTIONS = (
    "You score how one sales activity changes a single prospect contact's engagement with the deal. "
    "Return an integer score and short reasoning. Calibration: "
    "strong positive buying signal (asks for pricing, proposal, next meeting, brings in stakeholders) +15 to +25; "
    "mild positive (engaged reply, useful questions) +3 to +8; "
    "neutral or automated content 0 to +3; "
    "mild negative (slow, vague, pushing back) -8 to 0; "
    "strong negative or explicit disinterest -15 to 0. "
    "If the contact did not take part in the activity, return 0. "
    "If the activity is seller-to-prospect only, return 0 unless the outbound message itself shows "
    "prospect inactivity (for example a second follow-up with no reply), which is mildly negative."
)


class ActivityImpactScorer:
    """
    Scores the engagement impact of an activity for one contact on one deal.
    Primary analyzer: failure aborts the pair.
    """

    name = "ActivityImpactScorer"

    def __init__(self, gateway: InferenceGateway, settings: Settings | None = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    def _prompt(self, contact: Contact, deal: Deal, activity: AnyActivity, window: ContextWindow) -> str:
        return f"""
        {current_date_line()}

        CONTACT BEING SCORED:
        {describe_contact(contact)}

        DEAL:
        {describe_deal(deal)}

        ACTIVITY:
        {describe_activity(activity, window)}
        """

    async def score(self, contact: Contact, deal: Deal, activity: AnyActivity) -> ImpactScore:
        if not contact_participated(contact, activity):
            logger.debug(f"Contact {contact.id} did not participate in {activity.id}, impact 0")
            return ImpactScore(score=0, reasoning="Contact did not participate in this activity.")

        result = await self.gateway.generate(InferenceRequest(
            agent_name=self.name,
            model=self.settings.impact_model,
            instructions=IMPACT_INSTRUCTIONS,
            prompt=self._prompt(contact, deal, activity, ContextWindow.normal(self.settings)),
            output_type=ImpactScore,
            degraded_prompt=self._prompt(contact, deal, activity, ContextWindow.emergency(self.settings)),
        ))

        logger.success(f"Impact scored for {contact.id}: {result.score:+d}")
        return result
