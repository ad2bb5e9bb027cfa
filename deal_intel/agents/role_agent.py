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
from deal_intel.models.analysis import RoleProposal
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal
from deal_intel.models.intelligence import ContactRole, RelationshipIntelligence
from deal_intel.utils.context_budget import ContextWindow
from deal_intel.utils.inference_gateway import InferenceGateway, InferenceRequest

ROLE_INSTRUCTIONS = (
    "You assign the buying-committee role of one prospect contact on a deal: "
    "Economic Buyer (controls budget and final approval), Champion (actively sells internally for us), "
    "Influencer (shapes the decision without owning it), User (will use the product day to day), "
    "Blocker (works against the deal), Decision Maker (formally signs off without owning budget), "
    "Other (involved but none of the above), Uninvolved (no evident participation). "
    "Use the activity and the contact's prior role. Keep the prior role unless the evidence changes it."
)


class RoleAssigner:
    """Buying-committee role of one contact. Primary analyzer: failure aborts the pair."""

    name = "RoleAssigner"

    def __init__(self, gateway: InferenceGateway, settings: Settings | None = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    def _prompt(
        self,
        contact: Contact,
        deal: Deal,
        activity: AnyActivity,
        record: RelationshipIntelligence,
        window: ContextWindow,
    ) -> str:
        prior = record.current_role or "none"
        return f"""
        {current_date_line()}

        CONTACT:
        {describe_contact(contact)}
        Prior role on this deal: {prior}

        DEAL:
        {describe_deal(deal)}

        ACTIVITY:
        {describe_activity(activity, window)}
        """

    async def assign(
        self,
        contact: Contact,
        deal: Deal,
        activity: AnyActivity,
        record: RelationshipIntelligence,
    ) -> RoleProposal:
        """
        Propose the contact's role on the deal after this activity.

        A contact who did not take part keeps the prior role without an
        inference call; with no prior role the proposal is Uninvolved.
        """
        if not contact_participated(contact, activity):
            role = record.current_role or ContactRole.UNINVOLVED
            return RoleProposal(role=role, reasoning="Contact did not participate in this activity.")

        result = await self.gateway.generate(InferenceRequest(
            agent_name=self.name,
            model=self.settings.role_model,
            instructions=ROLE_INSTRUCTIONS,
            prompt=self._prompt(contact, deal, activity, record, ContextWindow.normal(self.settings)),
            output_type=RoleProposal,
            degraded_prompt=self._prompt(contact, deal, activity, record, ContextWindow.emergency(self.settings)),
        ))

        logger.success(f"Role for {contact.id}: {result.role}")
        return result
