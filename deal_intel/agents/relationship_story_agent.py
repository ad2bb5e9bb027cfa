import json

from loguru import logger

from deal_intel.agents.prompts import current_date_line, describe_contact, describe_deal
from deal_intel.config import Settings, get_settings
from deal_intel.core.intelligence_application import story_window
from deal_intel.models.analysis import RelationshipStory
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal
from deal_intel.models.intelligence import RelationshipIntelligence
from deal_intel.utils.inference_gateway import InferenceGateway, InferenceRequest

STORY_INSTRUCTIONS = (
    "You write a short narrative (one paragraph, under 150 words) of how the seller's relationship "
    "with one prospect contact has evolved on a deal: engagement trajectory, role, notable signals, "
    "and current responsiveness. Be factual, use only the supplied data, no headings."
)


class RelationshipNarrativeGenerator:
    """Current relationship story for one contact on one deal. Failure keeps the prior story."""

    name = "RelationshipNarrativeGenerator"

    def __init__(self, gateway: InferenceGateway, settings: Settings | None = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    def _prompt(self, contact: Contact, deal: Deal, record: RelationshipIntelligence, scale: int = 1) -> str:
        window = story_window(
            record,
            scores=self.settings.story_score_window // scale,
            responsiveness=self.settings.story_responsiveness_window // scale,
            signals=self.settings.story_signal_window // scale,
        )
        data = window.model_dump(mode="json", exclude={"relationship_story"})
        return f"""
        {current_date_line()}

        CONTACT:
        {describe_contact(contact)}

        DEAL:
        {describe_deal(deal)}

        PREVIOUS STORY:
        {record.relationship_story or "(none)"}

        RELATIONSHIP INTELLIGENCE (recent):
        {json.dumps(data, indent=2)}
        """

    async def generate(self, contact: Contact, deal: Deal, record: RelationshipIntelligence) -> str:
        result = await self.gateway.generate(InferenceRequest(
            agent_name=self.name,
            model=self.settings.narrative_model,
            instructions=STORY_INSTRUCTIONS,
            prompt=self._prompt(contact, deal, record),
            output_type=RelationshipStory,
            degraded_prompt=self._prompt(contact, deal, record, scale=2),
        ))
        logger.success(f"Relationship story regenerated for {contact.id}")
        return result.story
