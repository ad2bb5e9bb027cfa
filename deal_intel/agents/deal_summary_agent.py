import json
from typing import Sequence, Tuple

from loguru import logger

from deal_intel.agents.prompts import current_date_line, describe_deal
from deal_intel.config import Settings, get_settings
from deal_intel.core.deal_health import DealHealthUpdate
from deal_intel.models.analysis import DealNarrative
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal
from deal_intel.models.intelligence import RelationshipIntelligence
from deal_intel.models.qualification import QualificationCategory
from deal_intel.utils.context_budget import truncate_to_tokens
from deal_intel.utils.inference_gateway import InferenceGateway, InferenceRequest

DEAL_SUMMARY_INSTRUCTIONS = (
    "You write an executive summary of a B2B deal for the seller's leadership: where it stands, "
    "who matters on the buying side and how engaged they are, what is known about metrics, "
    "buyer, criteria, process, pain, champion and competition, and the main risks. "
    "Two or three short paragraphs, factual, using only the supplied data."
)


class DealNarrativeGenerator:
    """Deal-level executive summary. Failure keeps the prior narrative."""

    name = "DealNarrativeGenerator"

    def __init__(self, gateway: InferenceGateway, settings: Settings | None = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    def _prompt(
        self,
        deal: Deal,
        stakeholders: Sequence[Tuple[Contact, RelationshipIntelligence]],
        health: DealHealthUpdate,
        story_tokens: int,
    ) -> str:
        people = [
            {
                "name": contact.display_name,
                "title": contact.title,
                "role": record.current_role,
                "engagement_score": record.engagement_score,
                "responsiveness": record.latest_responsiveness.status if record.latest_responsiveness else None,
                "story": truncate_to_tokens(record.relationship_story or "", story_tokens),
            }
            for contact, record in stakeholders
        ]
        knowledge = {
            category.value: [
                {"value": entry.key, "confidence": entry.confidence, "relevance": entry.relevance}
                for entry in deal.qualification.entries(category)
            ]
            for category in QualificationCategory
        }
        return f"""
        {current_date_line()}

        {describe_deal(deal)}
        Temperature: {health.temperature}/100 | Trend: {health.trend} | Momentum: {health.momentum_direction}

        STAKEHOLDERS:
        {json.dumps(people, indent=2, default=str)}

        QUALIFICATION KNOWLEDGE:
        {json.dumps(knowledge, indent=2)}

        PREVIOUS SUMMARY:
        {truncate_to_tokens(deal.latest_deal_narrative or "(none)", story_tokens * 2)}
        """

    async def generate(
        self,
        deal: Deal,
        stakeholders: Sequence[Tuple[Contact, RelationshipIntelligence]],
        health: DealHealthUpdate,
    ) -> str:
        result = await self.gateway.generate(InferenceRequest(
            agent_name=self.name,
            model=self.settings.deal_summary_model,
            instructions=DEAL_SUMMARY_INSTRUCTIONS,
            prompt=self._prompt(deal, stakeholders, health, story_tokens=400),
            output_type=DealNarrative,
            degraded_prompt=self._prompt(deal, stakeholders, health, story_tokens=120),
        ))
        logger.success(f"Deal narrative regenerated for {deal.id}")
        return result.narrative
