import json
from typing import Dict, List

from loguru import logger

from deal_intel.agents.prompts import AnyActivity, current_date_line, describe_deal
from deal_intel.config import Settings, get_settings
from deal_intel.models.activity import ActivitySummaryPayload
from deal_intel.models.deal import Deal
from deal_intel.models.qualification import QualificationActions, QualificationCategory
from deal_intel.utils.context_budget import truncate_to_tokens
from deal_intel.utils.inference_gateway import InferenceGateway, InferenceRequest

QUALIFICATION_INSTRUCTIONS = (
    "You maintain a deal's MEDDPICC knowledge base. You receive the current entries per category "
    "(metrics, economic_buyer, decision_criteria, decision_process, paper_process, identified_pain, "
    "champion, competition) and what was learned from one new activity. "
    "Propose actions per category: 'add' for genuinely new facts; 'update' to enrich or correct an "
    "existing entry (set prior_value to the existing entry's exact text when its text changes); "
    "'remove' for entries that are now wrong or duplicated (prior_value = exact existing text). "
    "To consolidate near-duplicates, remove the extras and update the survivor. "
    "value is the entry text: the metric, the person's name (economic_buyer, champion), the criterion, "
    "the process step, the pain, or the competitor. "
    "relevance: High when it bears directly on our solution, Medium for related context, Low otherwise. "
    "Propose nothing for categories with no new information."
)


class QualificationAgent:
    """
    Proposes add/update/remove actions for the deal's knowledge base from one activity.
    Failure leaves the knowledge base unchanged.
    """

    name = "QualificationAgent"

    def __init__(self, gateway: InferenceGateway, settings: Settings | None = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    def _prompt(
        self,
        deal: Deal,
        activity: AnyActivity,
        payload: ActivitySummaryPayload,
        summary_tokens: int,
    ) -> str:
        current = {
            category.value: [entry.key for entry in deal.qualification.entries(category)]
            for category in QualificationCategory
        }
        signals: Dict[str, List[dict]] = {
            category: [signal.model_dump(mode="json") for signal in items]
            for category, items in payload.qualification.items()
            if items
        }
        return f"""
        {current_date_line()}

        {describe_deal(deal)}

        CURRENT KNOWLEDGE BASE:
        {json.dumps(current, indent=2)}

        NEW ACTIVITY ({activity.kind} on {activity.date.date().isoformat()}):
        {truncate_to_tokens(payload.summary, summary_tokens)}

        EXTRACTED QUALIFICATION SIGNALS:
        {json.dumps(signals, indent=2) if signals else "(none)"}
        """

    async def propose(self, deal: Deal, activity: AnyActivity, payload: ActivitySummaryPayload) -> QualificationActions:
        result = await self.gateway.generate(InferenceRequest(
            agent_name=self.name,
            model=self.settings.qualification_model,
            instructions=QUALIFICATION_INSTRUCTIONS,
            prompt=self._prompt(deal, activity, payload, summary_tokens=4000),
            output_type=QualificationActions,
            degraded_prompt=self._prompt(deal, activity, payload, summary_tokens=1000),
        ))
        logger.success(f"Qualification actions proposed for {deal.id}: {result.total()}")
        return result

