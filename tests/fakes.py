"""Test doubles shared across the suite."""
import datetime as dt

from deal_intel.models.analysis import (
    BehavioralSignals,
    DealNarrative,
    ImpactScore,
    ProposedIndicator,
    RelationshipStory,
    ResponsivenessAssessment,
    RoleProposal,
    ToneAssessment,
)
from deal_intel.models.base import Relevance
from deal_intel.models.intelligence import (
    CommunicationTone,
    ContactRole,
    MessageDepth,
    ResponsivenessStatus,
    SignalCategory,
)
from deal_intel.models.qualification import QualificationActions
from deal_intel.utils.inference_gateway import InferenceGateway, InferenceRequest

NOW = dt.datetime(2025, 3, 10, 15, 0, tzinfo=dt.UTC)

# Default output per schema when a test does not script a response
DEFAULT_OUTPUTS = {
    ImpactScore: ImpactScore(score=10, reasoning="Engaged reply asking about pricing."),
    RoleProposal: RoleProposal(role=ContactRole.CHAMPION, reasoning="Drives the evaluation internally."),
    BehavioralSignals: BehavioralSignals(signals=[
        ProposedIndicator(
            category=SignalCategory.INTEREST,
            text="Asked for pricing for 40 seats",
            relevance=Relevance.HIGH,
        ),
        ProposedIndicator(
            category=SignalCategory.MENTION,
            text="Mentioned the office move",
            relevance=Relevance.LOW,
        ),
    ]),
    ToneAssessment: ToneAssessment(tone=CommunicationTone.ENTHUSIASTIC, depth=MessageDepth.DEEP),
    ResponsivenessAssessment: ResponsivenessAssessment(
        status=ResponsivenessStatus.ENGAGED,
        summary="Replies within a day.",
    ),
    RelationshipStory: RelationshipStory(story="Ana is championing the rollout."),
    DealNarrative: DealNarrative(narrative="Evaluation is progressing with a strong champion."),
    QualificationActions: QualificationActions(),
}


class FakeGateway(InferenceGateway):
    """
    Scripted gateway. Responses are keyed by agent name and may be an output
    object, an exception to raise, or a callable taking the request.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requests = []

    def calls_for(self, agent_name):
        return [request for request in self.requests if request.agent_name == agent_name]

    async def generate(self, request: InferenceRequest):
        self.requests.append(request)
        response = self.responses.get(request.agent_name)
        if callable(response) and not isinstance(response, BaseException):
            response = response(request)
            if hasattr(response, "__await__"):
                response = await response
        if isinstance(response, BaseException):
            raise response
        if response is None:
            return DEFAULT_OUTPUTS[request.output_type]
        return response

