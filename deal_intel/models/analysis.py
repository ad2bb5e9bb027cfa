"""
Output contracts for the per-contact analyzers and narrative generators.
Each inference call returns exactly one of these schemas, validated by PydanticAI.
"""
from dataclasses import dataclass, field
from typing import List, Optional
from pydantic import BaseModel, Field

from deal_intel.models.base import Confidence, Relevance
from deal_intel.models.intelligence import (
    CommunicationPattern,
    CommunicationTone,
    ContactRole,
    MessageDepth,
    ResponsivenessStatus,
    SignalCategory,
)


class ImpactScore(BaseModel):
    """The formal output contract for the Activity Impact Scorer."""
    score: int = Field(..., ge=-50, le=50, description="Engagement impact of this activity for this contact.")
    reasoning: str = Field(..., max_length=1000)


class ProposedIndicator(BaseModel):
    category: SignalCategory
    text: str
    confidence: Confidence = Confidence.MEDIUM
    relevance: Relevance
    reasoning: Optional[str] = None
    quote: Optional[str] = Field(default=None, description="Verbatim snippet from the activity.")


class BehavioralSignals(BaseModel):
    signals: List[ProposedIndicator] = Field(default_factory=list)


class ToneAssessment(BaseModel):
    tone: CommunicationTone
    depth: MessageDepth
    reasoning: Optional[str] = None


class ResponsivenessAssessment(BaseModel):
    status: ResponsivenessStatus
    summary: str = Field(..., max_length=1000)
    is_awaiting_response: bool = False
    active_responding_contact: Optional[str] = Field(
        default=None,
        description="Email of the new primary responder. Only when status is 'Handed Off'."
    )


class RoleProposal(BaseModel):
    role: ContactRole = ContactRole.UNINVOLVED
    reasoning: Optional[str] = None


class RelationshipStory(BaseModel):
    story: str = Field(..., max_length=4000)


class DealNarrative(BaseModel):
    narrative: str = Field(..., max_length=6000)


@dataclass
class ContactDelta:
    """
    Phase 1 output for one pair.
    Primary fields are always present; secondary ones are None when their analyzer failed.
    """
    impact: ImpactScore
    role: RoleProposal
    indicators: List[ProposedIndicator] = field(default_factory=list)
    pattern: Optional[CommunicationPattern] = None
    responsiveness: Optional[ResponsivenessAssessment] = None
