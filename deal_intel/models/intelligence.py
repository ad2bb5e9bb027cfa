# deal_intel/models/intelligence.py
import datetime as dt
from enum import StrEnum
from typing import Annotated, List, Optional
from pydantic import BaseModel, Field, field_validator

from deal_intel.models.base import Confidence, Relevance, utc_now


class SignalCategory(StrEnum):
    INTEREST = "Interest"
    DISINTEREST = "Disinterest"
    QUESTION = "Question"
    MENTION = "Mention"
    RISK = "Risk"
    ACTION = "Action"


class ContactRole(StrEnum):
    ECONOMIC_BUYER = "Economic Buyer"
    CHAMPION = "Champion"
    INFLUENCER = "Influencer"
    USER = "User"
    BLOCKER = "Blocker"
    DECISION_MAKER = "Decision Maker"
    OTHER = "Other"
    UNINVOLVED = "Uninvolved"


class ResponsivenessStatus(StrEnum):
    GHOSTING = "Ghosting"
    DELAYED = "Delayed"
    ENGAGED = "Engaged"
    OOO = "OOO"
    HANDED_OFF = "Handed Off"
    DISENGAGED = "Disengaged"
    UNINVOLVED = "Uninvolved"


class CommunicationTone(StrEnum):
    FORMAL = "Formal"
    INFORMAL = "Informal"
    ENTHUSIASTIC = "Enthusiastic"
    HESITANT = "Hesitant"
    CONCERNED = "Concerned"
    NEUTRAL = "Neutral"


class MessageDepth(StrEnum):
    DEEP = "Deep"
    MEDIUM = "Medium"
    SHALLOW = "Shallow"


SCORE_MIN = -50
SCORE_MAX = 50

EngagementScore = Annotated[int, Field(ge=SCORE_MIN, le=SCORE_MAX)]


class ScoreEntry(BaseModel):
    """One step of the engagement trajectory."""
    score: EngagementScore
    delta: int = Field(..., description="Raw proposed impact, before clamping.")
    date: dt.datetime
    source_activity: str
    reasoning: str = ""


class BehavioralIndicator(BaseModel):
    text: str
    category: SignalCategory
    confidence: Confidence = Confidence.MEDIUM
    relevance: Relevance
    date: dt.datetime
    source_activity: str
    quote: Optional[str] = None

    @field_validator("relevance")
    @classmethod
    def reject_low_relevance(cls, value: Relevance) -> Relevance:
        if value == Relevance.LOW:
            raise ValueError("Low-relevance indicators are never persisted")
        return value


class CommunicationPattern(BaseModel):
    tone: Optional[CommunicationTone] = None
    depth: Optional[MessageDepth] = None
    response_speed_hours: Optional[float] = None
    # None when the seller never initiated but the contact did (unbounded ratio)
    initiation_ratio: Optional[float] = None
    analyzed_at: dt.datetime = Field(default_factory=utc_now)


class RoleAssignment(BaseModel):
    role: ContactRole
    assigned_at: dt.datetime = Field(default_factory=utc_now)
    reasoning: Optional[str] = None


class ResponsivenessEntry(BaseModel):
    status: ResponsivenessStatus
    summary: str
    is_awaiting_response: bool = False
    active_responding_contact: Optional[str] = None
    analyzed_at: dt.datetime = Field(default_factory=utc_now)


class RelationshipIntelligence(BaseModel):
    """
    Everything learned about one contact in the context of one deal.
    Lists are append-only; relationship_story is overwritten on each update.
    """
    deal_id: str
    engagement_score: EngagementScore = 0
    score_history: List[ScoreEntry] = Field(default_factory=list)
    behavioral_indicators: List[BehavioralIndicator] = Field(default_factory=list)
    communication_patterns: List[CommunicationPattern] = Field(default_factory=list)
    role_assignments: List[RoleAssignment] = Field(default_factory=list)
    responsiveness: List[ResponsivenessEntry] = Field(default_factory=list)
    relationship_story: Optional[str] = None

    @property
    def current_role(self) -> Optional[ContactRole]:
        return self.role_assignments[-1].role if self.role_assignments else None

    @property
    def latest_responsiveness(self) -> Optional[ResponsivenessEntry]:
        return self.responsiveness[-1] if self.responsiveness else None
