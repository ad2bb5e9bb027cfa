import datetime as dt
from enum import StrEnum
from typing import List, Optional
from pydantic import BaseModel, Field, computed_field

from deal_intel.models.base import MongoBaseModel, utc_now
from deal_intel.models.qualification import QualificationKnowledgeBase


class DealHealthTrend(StrEnum):
    IMPROVING = "Improving"
    DECLINING = "Declining"
    STABLE = "Stable"


class MomentumDirection(StrEnum):
    ACCELERATING = "Accelerating"
    DECELERATING = "Decelerating"
    STABLE = "Stable"


class PipelineStage(BaseModel):
    name: str
    is_closed_won: bool = False
    is_closed_lost: bool = False


class TemperatureEntry(BaseModel):
    temperature: int = Field(..., ge=0, le=100)
    momentum: float = 0.0
    trend: DealHealthTrend = DealHealthTrend.STABLE
    recorded_at: dt.datetime = Field(default_factory=utc_now)
    source_activity: Optional[str] = None


class NarrativeEntry(BaseModel):
    narrative: str
    generated_at: dt.datetime = Field(default_factory=utc_now)
    source_activity: Optional[str] = None


class Deal(MongoBaseModel):
    """
    The commercial opportunity.
    Owns the qualification knowledge base and the aggregate health history.
    """
    name: str
    prospect_id: Optional[str] = None
    stage: PipelineStage = Field(default_factory=lambda: PipelineStage(name="Discovery"))
    amount: Optional[float] = None
    contact_ids: List[str] = Field(default_factory=list)

    # Seller-side addresses; used to tell inbound from outbound email
    team_emails: List[str] = Field(default_factory=list)

    qualification: QualificationKnowledgeBase = Field(default_factory=QualificationKnowledgeBase)

    deal_temperature_history: List[TemperatureEntry] = Field(default_factory=list)
    deal_health_trend: Optional[DealHealthTrend] = None
    momentum_direction: Optional[MomentumDirection] = None
    latest_deal_narrative: Optional[str] = None
    deal_narrative_history: List[NarrativeEntry] = Field(default_factory=list)

    last_intelligence_update: Optional[dt.datetime] = None
    version: int = 0

    @computed_field
    @property
    def is_closed(self) -> bool:
        return self.stage.is_closed_won or self.stage.is_closed_lost

    @property
    def current_temperature(self) -> Optional[int]:
        if not self.deal_temperature_history:
            return None
        return self.deal_temperature_history[-1].temperature

    def is_team_address(self, address: str) -> bool:
        address = address.strip().lower()
        return any(email.strip().lower() == address for email in self.team_emails)
