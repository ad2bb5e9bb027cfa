"""
Qualification Knowledge Base (MEDDPICC)
Deal-level, categorized, deduplicated qualification facts and the actions that evolve them.
"""
import datetime as dt
from enum import StrEnum
from typing import Any, ClassVar, Dict, List, Literal, Optional, Type
from pydantic import BaseModel, Field

from deal_intel.models.base import Confidence, Relevance, utc_now


class QualificationCategory(StrEnum):
    METRICS = "metrics"
    ECONOMIC_BUYER = "economic_buyer"
    DECISION_CRITERIA = "decision_criteria"
    DECISION_PROCESS = "decision_process"
    PAPER_PROCESS = "paper_process"
    IDENTIFIED_PAIN = "identified_pain"
    CHAMPION = "champion"
    COMPETITION = "competition"


class KnowledgeEntry(BaseModel):
    """Common shape of every knowledge-base entry; subclasses declare the key field."""
    KEY_FIELD: ClassVar[str]

    reason: Optional[str] = None
    confidence: Confidence = Confidence.MEDIUM
    relevance: Relevance = Relevance.MEDIUM
    metadata: Dict[str, Any] = Field(default_factory=dict)
    source_activity: Optional[str] = None
    updated_at: dt.datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return getattr(self, self.KEY_FIELD)


class MetricEntry(KnowledgeEntry):
    KEY_FIELD: ClassVar[str] = "metric"
    metric: str


class EconomicBuyerEntry(KnowledgeEntry):
    KEY_FIELD: ClassVar[str] = "name"
    name: str
    title: Optional[str] = None


class DecisionCriteriaEntry(KnowledgeEntry):
    KEY_FIELD: ClassVar[str] = "criteria"
    criteria: str


class DecisionProcessEntry(KnowledgeEntry):
    KEY_FIELD: ClassVar[str] = "process"
    process: str


class PaperProcessEntry(KnowledgeEntry):
    KEY_FIELD: ClassVar[str] = "process"
    process: str


class IdentifiedPainEntry(KnowledgeEntry):
    KEY_FIELD: ClassVar[str] = "pain"
    pain: str


class ChampionEntry(KnowledgeEntry):
    KEY_FIELD: ClassVar[str] = "name"
    name: str
    title: Optional[str] = None


class CompetitionEntry(KnowledgeEntry):
    KEY_FIELD: ClassVar[str] = "competition"
    competition: str


ENTRY_TYPES: Dict[QualificationCategory, Type[KnowledgeEntry]] = {
    QualificationCategory.METRICS: MetricEntry,
    QualificationCategory.ECONOMIC_BUYER: EconomicBuyerEntry,
    QualificationCategory.DECISION_CRITERIA: DecisionCriteriaEntry,
    QualificationCategory.DECISION_PROCESS: DecisionProcessEntry,
    QualificationCategory.PAPER_PROCESS: PaperProcessEntry,
    QualificationCategory.IDENTIFIED_PAIN: IdentifiedPainEntry,
    QualificationCategory.CHAMPION: ChampionEntry,
    QualificationCategory.COMPETITION: CompetitionEntry,
}


def key_field_for(category: QualificationCategory) -> str:
    return ENTRY_TYPES[category].KEY_FIELD


class QualificationKnowledgeBase(BaseModel):
    """One array per MEDDPICC category. Field names match QualificationCategory values."""
    metrics: List[MetricEntry] = Field(default_factory=list)
    economic_buyer: List[EconomicBuyerEntry] = Field(default_factory=list)
    decision_criteria: List[DecisionCriteriaEntry] = Field(default_factory=list)
    decision_process: List[DecisionProcessEntry] = Field(default_factory=list)
    paper_process: List[PaperProcessEntry] = Field(default_factory=list)
    identified_pain: List[IdentifiedPainEntry] = Field(default_factory=list)
    champion: List[ChampionEntry] = Field(default_factory=list)
    competition: List[CompetitionEntry] = Field(default_factory=list)

    def entries(self, category: QualificationCategory) -> List[KnowledgeEntry]:
        return list(getattr(self, category.value))

    def with_entries(
        self,
        category: QualificationCategory,
        entries: List[KnowledgeEntry]
    ) -> "QualificationKnowledgeBase":
        return self.model_copy(update={category.value: list(entries)})

    def is_empty(self) -> bool:
        return not any(self.entries(category) for category in QualificationCategory)


ActionType = Literal["add", "update", "remove"]


class QualificationAction(BaseModel):
    """
    One proposed change to a knowledge-base category.

    `value` is the key-field text of the entry (e.g. the competitor name for
    competition, the person's name for economic_buyer). `prior_value` identifies
    the existing entry for removes and key-changing updates.
    """
    action: ActionType
    value: str = Field(default="", description="Key-field text of the entry this action produces or targets.")
    prior_value: Optional[str] = Field(
        default=None,
        description="Exact key-field text of the existing entry being replaced or removed."
    )
    relevance: Relevance
    confidence: Confidence = Confidence.MEDIUM
    reason: Optional[str] = None
    title: Optional[str] = Field(default=None, description="Job title, for economic_buyer and champion only.")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class QualificationActions(BaseModel):
    """Proposed actions for every category touched by one activity."""
    metrics: List[QualificationAction] = Field(default_factory=list)
    economic_buyer: List[QualificationAction] = Field(default_factory=list)
    decision_criteria: List[QualificationAction] = Field(default_factory=list)
    decision_process: List[QualificationAction] = Field(default_factory=list)
    paper_process: List[QualificationAction] = Field(default_factory=list)
    identified_pain: List[QualificationAction] = Field(default_factory=list)
    champion: List[QualificationAction] = Field(default_factory=list)
    competition: List[QualificationAction] = Field(default_factory=list)

    def for_category(self, category: QualificationCategory) -> List[QualificationAction]:
        return list(getattr(self, category.value))

    def merged(self, other: "QualificationActions") -> "QualificationActions":
        return QualificationActions(**{
            category.value: self.for_category(category) + other.for_category(category)
            for category in QualificationCategory
        })

    def total(self) -> int:
        return sum(len(self.for_category(category)) for category in QualificationCategory)
