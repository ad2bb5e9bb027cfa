from typing import Dict, List, Optional
from pydantic import Field

from deal_intel.models.base import MongoBaseModel
from deal_intel.models.intelligence import RelationshipIntelligence


class Contact(MongoBaseModel):
    """
    A person on the prospect side.
    Owns one RelationshipIntelligence record per deal it participates in.
    """
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    emails: List[str] = Field(default_factory=list)
    title: Optional[str] = None
    research_summary: Optional[str] = None
    prospect_id: Optional[str] = None

    # Keyed by deal id; created lazily the first time a pair is processed
    relationship_intelligence: Dict[str, RelationshipIntelligence] = Field(default_factory=dict)

    version: int = 0

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or (self.emails[0] if self.emails else (self.id or "unknown"))

    def intelligence_for(self, deal_id: str) -> RelationshipIntelligence:
        """Existing record for the deal, or a fresh one (not attached)."""
        record = self.relationship_intelligence.get(deal_id)
        if record is None:
            return RelationshipIntelligence(deal_id=deal_id)
        return record

    def with_intelligence(self, record: RelationshipIntelligence) -> "Contact":
        """New snapshot with the deal-scoped record replaced."""
        records = dict(self.relationship_intelligence)
        records[record.deal_id] = record
        return self.model_copy(update={"relationship_intelligence": records})

    def has_email(self, address: str) -> bool:
        address = address.strip().lower()
        return any(email.strip().lower() == address for email in self.emails)
