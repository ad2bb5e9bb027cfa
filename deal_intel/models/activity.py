import datetime as dt
import json
from enum import StrEnum
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from deal_intel.models.base import MongoBaseModel, Relevance, Confidence, utc_now


class ActivityKind(StrEnum):
    EMAIL = "email"
    MEETING = "meeting"


class ProcessingReceipt(BaseModel):
    """Proof that an (activity, contact, deal) triple has been processed."""
    contact_id: str
    deal_id: str
    processed_at: dt.datetime = Field(default_factory=utc_now)


class Attendee(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    title: Optional[str] = None
    organization: Optional[str] = None


class ActivityBase(MongoBaseModel):
    date: dt.datetime
    contact_ids: List[str] = Field(default_factory=list)
    prospect_id: Optional[str] = None
    deal_id: Optional[str] = None

    # Written by the external summarizer; plain text or ActivitySummaryPayload JSON
    summary: Optional[str] = None

    processed_for: List[ProcessingReceipt] = Field(default_factory=list)
    received_at: dt.datetime = Field(default_factory=utc_now)

    def has_receipt(self, contact_id: str, deal_id: str) -> bool:
        return any(
            receipt.contact_id == contact_id and receipt.deal_id == deal_id
            for receipt in self.processed_for
        )


class EmailActivity(ActivityBase):
    kind: Literal["email"] = "email"
    thread_id: Optional[str] = None
    subject: Optional[str] = None
    from_address: str
    to_addresses: List[str] = Field(default_factory=list)
    cc_addresses: List[str] = Field(default_factory=list)
    body: str = ""

    @property
    def text(self) -> str:
        return self.body

    @property
    def participants(self) -> List[str]:
        return [self.from_address, *self.to_addresses, *self.cc_addresses]


class MeetingActivity(ActivityBase):
    kind: Literal["meeting"] = "meeting"
    title: str = ""
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    attendees: List[Attendee] = Field(default_factory=list)
    transcript_excerpt: Optional[str] = None

    @property
    def text(self) -> str:
        return self.transcript_excerpt or ""

    @property
    def participants(self) -> List[str]:
        return [attendee.email for attendee in self.attendees if attendee.email]


Activity = Annotated[Union[EmailActivity, MeetingActivity], Field(discriminator="kind")]

ActivityAdapter: TypeAdapter[Activity] = TypeAdapter(Activity)


def parse_activity(document: dict) -> Union[EmailActivity, MeetingActivity]:
    """Resolve a stored document to its concrete activity variant."""
    return ActivityAdapter.validate_python(document)


class QualificationSignal(BaseModel):
    text: str
    relevance: Relevance = Relevance.MEDIUM
    confidence: Confidence = Confidence.MEDIUM
    reason: Optional[str] = None


class ActivitySummaryPayload(BaseModel):
    """Structured summary written by the summarizer service."""
    summary: str
    qualification: Dict[str, List[QualificationSignal]] = Field(default_factory=dict)


def read_summary(raw: Optional[str]) -> Optional[ActivitySummaryPayload]:
    """
    Accept either the structured JSON payload or plain text.
    Returns None when no usable summary exists.
    """
    if raw is None or not raw.strip():
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return ActivitySummaryPayload(summary=raw.strip())
    if not isinstance(data, dict):
        return ActivitySummaryPayload(summary=raw.strip())
    try:
        payload = ActivitySummaryPayload.model_validate(data)
    except ValidationError:
        return ActivitySummaryPayload(summary=raw.strip())
    return payload if payload.summary.strip() else None
