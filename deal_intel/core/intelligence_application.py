"""
In-Memory Application
Pure functions that take a relationship-intelligence snapshot and a delta and return a new snapshot.
Nothing here touches storage or mutates its inputs.
"""
import datetime as dt
from typing import Iterable, List, Optional

from deal_intel.models.analysis import ContactDelta, ImpactScore, ProposedIndicator, ResponsivenessAssessment, RoleProposal
from deal_intel.models.base import Relevance
from deal_intel.models.intelligence import (
    BehavioralIndicator,
    CommunicationPattern,
    RelationshipIntelligence,
    ResponsivenessEntry,
    RoleAssignment,
    SCORE_MAX,
    SCORE_MIN,
    ScoreEntry,
)


def clamp_score(value: int, lower: int = SCORE_MIN, upper: int = SCORE_MAX) -> int:
    return max(lower, min(upper, value))


def apply_impact(
    record: RelationshipIntelligence,
    impact: ImpactScore,
    activity_id: str,
    activity_date: dt.datetime,
) -> RelationshipIntelligence:
    """Add the impact to the score (clamped) and append a history entry with the raw delta."""
    new_score = clamp_score(record.engagement_score + impact.score)
    entry = ScoreEntry(
        score=new_score,
        delta=impact.score,
        date=activity_date,
        source_activity=activity_id,
        reasoning=impact.reasoning,
    )
    return record.model_copy(update={
        "engagement_score": new_score,
        "score_history": [*record.score_history, entry],
    })


def apply_indicators(
    record: RelationshipIntelligence,
    indicators: Iterable[ProposedIndicator],
    activity_id: str,
    activity_date: dt.datetime,
) -> RelationshipIntelligence:
    """Append High/Medium indicators; Low relevance never reaches the record."""
    kept = [
        BehavioralIndicator(
            text=indicator.text,
            category=indicator.category,
            confidence=indicator.confidence,
            relevance=indicator.relevance,
            date=activity_date,
            source_activity=activity_id,
            quote=indicator.quote,
        )
        for indicator in indicators
        if indicator.relevance != Relevance.LOW
    ]
    if not kept:
        return record
    return record.model_copy(update={
        "behavioral_indicators": [*record.behavioral_indicators, *kept],
    })


def apply_pattern(
    record: RelationshipIntelligence,
    pattern: Optional[CommunicationPattern],
) -> RelationshipIntelligence:
    if pattern is None:
        return record
    return record.model_copy(update={
        "communication_patterns": [*record.communication_patterns, pattern],
    })


def apply_responsiveness(
    record: RelationshipIntelligence,
    assessment: Optional[ResponsivenessAssessment],
    analyzed_at: dt.datetime,
) -> RelationshipIntelligence:
    if assessment is None:
        return record
    entry = ResponsivenessEntry(
        status=assessment.status,
        summary=assessment.summary,
        is_awaiting_response=assessment.is_awaiting_response,
        active_responding_contact=assessment.active_responding_contact,
        analyzed_at=analyzed_at,
    )
    return record.model_copy(update={"responsiveness": [*record.responsiveness, entry]})


def apply_role(
    record: RelationshipIntelligence,
    proposal: RoleProposal,
    assigned_at: dt.datetime,
) -> RelationshipIntelligence:
    """Append the role only when it differs from the most recent assignment."""
    if record.current_role == proposal.role:
        return record
    assignment = RoleAssignment(role=proposal.role, assigned_at=assigned_at, reasoning=proposal.reasoning)
    return record.model_copy(update={"role_assignments": [*record.role_assignments, assignment]})


def apply_story(record: RelationshipIntelligence, story: Optional[str]) -> RelationshipIntelligence:
    if not story:
        return record
    return record.model_copy(update={"relationship_story": story})


def apply_contact_delta(
    record: RelationshipIntelligence,
    delta: ContactDelta,
    activity_id: str,
    activity_date: dt.datetime,
    analyzed_at: dt.datetime,
) -> RelationshipIntelligence:
    """Apply everything Phase 1 produced for one pair, except the narrative."""
    record = apply_impact(record, delta.impact, activity_id, activity_date)
    record = apply_indicators(record, delta.indicators, activity_id, activity_date)
    record = apply_pattern(record, delta.pattern)
    record = apply_responsiveness(record, delta.responsiveness, analyzed_at)
    record = apply_role(record, delta.role, activity_date)
    return record


def story_window(
    record: RelationshipIntelligence,
    scores: int = 15,
    responsiveness: int = 10,
    signals: int = 20,
) -> RelationshipIntelligence:
    """Bounded recent view of a record, fed to the narrative generator."""
    return record.model_copy(update={
        "score_history": _tail(record.score_history, scores),
        "responsiveness": _tail(record.responsiveness, responsiveness),
        "behavioral_indicators": _tail(record.behavioral_indicators, signals),
        "communication_patterns": _tail(record.communication_patterns, signals),
    })


def _tail(items: List, size: int) -> List:
    return list(items[-size:]) if size > 0 else []
