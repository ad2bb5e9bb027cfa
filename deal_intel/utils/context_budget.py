"""
Context Budget
Token estimation and history compaction so analyzer prompts stay under model limits.

Two windows exist: the normal one and an emergency one (fewer items, shorter
text, attendee details stripped) used for the single degrade retry.
"""
import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Union

from deal_intel.config import Settings
from deal_intel.models.activity import EmailActivity, MeetingActivity, read_summary

CHARS_PER_TOKEN = 3.5

_WHITESPACE = re.compile(r"\s+")

AnyActivity = Union[EmailActivity, MeetingActivity]


def estimate_tokens(text: str) -> int:
    """Rough token count: whitespace-collapsed characters / 3.5, rounded up."""
    clean = _WHITESPACE.sub(" ", text.strip())
    return math.ceil(len(clean) / CHARS_PER_TOKEN)


def estimate_json_tokens(payload: Any) -> int:
    return estimate_tokens(json.dumps(payload, indent=2, default=str))


def exceeds_budget(text: str, limit: int) -> bool:
    return estimate_tokens(text) > limit


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """
    Cut text to roughly max_tokens, preferring a word boundary.

    Example:
        >>> truncate_to_tokens("alpha beta gamma delta", 3)
        'alpha b...'
    """
    if estimate_tokens(text) <= max_tokens:
        return text

    max_chars = math.floor(max_tokens * CHARS_PER_TOKEN)
    if len(text) <= max_chars:
        return text

    truncated = text[:max(max_chars - 3, 0)]
    last_space = truncated.rfind(" ")
    if last_space > max_chars * 0.8:
        return truncated[:last_space] + "..."
    return truncated + "..."


@dataclass(frozen=True)
class ContextWindow:
    max_emails: int
    max_meetings: int
    max_tokens_per_email: int
    max_tokens_per_meeting: int
    include_attendee_details: bool = True

    @classmethod
    def normal(cls, settings: Settings) -> "ContextWindow":
        return cls(
            max_emails=settings.max_email_activities,
            max_meetings=settings.max_meeting_activities,
            max_tokens_per_email=settings.max_tokens_per_email,
            max_tokens_per_meeting=settings.max_tokens_per_meeting,
            include_attendee_details=settings.include_attendee_details,
        )

    @classmethod
    def emergency(cls, settings: Settings) -> "ContextWindow":
        return cls(
            max_emails=settings.emergency_max_email_activities,
            max_meetings=settings.emergency_max_meeting_activities,
            max_tokens_per_email=settings.emergency_max_tokens_per_email,
            max_tokens_per_meeting=settings.emergency_max_tokens_per_meeting,
            include_attendee_details=False,
        )


def _compact_email(email: EmailActivity, window: ContextWindow) -> Dict[str, Any]:
    return {
        "kind": "email",
        "date": email.date.isoformat(),
        "subject": email.subject,
        "from": email.from_address,
        "to": email.to_addresses,
        "body": truncate_to_tokens(email.body, window.max_tokens_per_email),
    }


def _compact_meeting(meeting: MeetingActivity, window: ContextWindow) -> Dict[str, Any]:
    payload = read_summary(meeting.summary)
    content = payload.summary if payload else (meeting.transcript_excerpt or "")
    item: Dict[str, Any] = {
        "kind": "meeting",
        "date": meeting.date.isoformat(),
        "title": meeting.title,
        "content": truncate_to_tokens(content, window.max_tokens_per_meeting),
    }
    if window.include_attendee_details:
        item["attendees"] = [
            attendee.model_dump(exclude_none=True) for attendee in meeting.attendees
        ]
    else:
        item["attendee_count"] = len(meeting.attendees)
    return item


def compact_history(activities: Iterable[AnyActivity], window: ContextWindow) -> List[Dict[str, Any]]:
    """
    Keep the most recent emails and meetings allowed by the window.

    Returns:
        Serializable dicts in chronological order
    """
    activities = list(activities)
    emails = sorted(
        (a for a in activities if isinstance(a, EmailActivity)),
        key=lambda a: a.date,
        reverse=True,
    )
    meetings = sorted(
        (a for a in activities if isinstance(a, MeetingActivity)),
        key=lambda a: a.date,
        reverse=True,
    )

    kept: List[AnyActivity] = emails[:window.max_emails] + meetings[:window.max_meetings]
    kept.sort(key=lambda a: a.date)

    return [
        _compact_email(a, window) if isinstance(a, EmailActivity) else _compact_meeting(a, window)
        for a in kept
    ]


def render_history(activities: Iterable[AnyActivity], window: ContextWindow) -> str:
    return json.dumps(compact_history(activities, window), indent=2, default=str)
