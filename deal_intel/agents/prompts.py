"""
Shared prompt fragments for the analyzers.
Each analyzer builds a full prompt and a reduced one for the emergency retry.
"""
import datetime as dt
from typing import Optional, Union

from deal_intel.models.activity import EmailActivity, MeetingActivity, read_summary
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal
from deal_intel.utils.context_budget import ContextWindow, truncate_to_tokens

AnyActivity = Union[EmailActivity, MeetingActivity]


def contact_participated(contact: Contact, activity: AnyActivity) -> bool:
    """True when the contact sent, received or attended the activity."""
    if contact.id and contact.id in activity.contact_ids:
        return True
    return any(contact.has_email(address) for address in activity.participants)


def describe_contact(contact: Contact) -> str:
    lines = [f"Name: {contact.display_name}"]
    if contact.title:
        lines.append(f"Title: {contact.title}")
    if contact.emails:
        lines.append(f"Emails: {', '.join(contact.emails)}")
    if contact.research_summary:
        lines.append(f"Background: {truncate_to_tokens(contact.research_summary, 300)}")
    return "\n".join(lines)


def describe_deal(deal: Deal) -> str:
    lines = [f"Deal: {deal.name}", f"Stage: {deal.stage.name}"]
    if deal.amount is not None:
        lines.append(f"Amount: {deal.amount:,.0f}")
    if deal.team_emails:
        lines.append(f"Seller team: {', '.join(deal.team_emails)}")
    return "\n".join(lines)


def describe_activity(activity: AnyActivity, window: ContextWindow) -> str:
    """Activity header, its summary, and its raw text cut to the window's per-item budget."""
    payload = read_summary(activity.summary)
    summary = payload.summary if payload else "(no summary)"

    if isinstance(activity, EmailActivity):
        header = (
            f"EMAIL on {activity.date.isoformat()}\n"
            f"From: {activity.from_address}\n"
            f"To: {', '.join(activity.to_addresses)}\n"
            f"Subject: {activity.subject or ''}"
        )
        body = truncate_to_tokens(activity.body, window.max_tokens_per_email)
    else:
        header = f"MEETING on {activity.date.isoformat()}\nTitle: {activity.title}"
        if window.include_attendee_details and activity.attendees:
            attendees = "; ".join(
                " ".join(filter(None, [a.name, f"<{a.email}>" if a.email else None, a.title]))
                for a in activity.attendees
            )
            header += f"\nAttendees: {attendees}"
        else:
            header += f"\nAttendee count: {len(activity.attendees)}"
        body = truncate_to_tokens(activity.text, window.max_tokens_per_meeting)

    return f"{header}\n\nSUMMARY:\n{summary}\n\nCONTENT:\n{body or '(empty)'}"


def current_date_line(now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(dt.UTC)
    return f"CURRENT DATE: {now.date().isoformat()}"
