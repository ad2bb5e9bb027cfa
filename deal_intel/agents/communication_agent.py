from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from loguru import logger

from deal_intel.agents.prompts import AnyActivity
from deal_intel.config import Settings, get_settings
from deal_intel.models.activity import EmailActivity
from deal_intel.models.analysis import ToneAssessment
from deal_intel.models.base import as_utc, utc_now
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal
from deal_intel.models.intelligence import CommunicationPattern
from deal_intel.utils.context_budget import truncate_to_tokens
from deal_intel.utils.inference_gateway import InferenceError, InferenceGateway, InferenceRequest

COMMUNICATION_INSTRUCTIONS = (
    "You read a single email written by a prospect and classify its tone "
    "(Formal, Informal, Enthusiastic, Hesitant, Concerned, Neutral) and its depth "
    "(Deep: detailed and specific; Medium: some substance; Shallow: brief or perfunctory)."
)


@dataclass
class ThreadMetrics:
    initiated_by_contact: int = 0
    initiated_by_us: int = 0
    response_count: int = 0
    response_speed_hours: Optional[float] = None
    # None when only the contact initiated (ratio unbounded)
    initiation_ratio: Optional[float] = None


def compute_thread_metrics(
    emails: Sequence[EmailActivity],
    contact: Contact,
    team_emails: Sequence[str],
) -> ThreadMetrics:
    """
    Response speed and initiation ratio from thread timing.

    Within each thread (oldest first) a seller email opens an "unanswered" window
    if none is open. A contact email closes that window and counts as a response;
    with no open window it counts as a contact-initiated exchange.
    """
    team = {address.strip().lower() for address in team_emails}
    metrics = ThreadMetrics()
    total_response_hours = 0.0

    threads: Dict[str, List[EmailActivity]] = defaultdict(list)
    for email in emails:
        if email.thread_id:
            threads[email.thread_id].append(email)

    for thread in threads.values():
        thread.sort(key=lambda email: as_utc(email.date))
        first_unanswered: Optional[EmailActivity] = None

        for email in thread:
            sender = email.from_address.strip().lower()
            if sender in team:
                if first_unanswered is None:
                    first_unanswered = email
                    metrics.initiated_by_us += 1
            elif contact.has_email(sender):
                if first_unanswered is not None:
                    elapsed = as_utc(email.date) - as_utc(first_unanswered.date)
                    total_response_hours += elapsed.total_seconds() / 3600
                    metrics.response_count += 1
                    first_unanswered = None
                else:
                    metrics.initiated_by_contact += 1

    if metrics.response_count:
        metrics.response_speed_hours = round(total_response_hours / metrics.response_count, 2)

    if metrics.initiated_by_us:
        metrics.initiation_ratio = metrics.initiated_by_contact / metrics.initiated_by_us
    elif metrics.initiated_by_contact == 0:
        metrics.initiation_ratio = 0.0

    return metrics


class CommunicationPatternAnalyzer:
    """
    Communication pattern for one contact.
    Timing metrics are deterministic; tone and depth come from the latest email only.
    Secondary analyzer. A failed tone call keeps the timing metrics; the
    pattern is omitted only when there is nothing else to record.
    """

    name = "CommunicationPatternAnalyzer"

    def __init__(self, gateway: InferenceGateway, settings: Settings | None = None):
        self.gateway = gateway
        self.settings = settings or get_settings()

    async def analyze(
        self,
        contact: Contact,
        deal: Deal,
        history: Sequence[AnyActivity],
    ) -> Optional[CommunicationPattern]:
        emails = [
            activity for activity in history
            if isinstance(activity, EmailActivity) and activity.thread_id
        ]
        if not emails:
            logger.debug(f"No threaded email history for {contact.id}, skipping pattern analysis")
            return None

        pattern = CommunicationPattern(analyzed_at=utc_now())

        if deal.team_emails:
            metrics = compute_thread_metrics(emails, contact, deal.team_emails)
            pattern.response_speed_hours = metrics.response_speed_hours
            pattern.initiation_ratio = metrics.initiation_ratio
        else:
            logger.warning(f"Deal {deal.id} has no team emails, skipping timing metrics")

        sent_by_contact = [email for email in emails if contact.has_email(email.from_address)]
        latest = max(sent_by_contact, key=lambda email: as_utc(email.date)) if sent_by_contact else None
        if latest is not None and latest.body and latest.body.strip():
            body = truncate_to_tokens(latest.body, self.settings.max_tokens_per_email)
            try:
                assessment = await self.gateway.generate(InferenceRequest(
                    agent_name=self.name,
                    model=self.settings.communication_model,
                    instructions=COMMUNICATION_INSTRUCTIONS,
                    prompt=body,
                    output_type=ToneAssessment,
                    degraded_prompt=truncate_to_tokens(latest.body, self.settings.emergency_max_tokens_per_email),
                ))
            except InferenceError as e:
                if pattern.response_speed_hours is None and pattern.initiation_ratio is None:
                    raise
                logger.warning(f"Tone not assessed for {contact.id}, keeping timing metrics only: {e}")
            else:
                pattern.tone = assessment.tone
                pattern.depth = assessment.depth

        logger.success(
            f"Communication pattern for {contact.id}: tone={pattern.tone}, "
            f"speed={pattern.response_speed_hours}, ratio={pattern.initiation_ratio}"
        )
        return pattern
