import os
import pytest
import datetime as dt

os.environ.setdefault("OPENAI_API_KEY", "test-key")

from deal_intel.config import Settings
from deal_intel.models.activity import EmailActivity, MeetingActivity, Attendee
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal, PipelineStage
from deal_intel.repositories.memory_store import InMemoryIntelligenceStore
from tests.fakes import FakeGateway, NOW


@pytest.fixture
def settings():
    """Settings isolated from the developer's .env."""
    return Settings(_env_file=None, openai_api_key="test-key", environment="test")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def ana():
    return Contact(
        id="contact-ana",
        first_name="Ana",
        last_name="Torres",
        emails=["ana@acme.com"],
        title="VP Operations",
        prospect_id="prospect-acme",
    )


@pytest.fixture
def ben():
    return Contact(
        id="contact-ben",
        first_name="Ben",
        last_name="Ortiz",
        emails=["ben@acme.com"],
        title="IT Director",
        prospect_id="prospect-acme",
    )


@pytest.fixture
def deal(ana, ben):
    return Deal(
        id="deal-acme",
        name="Acme rollout",
        prospect_id="prospect-acme",
        stage=PipelineStage(name="Evaluation"),
        amount=48000,
        contact_ids=[ana.id, ben.id],
        team_emails=["rep@seller.io"],
    )


@pytest.fixture
def email_activity(ana, ben):
    return EmailActivity(
        id="activity-email-1",
        date=NOW - dt.timedelta(hours=2),
        received_at=NOW - dt.timedelta(hours=2),
        contact_ids=[ana.id, ben.id],
        prospect_id="prospect-acme",
        thread_id="thread-1",
        subject="Pricing for 40 seats",
        from_address="ana@acme.com",
        to_addresses=["rep@seller.io"],
        cc_addresses=["ben@acme.com"],
        body="Hi, could you send pricing for 40 seats? Ben will review the SSO requirements.",
        summary="Ana asked for pricing for 40 seats; Ben owns the SSO review.",
    )


@pytest.fixture
def meeting_activity(ana):
    return MeetingActivity(
        id="activity-meeting-1",
        date=NOW - dt.timedelta(days=3),
        contact_ids=[ana.id],
        prospect_id="prospect-acme",
        title="Discovery call",
        start_time=NOW - dt.timedelta(days=3),
        end_time=NOW - dt.timedelta(days=3) + dt.timedelta(minutes=45),
        attendees=[
            Attendee(name="Ana Torres", email="ana@acme.com", title="VP Operations"),
            Attendee(name="Sam Rep", email="rep@seller.io"),
        ],
        summary="Discussed onboarding pain and current CRM.",
    )


@pytest.fixture
def store(ana, ben, deal, email_activity):
    store = InMemoryIntelligenceStore()
    store.add_contact(ana)
    store.add_contact(ben)
    store.add_deal(deal)
    store.add_activity(email_activity)
    return store
