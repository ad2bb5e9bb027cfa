"""
Tests for the domain models
Activity parsing, summary reading, record invariants and knowledge-base helpers.
"""
import datetime as dt
import json
import pytest
from pydantic import ValidationError

from deal_intel.models.activity import (
    ActivityBase,
    Attendee,
    EmailActivity,
    MeetingActivity,
    ProcessingReceipt,
    parse_activity,
    read_summary,
)
from deal_intel.models.base import Relevance
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal, PipelineStage, TemperatureEntry
from deal_intel.models.intelligence import (
    BehavioralIndicator,
    ContactRole,
    RelationshipIntelligence,
    RoleAssignment,
    ScoreEntry,
    SignalCategory,
)
from deal_intel.models.qualification import (
    CompetitionEntry,
    EconomicBuyerEntry,
    QualificationAction,
    QualificationActions,
    QualificationCategory,
    QualificationKnowledgeBase,
    key_field_for,
)

WHEN = dt.datetime(2025, 3, 1, tzinfo=dt.UTC)


class TestReadSummary:

    def test_plain_text(self):
        payload = read_summary("  Discussed pricing.  ")

        assert payload.summary == "Discussed pricing."
        assert payload.qualification == {}

    def test_structured_payload(self):
        raw = json.dumps({
            "summary": "Ana confirmed budget.",
            "qualification": {"economic_buyer": [{"text": "CFO signs", "relevance": "High"}]},
        })

        payload = read_summary(raw)

        assert payload.summary == "Ana confirmed budget."
        assert payload.qualification["economic_buyer"][0].relevance == Relevance.HIGH

    @pytest.mark.parametrize("raw", [None, "", "   ", json.dumps({"summary": "  "})])
    def test_missing_or_blank(self, raw):
        assert read_summary(raw) is None

    def test_json_that_is_not_a_payload_is_plain_text(self):
        assert read_summary("[1, 2, 3]").summary == "[1, 2, 3]"
        assert read_summary('{"notes": "x"}').summary == '{"notes": "x"}'


class TestActivities:

    def test_parse_resolves_variant(self):
        email = parse_activity({"_id": "a1", "kind": "email", "date": WHEN, "from_address": "ana@acme.com"})
        meeting = parse_activity({"_id": "a2", "kind": "meeting", "date": WHEN, "title": "Sync"})

        assert isinstance(email, EmailActivity)
        assert isinstance(meeting, MeetingActivity)
        assert email.id == "a1"

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            parse_activity({"_id": "a3", "kind": "sms", "date": WHEN})

    def test_object_ids_become_strings(self):
        from bson import ObjectId

        oid = ObjectId()
        email = parse_activity({"_id": oid, "kind": "email", "date": WHEN, "from_address": "a@b.c"})

        assert email.id == str(oid)

    def test_receipts(self):
        email = EmailActivity(
            id="a1",
            date=WHEN,
            from_address="ana@acme.com",
            processed_for=[ProcessingReceipt(contact_id="c1", deal_id="d1")],
        )

        assert email.has_receipt("c1", "d1")
        assert not email.has_receipt("c1", "d2")

    def test_participants(self):
        email = EmailActivity(
            date=WHEN,
            from_address="ana@acme.com",
            to_addresses=["rep@seller.io"],
            cc_addresses=["ben@acme.com"],
        )

        assert email.participants == ["ana@acme.com", "rep@seller.io", "ben@acme.com"]

    def test_content_accessors_live_on_variants(self):
        meeting = MeetingActivity(
            date=WHEN,
            title="Sync",
            attendees=[Attendee(name="Ana Torres", email="ana@acme.com"), Attendee(name="Dial-in")],
        )
        email = EmailActivity(date=WHEN, from_address="ana@acme.com", body="Pricing please")

        assert not hasattr(ActivityBase, "text")
        assert email.text == "Pricing please"
        assert meeting.text == ""
        assert meeting.participants == ["ana@acme.com"]


class TestRelationshipIntelligence:

    def test_score_bounds(self):
        with pytest.raises(ValidationError):
            RelationshipIntelligence(deal_id="d1", engagement_score=51)
        with pytest.raises(ValidationError):
            ScoreEntry(score=-51, delta=-5, date=WHEN, source_activity="a1")

    def test_low_relevance_indicator_rejected(self):
        with pytest.raises(ValidationError):
            BehavioralIndicator(
                text="Likes golf",
                category=SignalCategory.MENTION,
                relevance=Relevance.LOW,
                date=WHEN,
                source_activity="a1",
            )

    def test_current_role_is_latest_assignment(self):
        record = RelationshipIntelligence(
            deal_id="d1",
            role_assignments=[RoleAssignment(role=ContactRole.USER), RoleAssignment(role=ContactRole.CHAMPION)],
        )

        assert record.current_role == ContactRole.CHAMPION
        assert RelationshipIntelligence(deal_id="d1").current_role is None


class TestContactAndDeal:

    def test_intelligence_for_unknown_deal_is_fresh(self):
        contact = Contact(id="c1", emails=["Ana@Acme.com"])

        record = contact.intelligence_for("d1")

        assert record.deal_id == "d1"
        assert contact.relationship_intelligence == {}
        assert contact.has_email(" ana@acme.com ")

    def test_with_intelligence_returns_new_snapshot(self):
        contact = Contact(id="c1")

        updated = contact.with_intelligence(RelationshipIntelligence(deal_id="d1", engagement_score=5))

        assert updated.relationship_intelligence["d1"].engagement_score == 5
        assert contact.relationship_intelligence == {}

    def test_display_name_fallbacks(self):
        assert Contact(first_name="Ana", last_name="Torres").display_name == "Ana Torres"
        assert Contact(emails=["ana@acme.com"]).display_name == "ana@acme.com"

    def test_deal_closed_and_temperature(self):
        deal = Deal(
            name="Acme",
            stage=PipelineStage(name="Closed Lost", is_closed_lost=True),
            team_emails=["Rep@Seller.io"],
            deal_temperature_history=[TemperatureEntry(temperature=40), TemperatureEntry(temperature=62)],
        )

        assert deal.is_closed
        assert deal.current_temperature == 62
        assert deal.is_team_address("rep@seller.io")
        assert Deal(name="New").current_temperature is None

    def test_temperature_range(self):
        with pytest.raises(ValidationError):
            TemperatureEntry(temperature=101)


class TestQualificationModels:

    def test_key_fields(self):
        assert key_field_for(QualificationCategory.COMPETITION) == "competition"
        assert key_field_for(QualificationCategory.ECONOMIC_BUYER) == "name"
        assert key_field_for(QualificationCategory.PAPER_PROCESS) == "process"
        assert EconomicBuyerEntry(name="Jane Smith").key == "Jane Smith"

    def test_knowledge_base_helpers(self):
        kb = QualificationKnowledgeBase()
        assert kb.is_empty()

        updated = kb.with_entries(QualificationCategory.COMPETITION, [CompetitionEntry(competition="HubSpot")])

        assert not updated.is_empty()
        assert kb.is_empty()
        assert updated.entries(QualificationCategory.COMPETITION)[0].key == "HubSpot"

    def test_actions_merge_and_count(self):
        first = QualificationActions(competition=[QualificationAction(action="add", value="HubSpot", relevance=Relevance.HIGH)])
        second = QualificationActions(
            competition=[QualificationAction(action="remove", prior_value="Excel", relevance=Relevance.MEDIUM)],
            metrics=[QualificationAction(action="add", value="Save 10h/week", relevance=Relevance.HIGH)],
        )

        merged = first.merged(second)

        assert merged.total() == 3
        assert [a.action for a in merged.for_category(QualificationCategory.COMPETITION)] == ["add", "remove"]

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            QualificationAction(action="upsert", value="x", relevance=Relevance.HIGH)
