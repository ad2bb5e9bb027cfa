"""
Tests for the Deal Knowledge Reconciler
Action ordering, normalized matching, Low filtering and the uniqueness invariant.
"""
import datetime as dt
import pytest

from deal_intel.core.knowledge_reconciler import (
    dedupe_entries,
    order_actions,
    reconcile_category,
    reconcile_knowledge,
)
from deal_intel.models.base import Confidence, Relevance
from deal_intel.models.qualification import (
    ChampionEntry,
    CompetitionEntry,
    EconomicBuyerEntry,
    QualificationAction,
    QualificationActions,
    QualificationCategory,
    QualificationKnowledgeBase,
)
from deal_intel.utils.text import normalize_key

NOW = dt.datetime(2025, 3, 10, tzinfo=dt.UTC)


def action(kind, value="", prior=None, relevance=Relevance.HIGH, **extra):
    return QualificationAction(action=kind, value=value, prior_value=prior, relevance=relevance, **extra)


def competition(*names):
    return [CompetitionEntry(competition=name) for name in names]


def keys(entries):
    return [entry.key for entry in entries]


class TestActionOrdering:

    def test_removes_then_updates_then_adds(self):
        actions = [
            action("add", "C"),
            action("update", "B"),
            action("remove", "A"),
            action("add", "D"),
            action("remove", "E"),
        ]

        ordered = order_actions(actions)

        assert [a.action for a in ordered] == ["remove", "remove", "update", "add", "add"]
        # Stable within each group
        assert [a.value for a in ordered] == ["A", "E", "B", "C", "D"]


class TestReconcileCategory:

    def test_consolidation_scenario(self):
        """Remove the stale entry, then add its replacement: one entry remains."""
        entries = competition("Acme CRM (unclear fit)")
        actions = [
            action("add", "Acme CRM — active evaluation"),
            action("remove", prior="Acme CRM (unclear fit)"),
        ]

        result = reconcile_category(QualificationCategory.COMPETITION, entries, actions, "act-1", NOW)

        assert keys(result.entries) == ["Acme CRM — active evaluation"]
        assert result.applied == 2
        assert result.anomalies == []

    def test_low_relevance_actions_are_discarded(self):
        actions = [
            action("add", "Acme CRM", relevance=Relevance.HIGH),
            action("add", "HubSpot", relevance=Relevance.MEDIUM),
            action("add", "Spreadsheets", relevance=Relevance.LOW),
        ]

        result = reconcile_category(QualificationCategory.COMPETITION, [], actions, "act-1", NOW)

        assert keys(result.entries) == ["Acme CRM", "HubSpot"]
        assert result.filtered_low == 1
        assert all(entry.relevance != Relevance.LOW for entry in result.entries)

    def test_low_relevance_remove_does_not_remove(self):
        entries = competition("Acme CRM")

        result = reconcile_category(
            QualificationCategory.COMPETITION,
            entries,
            [action("remove", prior="Acme CRM", relevance=Relevance.LOW)],
        )

        assert keys(result.entries) == ["Acme CRM"]

    def test_duplicate_add_is_skipped_after_normalization(self):
        entries = competition("Acme  CRM – Enterprise")

        result = reconcile_category(
            QualificationCategory.COMPETITION,
            entries,
            [action("add", "acme crm - enterprise")],
        )

        assert keys(result.entries) == ["Acme  CRM – Enterprise"]
        assert result.skipped == 1

    def test_update_with_prior_value_renames_and_merges(self):
        entries = [
            EconomicBuyerEntry(name="J. Smith", title="CFO", reason="Signs contracts", metadata={"source": "call"}),
        ]

        result = reconcile_category(
            QualificationCategory.ECONOMIC_BUYER,
            entries,
            [action("update", "Jane Smith", prior="J. Smith", confidence=Confidence.HIGH, metadata={"verified": True})],
            "act-2",
            NOW,
        )

        [entry] = result.entries
        assert entry.name == "Jane Smith"
        assert entry.title == "CFO"
        assert entry.reason == "Signs contracts"
        assert entry.confidence == Confidence.HIGH
        assert entry.metadata == {"source": "call", "verified": True}
        assert entry.source_activity == "act-2"
        assert entry.updated_at == NOW

    def test_update_without_prior_value_enriches_in_place(self):
        entries = [ChampionEntry(name="Ana Torres")]

        result = reconcile_category(
            QualificationCategory.CHAMPION,
            entries,
            [action("update", "ana torres", title="VP Operations")],
        )

        [entry] = result.entries
        assert entry.name == "Ana Torres"
        assert entry.title == "VP Operations"

    def test_update_with_missing_target_inserts_as_new(self):
        entries = competition("HubSpot")

        result = reconcile_category(
            QualificationCategory.COMPETITION,
            entries,
            [action("update", "Acme CRM v2", prior="Acme CRM")],
        )

        assert keys(result.entries) == ["HubSpot", "Acme CRM v2"]
        [anomaly] = result.anomalies
        assert anomaly.target == "Acme CRM"
        assert anomaly.fallback == "inserted as new"

    def test_remove_with_missing_target_reports_nearest_matches(self):
        entries = competition("Acme CRM", "HubSpot", "Salesforce")

        result = reconcile_category(
            QualificationCategory.COMPETITION,
            entries,
            [action("remove", prior="Acme CMR")],
        )

        assert keys(result.entries) == ["Acme CRM", "HubSpot", "Salesforce"]
        assert result.skipped == 1
        [anomaly] = result.anomalies
        assert anomaly.nearest[0][0] == "Acme CRM"
        assert anomaly.nearest[0][1] == 2

    def test_empty_values_are_skipped(self):
        result = reconcile_category(
            QualificationCategory.COMPETITION,
            [],
            [action("add", "   "), action("remove")],
        )

        assert result.entries == []
        assert result.skipped == 2

    def test_inputs_are_not_mutated(self):
        entries = competition("Acme CRM")

        reconcile_category(QualificationCategory.COMPETITION, entries, [action("remove", prior="Acme CRM")])

        assert keys(entries) == ["Acme CRM"]

    def test_post_pass_drops_existing_duplicates(self):
        entries = competition("Acme CRM", "ACME  crm")

        result = reconcile_category(QualificationCategory.COMPETITION, entries, [action("add", "HubSpot")])

        assert keys(result.entries) == ["Acme CRM", "HubSpot"]
        assert result.deduplicated == 1

    @pytest.mark.parametrize("actions", [
        [action("add", "Acme CRM"), action("add", "acme crm"), action("add", "ACME CRM ")],
        [action("update", "HubSpot", prior="Acme CRM"), action("add", "hubspot")],
        [action("update", "Salesforce", prior="Acme CRM")],
        [action("remove", prior="HubSpot"), action("update", "Acme CRM", prior="HubSpot"), action("add", "Acme CRM")],
    ])
    def test_keys_stay_unique(self, actions):
        entries = competition("Acme CRM", "HubSpot", "Salesforce")

        result = reconcile_category(QualificationCategory.COMPETITION, entries, actions)

        normalized = [normalize_key(entry.key) for entry in result.entries]
        assert len(normalized) == len(set(normalized))


class TestReconcileKnowledge:

    def test_reconciles_every_category(self):
        knowledge = QualificationKnowledgeBase(competition=competition("Acme CRM (unclear fit)"))
        actions = QualificationActions(
            competition=[
                action("remove", prior="Acme CRM (unclear fit)"),
                action("add", "Acme CRM — active evaluation"),
            ],
            identified_pain=[action("add", "Manual onboarding takes 3 weeks", relevance=Relevance.MEDIUM)],
            metrics=[action("add", "Cut onboarding to 3 days", relevance=Relevance.LOW)],
        )

        report = reconcile_knowledge(knowledge, actions, source_activity="act-9", now=NOW)

        kb = report.knowledge_base
        assert keys(kb.competition) == ["Acme CRM — active evaluation"]
        assert keys(kb.identified_pain) == ["Manual onboarding takes 3 weeks"]
        assert kb.metrics == []
        assert report.applied == 3
        assert report.filtered_low == 1
        assert report.changed is True

    def test_original_knowledge_base_untouched(self):
        knowledge = QualificationKnowledgeBase(competition=competition("Acme CRM"))

        reconcile_knowledge(knowledge, QualificationActions(competition=[action("remove", prior="Acme CRM")]))

        assert keys(knowledge.competition) == ["Acme CRM"]

    def test_no_actions_still_dedupes(self):
        knowledge = QualificationKnowledgeBase(competition=competition("Acme CRM", "acme crm"))

        report = reconcile_knowledge(knowledge, QualificationActions())

        assert keys(report.knowledge_base.competition) == ["Acme CRM"]
        assert report.deduplicated == 1
        assert report.applied == 0

    def test_no_changes_reports_unchanged(self):
        knowledge = QualificationKnowledgeBase(competition=competition("Acme CRM"))

        report = reconcile_knowledge(knowledge, QualificationActions())

        assert report.changed is False
        assert report.knowledge_base == knowledge


class TestDedupeEntries:

    def test_keeps_first_occurrence(self):
        entries = competition("HubSpot", "Acme CRM", "hubspot ")

        kept, dropped = dedupe_entries(entries)

        assert keys(kept) == ["HubSpot", "Acme CRM"]
        assert dropped == 1
