"""
Deal Knowledge Reconciler
Action-based (add/update/remove) merge of per-activity qualification signals into the
deal's MEDDPICC arrays.

Per category:
    1. Drop Low-relevance actions
    2. Order: remove, then update, then add
    3. Compare keys in normalized form (see utils.text.normalize_key)
    4. Post-pass drops any entry whose normalized key was already seen

After reconciliation no two entries in a category share a normalized key.
Anomalies (targets not found) are reported and logged, never raised.
"""
import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from loguru import logger

from deal_intel.models.base import Relevance, utc_now
from deal_intel.models.qualification import (
    ENTRY_TYPES,
    KnowledgeEntry,
    QualificationAction,
    QualificationActions,
    QualificationCategory,
    QualificationKnowledgeBase,
)
from deal_intel.utils.text import nearest_matches, normalize_key

_ACTION_ORDER = {"remove": 0, "update": 1, "add": 2}


@dataclass
class ReconciliationAnomaly:
    category: QualificationCategory
    action: str
    target: str
    nearest: List[Tuple[str, int]] = field(default_factory=list)
    fallback: Optional[str] = None


@dataclass
class CategoryReconciliation:
    entries: List[KnowledgeEntry]
    applied: int = 0
    skipped: int = 0
    filtered_low: int = 0
    deduplicated: int = 0
    anomalies: List[ReconciliationAnomaly] = field(default_factory=list)


@dataclass
class ReconciliationReport:
    knowledge_base: QualificationKnowledgeBase
    applied: int = 0
    skipped: int = 0
    filtered_low: int = 0
    deduplicated: int = 0
    anomalies: List[ReconciliationAnomaly] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.applied > 0 or self.deduplicated > 0


def order_actions(actions: List[QualificationAction]) -> List[QualificationAction]:
    """Stable sort: every remove, then every update, then every add."""
    return sorted(actions, key=lambda action: _ACTION_ORDER[action.action])


def _find_index(entries: List[KnowledgeEntry], target: str) -> Optional[int]:
    normalized = normalize_key(target)
    for index, entry in enumerate(entries):
        if normalize_key(entry.key) == normalized:
            return index
    return None


def _build_entry(
    category: QualificationCategory,
    action: QualificationAction,
    source_activity: Optional[str],
    now: dt.datetime,
) -> KnowledgeEntry:
    entry_type = ENTRY_TYPES[category]
    data = {
        entry_type.KEY_FIELD: action.value.strip(),
        "reason": action.reason,
        "confidence": action.confidence,
        "relevance": action.relevance,
        "metadata": dict(action.metadata),
        "source_activity": source_activity,
        "updated_at": now,
    }
    if "title" in entry_type.model_fields and action.title:
        data["title"] = action.title
    return entry_type(**data)


def _merge_entry(
    existing: KnowledgeEntry,
    action: QualificationAction,
    rename: bool,
    source_activity: Optional[str],
    now: dt.datetime,
) -> KnowledgeEntry:
    update = {
        "reason": action.reason or existing.reason,
        "confidence": action.confidence,
        "relevance": action.relevance,
        "metadata": {**existing.metadata, **action.metadata},
        "source_activity": source_activity or existing.source_activity,
        "updated_at": now,
    }
    if rename:
        update[existing.KEY_FIELD] = action.value.strip()
    if "title" in type(existing).model_fields and action.title:
        update["title"] = action.title
    return existing.model_copy(update=update)


def _diagnose(
    category: QualificationCategory,
    action: QualificationAction,
    target: str,
    entries: List[KnowledgeEntry],
    fallback: Optional[str] = None,
) -> ReconciliationAnomaly:
    nearest = nearest_matches(target, [entry.key for entry in entries])
    logger.warning(
        f"🔎 {category.value}: {action.action} target not found: '{target}'. "
        f"Nearest: {nearest or 'none'}"
        + (f" ({fallback})" if fallback else "")
    )
    return ReconciliationAnomaly(
        category=category,
        action=action.action,
        target=target,
        nearest=nearest,
        fallback=fallback,
    )


def dedupe_entries(entries: List[KnowledgeEntry]) -> Tuple[List[KnowledgeEntry], int]:
    """Keep the first entry for every normalized key."""
    seen: set[str] = set()
    kept: List[KnowledgeEntry] = []
    for entry in entries:
        normalized = normalize_key(entry.key)
        if normalized in seen:
            continue
        seen.add(normalized)
        kept.append(entry)
    return kept, len(entries) - len(kept)


def reconcile_category(
    category: QualificationCategory,
    entries: List[KnowledgeEntry],
    actions: List[QualificationAction],
    source_activity: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> CategoryReconciliation:
    """
    Apply one category's actions to its current entries.

    Args:
        category: Knowledge category being reconciled
        entries: Current entries (not mutated)
        actions: Proposed actions, in any order
        source_activity: Activity id recorded on touched entries
        now: Timestamp recorded on touched entries

    Returns:
        New entry list plus counters and anomalies
    """
    now = now or utc_now()
    result = CategoryReconciliation(entries=list(entries))

    relevant = [action for action in actions if action.relevance != Relevance.LOW]
    result.filtered_low = len(actions) - len(relevant)

    for action in order_actions(relevant):
        if action.action == "remove":
            target = (action.prior_value or action.value).strip()
            if not target:
                result.skipped += 1
                continue
            index = _find_index(result.entries, target)
            if index is None:
                result.anomalies.append(_diagnose(category, action, target, result.entries))
                result.skipped += 1
                continue
            del result.entries[index]
            result.applied += 1

        elif not action.value.strip():
            result.skipped += 1

        elif action.action == "update":
            target = action.prior_value or action.value
            index = _find_index(result.entries, target)
            if index is None:
                if action.prior_value:
                    result.anomalies.append(
                        _diagnose(category, action, target, result.entries, fallback="inserted as new")
                    )
                result.entries.append(_build_entry(category, action, source_activity, now))
                result.applied += 1
                continue
            result.entries[index] = _merge_entry(
                result.entries[index],
                action,
                rename=action.prior_value is not None,
                source_activity=source_activity,
                now=now,
            )
            result.applied += 1

        else:
            if _find_index(result.entries, action.value) is not None:
                logger.debug(f"{category.value}: duplicate add skipped: '{action.value}'")
                result.skipped += 1
                continue
            result.entries.append(_build_entry(category, action, source_activity, now))
            result.applied += 1

    result.entries, result.deduplicated = dedupe_entries(result.entries)
    return result


def reconcile_knowledge(
    knowledge_base: QualificationKnowledgeBase,
    actions: QualificationActions,
    source_activity: Optional[str] = None,
    now: Optional[dt.datetime] = None,
) -> ReconciliationReport:
    """Reconcile every category and return the new knowledge base with a summary report."""
    now = now or utc_now()
    report = ReconciliationReport(knowledge_base=knowledge_base)
    updated: Dict[str, List[KnowledgeEntry]] = {}

    for category in QualificationCategory:
        category_actions = actions.for_category(category)
        current = knowledge_base.entries(category)
        if not category_actions:
            # Existing data still gets the uniqueness backstop
            deduped, dropped = dedupe_entries(current)
            if dropped:
                updated[category.value] = deduped
                report.deduplicated += dropped
            continue

        outcome = reconcile_category(category, current, category_actions, source_activity, now)
        updated[category.value] = outcome.entries
        report.applied += outcome.applied
        report.skipped += outcome.skipped
        report.filtered_low += outcome.filtered_low
        report.deduplicated += outcome.deduplicated
        report.anomalies.extend(outcome.anomalies)

    if updated:
        report.knowledge_base = knowledge_base.model_copy(update=updated)

    logger.info(
        f"🧩 Knowledge reconciled: applied={report.applied}, skipped={report.skipped}, "
        f"low_filtered={report.filtered_low}, anomalies={len(report.anomalies)}"
    )
    return report
