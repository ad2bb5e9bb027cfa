"""
Intelligence Pipeline
The 5-phase orchestrator that turns one activity into committed deal intelligence.

Architecture:
    Activity → Pair Discovery
             → Phase 1 Collect (per pair, 5 analyzers in parallel)
             → Phase 2 Load (fresh snapshots, once per activity)
             → Phase 3 Apply (pure, per pair)
             → Phase 4 Aggregate (per deal, after all of its pairs)
             → Phase 5 Commit (single transaction)

Phases 1-3 for a pair run under the pair semaphore; inference calls are
additionally bounded by the gateway's own semaphore.
"""
import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

from loguru import logger

from deal_intel.agents.behavioral_agent import BehavioralSignalExtractor
from deal_intel.agents.communication_agent import CommunicationPatternAnalyzer
from deal_intel.agents.deal_summary_agent import DealNarrativeGenerator
from deal_intel.agents.impact_agent import ActivityImpactScorer
from deal_intel.agents.qualification_agent import QualificationAgent
from deal_intel.agents.relationship_story_agent import RelationshipNarrativeGenerator
from deal_intel.agents.responsiveness_agent import ResponsivenessClassifier
from deal_intel.agents.role_agent import RoleAssigner
from deal_intel.config import Settings, get_settings
from deal_intel.core.deal_health import apply_deal_health, compute_deal_health
from deal_intel.core.errors import (
    ActivityNotFoundError,
    EntityNotFoundError,
    MissingSummaryError,
    PairAbortedError,
)
from deal_intel.core.intelligence_application import apply_contact_delta, apply_story
from deal_intel.core.knowledge_reconciler import ReconciliationReport, reconcile_knowledge
from deal_intel.core.pair_discovery import Pair, discover_pairs
from deal_intel.models.activity import ActivityBase, ActivitySummaryPayload, ProcessingReceipt, read_summary
from deal_intel.models.analysis import ContactDelta
from deal_intel.models.base import utc_now
from deal_intel.models.contact import Contact
from deal_intel.models.deal import Deal, NarrativeEntry
from deal_intel.models.intelligence import RelationshipIntelligence
from deal_intel.repositories.store import CommitBatch, IntelligenceStore, intelligence_timestamp
from deal_intel.utils.inference_gateway import InferenceError, InferenceGateway, PydanticAIGateway
from deal_intel.utils.observability import log_phase, log_pipeline_event

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SnapshotCache(Generic[K, V]):
    """
    Loads each key at most once; concurrent callers share the same load.
    Used so a contact or deal touched by several pairs is loaded once per activity.
    """

    def __init__(self, loader: Callable[[K], Awaitable[V]]):
        self._loader = loader
        self._loads: Dict[K, asyncio.Future] = {}

    async def get(self, key: K) -> V:
        load = self._loads.get(key)
        if load is None:
            load = asyncio.ensure_future(self._loader(key))
            self._loads[key] = load
        return await asyncio.shield(load)


@dataclass
class PairResult:
    pair: Pair
    contact: Contact
    deal: Deal
    record: RelationshipIntelligence


@dataclass
class DealResult:
    deal: Deal
    reconciliation: Optional[ReconciliationReport] = None
    narrative_generated: bool = False


@dataclass
class PipelineResult:
    """
    Outcome of processing one activity.

    Either every processed pair is committed with receipts, or nothing is
    (the commit raises). Fewer processed than discovered means some pairs
    were skipped; `skipped` says why. Pairs in `permanent_skips` failed on
    an input defect that another attempt cannot fix.
    """
    activity_id: str
    discovered: int = 0
    processed: int = 0
    committed: bool = False
    skipped: Dict[str, str] = field(default_factory=dict)
    permanent_skips: List[str] = field(default_factory=list)
    deals_updated: List[str] = field(default_factory=list)
    reconciliation: Dict[str, ReconciliationReport] = field(default_factory=dict)
    total_duration_ms: float = 0.0


def _pair_key(pair: Pair) -> str:
    return f"{pair.contact_id}:{pair.deal_id}"


class IntelligencePipeline:
    """
    Orchestrates intelligence processing for one activity at a time.

    Usage:
        >>> pipeline = IntelligencePipeline(store=MongoIntelligenceStore(client, db))
        >>> result = await pipeline.process_activity("665f0c...")
        >>> print(result.processed, result.committed)
    """

    def __init__(
        self,
        store: IntelligenceStore,
        gateway: InferenceGateway | None = None,
        settings: Settings | None = None,
        impact_scorer: ActivityImpactScorer | None = None,
        behavioral_extractor: BehavioralSignalExtractor | None = None,
        communication_analyzer: CommunicationPatternAnalyzer | None = None,
        responsiveness_classifier: ResponsivenessClassifier | None = None,
        role_assigner: RoleAssigner | None = None,
        story_generator: RelationshipNarrativeGenerator | None = None,
        deal_narrative_generator: DealNarrativeGenerator | None = None,
        qualification_agent: QualificationAgent | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            store: Storage backend
            gateway: Shared inference gateway (PydanticAI-backed if None)
            settings: Settings instance (uses global settings if None)
            Remaining arguments: analyzer instances (built on the shared gateway if None)
        """
        self.store = store
        self.settings = settings or get_settings()
        self.gateway = gateway or PydanticAIGateway(self.settings)

        # Allow dependency injection for testing
        self.impact_scorer = impact_scorer or ActivityImpactScorer(self.gateway, self.settings)
        self.behavioral_extractor = behavioral_extractor or BehavioralSignalExtractor(self.gateway, self.settings)
        self.communication_analyzer = communication_analyzer or CommunicationPatternAnalyzer(self.gateway, self.settings)
        self.responsiveness_classifier = responsiveness_classifier or ResponsivenessClassifier(self.gateway, self.settings)
        self.role_assigner = role_assigner or RoleAssigner(self.gateway, self.settings)
        self.story_generator = story_generator or RelationshipNarrativeGenerator(self.gateway, self.settings)
        self.deal_narrative_generator = deal_narrative_generator or DealNarrativeGenerator(self.gateway, self.settings)
        self.qualification_agent = qualification_agent or QualificationAgent(self.gateway, self.settings)

        self._pair_semaphore = asyncio.Semaphore(self.settings.pair_concurrency)

        logger.info(
            f"Intelligence pipeline initialized (pair_concurrency={self.settings.pair_concurrency}, "
            f"inference_concurrency={self.settings.inference_concurrency})"
        )

    async def process_activity(self, activity_id: str) -> PipelineResult:
        """
        Process one activity end to end.

        Args:
            activity_id: Id of a stored, summarized activity

        Returns:
            PipelineResult describing what was committed and what was skipped

        Raises:
            ActivityNotFoundError: Unknown activity id
            MissingSummaryError: Activity not summarized yet
            CommitError: Phase 5 failed; nothing was written and the call may be retried
        """
        with logger.contextualize(activity_id=activity_id):
            return await self._process(activity_id)

    async def _process(self, activity_id: str) -> PipelineResult:
        start_time = time.time()
        result = PipelineResult(activity_id=activity_id)

        activity = await self.store.get_activity(activity_id)
        if activity is None:
            raise ActivityNotFoundError(f"Activity {activity_id} not found")

        payload = read_summary(activity.summary)
        if payload is None:
            raise MissingSummaryError(f"Activity {activity_id} has no summary yet")

        logger.info(f"🎬 Starting intelligence processing for {activity.kind} {activity_id}")

        pairs = await discover_pairs(activity, self.store)
        result.discovered = len(pairs)
        log_pipeline_event("pairs_discovered", activity_id, pairs=len(pairs))

        if not pairs:
            logger.info(f"No unprocessed pairs for activity {activity_id}, nothing to do")
            result.total_duration_ms = (time.time() - start_time) * 1000
            return result

        # Phase 2 snapshots, loaded once per activity and shared by all pairs
        contacts = SnapshotCache(self.store.get_contact)
        deals = SnapshotCache(self.store.get_deal)

        # Phases 1-3
        phase_start = time.time()
        pair_results = await self._run_pairs(pairs, activity, contacts, deals, result)
        log_phase(
            "collect_load_apply",
            activity_id,
            duration_ms=(time.time() - phase_start) * 1000,
            pairs=len(pairs),
            succeeded=len(pair_results),
            skipped=len(result.skipped),
        )

        if not pair_results:
            logger.warning(f"All {len(pairs)} pairs skipped for activity {activity_id}")
            result.total_duration_ms = (time.time() - start_time) * 1000
            return result

        # Phase 4 (barrier: every pair of every deal has finished Phase 3)
        phase_start = time.time()
        by_deal: Dict[str, List[PairResult]] = defaultdict(list)
        for pair_result in pair_results:
            by_deal[pair_result.pair.deal_id].append(pair_result)

        deal_results = await asyncio.gather(*[
            self._aggregate_deal(deal_results_for, activity, payload)
            for deal_results_for in by_deal.values()
        ])
        log_phase(
            "aggregate",
            activity_id,
            duration_ms=(time.time() - phase_start) * 1000,
            deals=len(deal_results),
        )

        # Phase 5
        phase_start = time.time()
        batch = self._build_batch(activity, pair_results, deal_results)
        await self.store.commit(batch)
        log_phase(
            "commit",
            activity_id,
            duration_ms=(time.time() - phase_start) * 1000,
            contacts=len(batch.contacts),
            deals=len(batch.deals),
            receipts=len(batch.receipts),
        )

        result.processed = len(batch.receipts)
        result.committed = True
        result.deals_updated = [deal_result.deal.id for deal_result in deal_results]
        result.reconciliation = {
            deal_result.deal.id: deal_result.reconciliation
            for deal_result in deal_results
            if deal_result.reconciliation is not None
        }
        result.total_duration_ms = (time.time() - start_time) * 1000

        log_pipeline_event(
            "activity_committed",
            activity_id,
            discovered=result.discovered,
            processed=result.processed,
            skipped=len(result.skipped),
            duration_ms=round(result.total_duration_ms, 2),
        )
        return result

    # ------------------------------------------------------------------
    # Phases 1-3
    # ------------------------------------------------------------------

    async def _run_pairs(
        self,
        pairs: List[Pair],
        activity: ActivityBase,
        contacts: SnapshotCache,
        deals: SnapshotCache,
        result: PipelineResult,
    ) -> List[PairResult]:
        tasks = {
            asyncio.create_task(self._process_pair(pair, activity, contacts, deals)): pair
            for pair in pairs
        }
        done, pending = await asyncio.wait(tasks, timeout=self.settings.activity_deadline_seconds)

        for task in pending:
            task.cancel()
            result.skipped[_pair_key(tasks[task])] = "activity deadline exceeded"
        if pending:
            logger.warning(
                f"⏱️ Activity deadline of {self.settings.activity_deadline_seconds}s reached, "
                f"dropping {len(pending)} unfinished pairs"
            )
            await asyncio.gather(*pending, return_exceptions=True)

        succeeded: List[PairResult] = []
        for task in done:
            pair = tasks[task]
            error = task.exception()
            if error is None:
                succeeded.append(task.result())
                continue
            if isinstance(error, (PairAbortedError, EntityNotFoundError)):
                logger.warning(f"⚠️ Pair {_pair_key(pair)} skipped: {error}")
            else:
                logger.opt(exception=error).error(f"❌ Pair {_pair_key(pair)} failed unexpectedly: {error}")
            result.skipped[_pair_key(pair)] = str(error)
            if not getattr(error, "retryable", True):
                result.permanent_skips.append(_pair_key(pair))

        # Stable order keeps commits deterministic
        order = {pair: index for index, pair in enumerate(pairs)}
        succeeded.sort(key=lambda pair_result: order[pair_result.pair])
        return succeeded

    async def _process_pair(
        self,
        pair: Pair,
        activity: ActivityBase,
        contacts: SnapshotCache,
        deals: SnapshotCache,
    ) -> PairResult:
        async with self._pair_semaphore:
            logger.info(f"Step 1/3: Collecting intelligence for pair {_pair_key(pair)}")
            delta = await self._collect(pair, activity)

            logger.info(f"Step 2/3: Loading entities for pair {_pair_key(pair)}")
            contact = await contacts.get(pair.contact_id)
            deal = await deals.get(pair.deal_id)
            if contact is None:
                raise EntityNotFoundError(f"Contact {pair.contact_id} not found")
            if deal is None:
                raise EntityNotFoundError(f"Deal {pair.deal_id} not found")

            logger.info(f"Step 3/3: Applying intelligence for pair {_pair_key(pair)}")
            record = apply_contact_delta(
                contact.intelligence_for(deal.id),
                delta,
                activity_id=activity.id,
                activity_date=activity.date,
                analyzed_at=utc_now(),
            )

            try:
                story = await self.story_generator.generate(contact, deal, record)
                record = apply_story(record, story)
            except InferenceError as e:
                logger.warning(f"Relationship story not regenerated for {_pair_key(pair)}, keeping prior: {e}")

            return PairResult(pair=pair, contact=contact, deal=deal, record=record)

    async def _collect(self, pair: Pair, activity: ActivityBase) -> ContactDelta:
        contact = await self.store.get_contact(pair.contact_id)
        deal = await self.store.get_deal(pair.deal_id)
        if contact is None:
            raise EntityNotFoundError(f"Contact {pair.contact_id} not found")
        if deal is None:
            raise EntityNotFoundError(f"Deal {pair.deal_id} not found")

        history = await self._history(contact, deal, activity)
        record = contact.intelligence_for(deal.id)

        impact, role, indicators, pattern, responsiveness = await asyncio.gather(
            self.impact_scorer.score(contact, deal, activity),
            self.role_assigner.assign(contact, deal, activity, record),
            self.behavioral_extractor.extract(contact, deal, activity),
            self.communication_analyzer.analyze(contact, deal, history),
            self.responsiveness_classifier.classify(contact, deal, history),
            return_exceptions=True,
        )

        for outcome in (impact, role, indicators, pattern, responsiveness):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        if isinstance(impact, Exception):
            raise PairAbortedError(f"impact scoring failed: {impact}") from impact
        if isinstance(role, Exception):
            raise PairAbortedError(f"role assignment failed: {role}") from role

        key = _pair_key(pair)
        if isinstance(indicators, Exception):
            logger.warning(f"Behavioral signals omitted for {key}: {indicators}")
            indicators = []
        if isinstance(pattern, Exception):
            logger.warning(f"Communication pattern omitted for {key}: {pattern}")
            pattern = None
        if isinstance(responsiveness, Exception):
            logger.warning(f"Responsiveness omitted for {key}: {responsiveness}")
            responsiveness = None

        return ContactDelta(
            impact=impact,
            role=role,
            indicators=indicators,
            pattern=pattern,
            responsiveness=responsiveness,
        )

    async def _history(self, contact: Contact, deal: Deal, activity: ActivityBase) -> List[Any]:
        contact_ids = list(dict.fromkeys([contact.id, *deal.contact_ids]))
        history = await self.store.find_activity_history(contact_ids, until=activity.date)
        if all(item.id != activity.id for item in history):
            history.append(activity)
        return history

    # ------------------------------------------------------------------
    # Phase 4
    # ------------------------------------------------------------------

    async def _stakeholders(
        self,
        deal: Deal,
        pair_results: List[PairResult],
    ) -> List[Tuple[Contact, RelationshipIntelligence]]:
        """Every contact on the deal with its current record; processed contacts use their new record."""
        updated = {pair_result.contact.id: pair_result for pair_result in pair_results}
        others = [contact_id for contact_id in deal.contact_ids if contact_id not in updated]

        stakeholders = [(pr.contact, pr.record) for pr in pair_results]
        for contact in await self.store.get_contacts(others):
            if deal.id in contact.relationship_intelligence:
                stakeholders.append((contact, contact.relationship_intelligence[deal.id]))
        return stakeholders

    async def _aggregate_deal(
        self,
        pair_results: List[PairResult],
        activity: ActivityBase,
        payload: ActivitySummaryPayload,
    ) -> DealResult:
        deal = pair_results[0].deal
        outcome = DealResult(deal=deal)

        logger.info(f"Step 1/3: Reconciling qualification knowledge for deal {deal.id}")
        try:
            actions = await self.qualification_agent.propose(deal, activity, payload)
            report = reconcile_knowledge(deal.qualification, actions, source_activity=activity.id)
            deal = deal.model_copy(update={"qualification": report.knowledge_base})
            outcome.reconciliation = report
        except InferenceError as e:
            logger.warning(f"Qualification knowledge unchanged for deal {deal.id}: {e}")

        logger.info(f"Step 2/3: Computing health indicators for deal {deal.id}")
        stakeholders = await self._stakeholders(deal, pair_results)
        health = compute_deal_health(
            deal,
            [record for _, record in stakeholders],
            as_of=activity.date,
            source_activity=activity.id,
            settings=self.settings,
        )
        deal = apply_deal_health(deal, health)

        logger.info(f"Step 3/3: Regenerating deal narrative for deal {deal.id}")
        try:
            narrative = await self.deal_narrative_generator.generate(deal, stakeholders, health)
            deal = deal.model_copy(update={
                "latest_deal_narrative": narrative,
                "deal_narrative_history": [
                    *deal.deal_narrative_history,
                    NarrativeEntry(narrative=narrative, source_activity=activity.id),
                ],
            })
            outcome.narrative_generated = True
        except InferenceError as e:
            logger.warning(f"Deal narrative not regenerated for {deal.id}, keeping prior: {e}")

        outcome.deal = deal
        return outcome

    # ------------------------------------------------------------------
    # Phase 5
    # ------------------------------------------------------------------

    def _build_batch(
        self,
        activity: ActivityBase,
        pair_results: List[PairResult],
        deal_results: List[DealResult],
    ) -> CommitBatch:
        """Merge every deal-scoped record of a contact into one snapshot per contact."""
        merged: Dict[str, Contact] = {}
        contact_deals: Dict[str, List[str]] = defaultdict(list)

        for pair_result in pair_results:
            contact_id = pair_result.contact.id
            base = merged.get(contact_id, pair_result.contact)
            merged[contact_id] = base.with_intelligence(pair_result.record)
            contact_deals[contact_id].append(pair_result.pair.deal_id)

        now = utc_now()
        return CommitBatch(
            activity_id=activity.id,
            intelligence_timestamp=intelligence_timestamp(activity, now),
            contacts=list(merged.values()),
            contact_deals=dict(contact_deals),
            deals=[deal_result.deal for deal_result in deal_results],
            receipts=[
                ProcessingReceipt(
                    contact_id=pair_result.pair.contact_id,
                    deal_id=pair_result.pair.deal_id,
                    processed_at=now,
                )
                for pair_result in pair_results
            ],
        )
