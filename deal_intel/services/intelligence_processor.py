"""
Intelligence Processor

Connects activity ingestion to the intelligence pipeline through the
processing queue. Ingestion calls `submit`; the queue worker calls `handle`.
Failures surface to the queue, which retries with backoff and eventually
dead-letters the job.

An activity older than intelligence a deal already holds makes `handle` rebuild
that deal: its derived intelligence is reset in one commit and its activities
are replayed oldest first.
"""

import datetime as dt
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from deal_intel.config import Settings, get_settings
from deal_intel.core.errors import (
    DealReplayInProgressError,
    EntityNotFoundError,
    PartialProcessingError,
    PipelineError,
)
from deal_intel.core.intelligence_pipeline import IntelligencePipeline, PipelineResult
from deal_intel.core.pair_discovery import discover_pairs
from deal_intel.message_queue import ActivityJob, ActivityQueue, InMemoryActivityQueue, QueueWorker
from deal_intel.models.activity import ActivityBase
from deal_intel.models.base import as_utc
from deal_intel.models.deal import Deal
from deal_intel.repositories.store import intelligence_timestamp
from deal_intel.utils.observability import log_pipeline_event, logger


def is_historical_activity(
    activity: ActivityBase,
    grace_period_seconds: int = 300,
) -> bool:
    """
    True when the activity happened well before it reached the system.

    Imports and backfills arrive with old dates; live activities arrive within
    the grace period of when they happened.
    """
    lag = as_utc(activity.received_at) - as_utc(activity.date)
    return lag > dt.timedelta(seconds=grace_period_seconds)


def needs_replay(
    activity: ActivityBase,
    deal: Deal,
    grace_period_seconds: int = 300,
) -> bool:
    """
    True when the activity is older than intelligence the deal already holds.

    A deal that was never processed has nothing out of order.
    """
    if deal.last_intelligence_update is None:
        return False
    cutoff = as_utc(deal.last_intelligence_update) - dt.timedelta(seconds=grace_period_seconds)
    return intelligence_timestamp(activity) < cutoff


@dataclass
class ReplayResult:
    """
    Outcome of rebuilding one or more deals.

    Attributes:
        deal_ids: Deals that were reset
        activity_ids: Activities replayed, in the order they ran
        results: Pipeline result per replayed activity
        errors: Activities that failed or left pairs unprocessed
    """
    deal_ids: List[str]
    activity_ids: List[str] = field(default_factory=list)
    results: Dict[str, PipelineResult] = field(default_factory=dict)
    errors: Dict[str, PipelineError] = field(default_factory=dict)


def partial_failure(result: PipelineResult) -> Optional[PartialProcessingError]:
    """
    Error for a result with skipped pairs, or None when every pair ran.

    Not retryable when every skip is an input defect (a missing contact or deal).
    """
    if not result.skipped:
        return None
    retryable = not set(result.skipped) <= set(result.permanent_skips)
    logger.warning(
        f"Activity {result.activity_id}: {len(result.skipped)} pairs skipped "
        f"and left without receipts: {result.skipped}"
        + ("" if retryable else " (input defects only, not retrying)")
    )
    return PartialProcessingError(result.activity_id, result.skipped, retryable=retryable)


class IntelligenceProcessor:
    """
    Queue-backed entry point for intelligence processing.

    Usage:
        processor = IntelligenceProcessor(pipeline)
        await processor.submit_activity(activity)

        worker = processor.build_worker()
        await worker.start()

        await processor.reprocess_deal("deal-acme")
    """

    def __init__(
        self,
        pipeline: IntelligencePipeline,
        queue: Optional[ActivityQueue] = None,
        settings: Optional[Settings] = None,
    ):
        self.pipeline = pipeline
        self.queue = queue or InMemoryActivityQueue()
        self.settings = settings or get_settings()
        self._replaying: Set[str] = set()

    async def submit(
        self,
        activity_id: str,
        historical: bool = False,
        activity_date: Optional[dt.datetime] = None,
    ) -> str:
        """
        Queue an activity for processing.

        Args:
            activity_id: Activity to process
            historical: Mark the job as a historical backfill
            activity_date: When the activity happened; the queue runs earlier activities first

        Returns:
            Job ID
        """
        job = ActivityJob(
            activity_id=activity_id,
            activity_date=activity_date,
            historical=historical,
            max_retries=self.settings.queue_max_retries,
        )
        job_id = await self.queue.enqueue(job)
        logger.info(f"📥 Activity {activity_id} queued as job {job_id}")
        return job_id

    async def submit_activity(self, activity: ActivityBase) -> str:
        """Queue a stored activity in date order, flagging it as historical when it arrived late."""
        historical = is_historical_activity(activity, self.settings.historical_grace_period_seconds)
        return await self.submit(activity.id, historical=historical, activity_date=activity.date)

    async def _deals_to_replay(self, activity: ActivityBase) -> List[str]:
        """
        Deals the activity would update out of date order.

        Raises:
            DealReplayInProgressError: One of the activity's deals is being rebuilt
        """
        store = self.pipeline.store
        deal_ids = list(dict.fromkeys(pair.deal_id for pair in await discover_pairs(activity, store)))

        busy = self._replaying.intersection(deal_ids)
        if busy:
            raise DealReplayInProgressError(sorted(busy))

        stale = []
        for deal_id in deal_ids:
            deal = await store.get_deal(deal_id)
            if deal and needs_replay(activity, deal, self.settings.historical_grace_period_seconds):
                stale.append(deal_id)
        return stale

    async def handle(self, job: ActivityJob) -> PipelineResult:
        """
        Run the pipeline for one job.

        Raises whatever the pipeline raises so the queue can retry. When some
        pairs were skipped, the committed pairs keep their receipts and
        PartialProcessingError sends the job back so only the skipped pairs
        run on the next attempt. When every skip is an input defect (a missing
        contact or deal) the error is not retryable and the job dead-letters.

        An activity older than a deal's latest intelligence triggers a rebuild
        of that deal, and the activity is processed in its place in the replay.
        Jobs touching a deal under rebuild are sent back until it finishes.
        """
        if job.historical:
            logger.info(f"📜 Processing historical activity {job.activity_id}")

        activity = await self.pipeline.store.get_activity(job.activity_id)
        stale = await self._deals_to_replay(activity) if activity is not None else []

        if stale:
            logger.info(f"⏪ Activity {job.activity_id} predates intelligence on {stale}, rebuilding")
            replay = await self.reprocess_deals(stale)
            if job.activity_id in replay.errors:
                raise replay.errors[job.activity_id]
            if job.activity_id in replay.results:
                return replay.results[job.activity_id]

        result = await self.pipeline.process_activity(job.activity_id)

        log_pipeline_event(
            "job_processed",
            job.activity_id,
            job_id=job.id,
            historical=job.historical,
            retry_count=job.retry_count,
            discovered=result.discovered,
            processed=result.processed,
            skipped=len(result.skipped),
        )
        error = partial_failure(result)
        if error:
            raise error
        return result

    async def reprocess_deal(self, deal_id: str) -> ReplayResult:
        """Rebuild one deal's intelligence from its full activity history."""
        return await self.reprocess_deals([deal_id])

    async def reprocess_deals(self, deal_ids: List[str]) -> ReplayResult:
        """
        Reset the deals and replay their activities in date order.

        Each deal is reset in its own commit before anything is replayed. The
        union of the deals' activities then runs through the pipeline one at a
        time, oldest first. Activities that fail are kept in the result and
        queued again when their error is retryable.

        Raises:
            DealReplayInProgressError: One of the deals is already being rebuilt
            EntityNotFoundError: A deal does not exist
            CommitError: A reset failed
        """
        deal_ids = list(dict.fromkeys(deal_ids))
        busy = self._replaying.intersection(deal_ids)
        if busy:
            raise DealReplayInProgressError(sorted(busy))

        store = self.pipeline.store
        replay = ReplayResult(deal_ids=deal_ids)
        self._replaying.update(deal_ids)
        try:
            activities: Dict[str, ActivityBase] = {}
            for deal_id in deal_ids:
                deal = await store.get_deal(deal_id)
                if deal is None:
                    raise EntityNotFoundError(f"Deal {deal_id} not found")
                for activity in await store.find_deal_activities(deal):
                    activities.setdefault(activity.id, activity)

            for deal_id in deal_ids:
                await store.reset_deal_intelligence(deal_id)

            ordered = sorted(activities.values(), key=lambda activity: as_utc(activity.date))
            logger.info(f"♻️ Replaying {len(ordered)} activities for deals {deal_ids}")

            for activity in ordered:
                replay.activity_ids.append(activity.id)
                try:
                    result = await self.pipeline.process_activity(activity.id)
                except PipelineError as e:
                    logger.warning(f"Replay of activity {activity.id} failed: {e}")
                    replay.errors[activity.id] = e
                    continue
                replay.results[activity.id] = result
                error = partial_failure(result)
                if error:
                    replay.errors[activity.id] = error
        finally:
            self._replaying.difference_update(deal_ids)

        for activity_id, error in replay.errors.items():
            if getattr(error, "retryable", True):
                await self.submit(activity_id, historical=True, activity_date=activities[activity_id].date)

        logger.bind(
            event_type="deals_replayed",
            deal_ids=deal_ids,
            replayed=len(replay.activity_ids),
            failed=len(replay.errors),
        ).success(
            f"✅ Rebuilt deals {deal_ids}: "
            f"{len(replay.activity_ids)} activities replayed, {len(replay.errors)} failed"
        )
        return replay

    def build_worker(self) -> QueueWorker:
        """Worker draining this processor's queue."""

        async def handler(job: ActivityJob) -> None:
            await self.handle(job)

        return QueueWorker(
            queue=self.queue,
            handler=handler,
            max_concurrent=self.settings.worker_max_concurrent,
            poll_interval=self.settings.worker_poll_interval,
        )
