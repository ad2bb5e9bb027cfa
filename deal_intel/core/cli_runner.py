"""
CLI Runner for the Intelligence Pipeline
Processes activities against MongoDB from the command line.

    python -m deal_intel.core.cli_runner <activity_id> [<activity_id> ...]
    python -m deal_intel.core.cli_runner --queue <activity_id> [...]
    python -m deal_intel.core.cli_runner --reprocess <deal_id> [...]
"""
import asyncio
import os
import sys
from typing import List, Optional

from loguru import logger

from deal_intel.config import get_settings
from deal_intel.core.errors import PipelineError
from deal_intel.core.intelligence_pipeline import IntelligencePipeline, PipelineResult
from deal_intel.message_queue import InMemoryActivityQueue
from deal_intel.repositories import MongoIntelligenceStore, db_manager
from deal_intel.services.intelligence_processor import IntelligenceProcessor
from deal_intel.utils.observability import configure_logging


def print_result(result: PipelineResult) -> None:
    print(f"\n{'─' * 70}")
    print(f"📄 Activity {result.activity_id}")
    print(f"{'─' * 70}")
    print(f"   Pairs discovered: {result.discovered}")
    print(f"   Pairs processed:  {result.processed}")
    print(f"   Committed:        {result.committed}")
    for pair, reason in result.skipped.items():
        print(f"   ⚠️  Skipped {pair}: {reason}")
    for deal_id, report in result.reconciliation.items():
        print(
            f"   🧩 Deal {deal_id}: applied={report.applied}, skipped={report.skipped}, "
            f"anomalies={len(report.anomalies)}"
        )
    print(f"   ⚡ Duration: {result.total_duration_ms:.0f}ms")


async def build_pipeline() -> IntelligencePipeline:
    settings = get_settings()
    if settings.openai_api_key:
        os.environ.setdefault("OPENAI_API_KEY", settings.openai_api_key)

    logger.info("🔌 Connecting to MongoDB...")
    await db_manager.connect()
    await db_manager.create_indexes()

    store = MongoIntelligenceStore(db_manager.client, db_manager.database)
    return IntelligencePipeline(store=store, settings=settings)


async def run_direct(activity_ids: List[str]) -> int:
    """Process each activity in turn; returns the number of failures."""
    failures = 0
    pipeline = await build_pipeline()
    try:
        for activity_id in activity_ids:
            try:
                print_result(await pipeline.process_activity(activity_id))
            except PipelineError as e:
                failures += 1
                logger.error(f"❌ Activity {activity_id} failed: {e}")
    finally:
        logger.info("🔌 Disconnecting from MongoDB...")
        await db_manager.disconnect()
    return failures


async def run_queued(activity_ids: List[str]) -> int:
    """Submit activities through the processing queue and drain it with a worker."""
    pipeline = await build_pipeline()
    # Short backoff for one-off runs
    processor = IntelligenceProcessor(
        pipeline,
        queue=InMemoryActivityQueue(retry_delays=[1, 5, 15]),
        settings=pipeline.settings,
    )
    worker = processor.build_worker()

    try:
        for activity_id in activity_ids:
            activity = await pipeline.store.get_activity(activity_id)
            if activity is None:
                # Dead-letters with ActivityNotFoundError
                await processor.submit(activity_id)
            else:
                await processor.submit_activity(activity)

        worker_task = asyncio.create_task(worker.start())
        while True:
            metrics = await processor.queue.get_metrics()
            if metrics.completed + metrics.dead_letter >= len(set(activity_ids)):
                break
            await asyncio.sleep(0.5)

        await worker.stop()
        await worker_task

        metrics = await processor.queue.get_metrics()
        print(f"\n📈 Queue: completed={metrics.completed}, dead_letter={metrics.dead_letter}")
        return metrics.dead_letter
    finally:
        await db_manager.disconnect()


async def run_reprocess(deal_ids: List[str]) -> int:
    """Rebuild the deals from their activity history; returns the number of failed activities."""
    pipeline = await build_pipeline()
    processor = IntelligenceProcessor(pipeline, settings=pipeline.settings)
    try:
        replay = await processor.reprocess_deals(deal_ids)
    except PipelineError as e:
        logger.error(f"❌ Rebuild of {deal_ids} failed: {e}")
        return 1
    finally:
        await db_manager.disconnect()

    for result in replay.results.values():
        print_result(result)
    for activity_id, error in replay.errors.items():
        print(f"   ❌ Activity {activity_id}: {error}")
    print(f"\n♻️ Deals {', '.join(replay.deal_ids)}: replayed={len(replay.activity_ids)}, failed={len(replay.errors)}")
    return len(replay.errors)


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    configure_logging()

    ids = [arg for arg in argv if not arg.startswith("--")]
    if not ids:
        print("usage: python -m deal_intel.core.cli_runner [--queue | --reprocess] <id> [...]")
        return 2

    if "--reprocess" in argv:
        runner = run_reprocess
    elif "--queue" in argv:
        runner = run_queued
    else:
        runner = run_direct
    failures = asyncio.run(runner(ids))
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
