"""
Queue Worker

Background worker that drains the activity queue through a handler,
at most `max_concurrent` activities at a time.
"""

import asyncio
from typing import Callable, Awaitable
from loguru import logger

from deal_intel.message_queue.base import ActivityQueue, ActivityJob


class QueueWorker:
    """
    Background worker for queued activity jobs.

    A concurrency slot is taken before a job is dequeued, so jobs that cannot
    start yet stay pending in activity-date order. A handler exception sends
    the job back through the queue's retry logic; exceptions carrying
    `retryable = False` go straight to the dead letter queue.

    Attributes:
        queue: Activity queue to drain
        handler: Async function run for each job
        max_concurrent: Jobs processed at the same time
        poll_interval: Seconds to wait when nothing is ready
    """

    def __init__(
        self,
        queue: ActivityQueue,
        handler: Callable[[ActivityJob], Awaitable[None]],
        max_concurrent: int = 4,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.handler = handler
        self.max_concurrent = max_concurrent
        self.poll_interval = poll_interval
        self.processed = 0
        self.failed = 0
        self._running = False
        self._tasks: set[asyncio.Task] = set()
        self._slots = asyncio.Semaphore(max_concurrent)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """Poll and dispatch jobs until stop() is called."""
        if self._running:
            logger.warning("Worker already running")
            return

        self._running = True
        logger.info(
            f"🚀 Queue worker started (max_concurrent={self.max_concurrent}, "
            f"poll_interval={self.poll_interval}s)"
        )

        try:
            while self._running:
                await self._slots.acquire()
                job = await self.queue.dequeue() if self._running else None

                if job is None:
                    self._slots.release()
                    if self._running:
                        await asyncio.sleep(self.poll_interval)
                    continue

                task = asyncio.create_task(self._process_job(job))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

        except Exception as e:
            logger.opt(exception=e).error(f"Worker crashed: {e}")
            raise

        finally:
            logger.info(f"🛑 Queue worker stopped (processed={self.processed}, failed={self.failed})")

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Stop taking new jobs and let in-flight ones finish.
        Jobs still running after `timeout` seconds are cancelled.
        """
        if not self._running:
            return

        self._running = False

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} in-flight activities...")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._tasks, return_exceptions=True),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"{len(self._tasks)} activities still running after {timeout}s, cancelling")
                for task in list(self._tasks):
                    task.cancel()

    async def _process_job(self, job: ActivityJob) -> None:
        log = logger.bind(job_id=job.id, activity_id=job.activity_id, retry_count=job.retry_count)
        try:
            log.debug(f"Processing job {job.id} (retry {job.retry_count})")
            await self.handler(job)
            await self.queue.complete(job.id)
            self.processed += 1
            log.info(f"✅ Job {job.id} for activity {job.activity_id} processed")

        except Exception as e:
            self.failed += 1
            retryable = getattr(e, "retryable", True)
            log.bind(error=str(e), retryable=retryable).opt(exception=e).error(
                f"❌ Job {job.id} failed: {e}"
            )
            await self.queue.fail(job.id, str(e), retryable=retryable)

        finally:
            self._slots.release()
