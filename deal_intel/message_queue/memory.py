"""
In-Memory Activity Queue

Single-process queue for tests and CLI runs. Jobs are ordered by activity
date so history accumulates chronologically; state is lost on restart.
"""

import asyncio
import itertools
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from deal_intel.message_queue.base import (
    DEFAULT_RETRY_DELAYS,
    ActivityQueue,
    ActivityJob,
    QueueMetrics,
    JobStatus,
)


class InMemoryActivityQueue(ActivityQueue):
    """
    In-memory activity queue implementation.

    Pending jobs sit in an asyncio.PriorityQueue keyed by
    (activity date, insertion order). A job waiting out a retry delay never
    blocks later jobs that are ready.

    Suitable for:
    - Testing
    - One-off CLI runs

    Not suitable for:
    - More than one worker process
    - Anything that must survive a restart
    """

    def __init__(self, retry_delays: Optional[Sequence[int]] = None):
        """
        Args:
            retry_delays: Retry delay schedule in seconds (defaults to 1m/5m/15m/1h/6h)
        """
        self._jobs: dict[str, ActivityJob] = {}
        self._pending_queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._sequence = itertools.count()
        self._processing: set[str] = set()
        self._completed: set[str] = set()
        self._failed_attempts = 0
        self._dead_letter: dict[str, ActivityJob] = {}
        self._active_by_activity: dict[str, str] = {}
        self._processing_times: list[float] = []
        self._lock = asyncio.Lock()
        self._retry_delays = tuple(retry_delays) if retry_delays is not None else DEFAULT_RETRY_DELAYS

    def _push(self, job: ActivityJob) -> None:
        self._pending_queue.put_nowait((job.sort_key, next(self._sequence), job.id))

    async def enqueue(self, job: ActivityJob) -> str:
        async with self._lock:
            existing = self._active_by_activity.get(job.activity_id)
            if existing:
                return existing

            if not job.id:
                job.id = str(uuid.uuid4())

            self._jobs[job.id] = job
            self._active_by_activity[job.activity_id] = job.id
            self._push(job)
            return job.id

    async def dequeue(self) -> Optional[ActivityJob]:
        """
        Earliest ready job, or None.

        Waits briefly for work to appear. Entries still inside their retry delay
        are skipped over and put back.
        """
        try:
            entry = await asyncio.wait_for(self._pending_queue.get(), timeout=0.1)
        except asyncio.TimeoutError:
            return None

        async with self._lock:
            now = datetime.now(timezone.utc)
            deferred = []
            ready: Optional[ActivityJob] = None
            while True:
                job = self._jobs.get(entry[2])
                if job is not None and job.is_ready(now):
                    ready = job
                    break
                if job is not None:
                    deferred.append(entry)
                if self._pending_queue.empty():
                    break
                entry = self._pending_queue.get_nowait()

            for item in deferred:
                self._pending_queue.put_nowait(item)

            if ready is None:
                return None

            ready.status = JobStatus.PROCESSING
            self._processing.add(ready.id)
            return ready

    async def complete(self, job_id: str) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return

            job.status = JobStatus.COMPLETED
            self._processing.discard(job_id)
            self._completed.add(job_id)
            self._active_by_activity.pop(job.activity_id, None)

            elapsed_ms = (datetime.now(timezone.utc) - job.created_at).total_seconds() * 1000
            self._processing_times.append(elapsed_ms)
            if len(self._processing_times) > 1000:
                self._processing_times = self._processing_times[-1000:]

    async def fail(self, job_id: str, error: str, retryable: bool = True) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return

            self._processing.discard(job_id)
            self._failed_attempts += 1

            if job.record_failure(error, retryable, self._retry_delays):
                self._push(job)
            else:
                self._dead_letter[job_id] = job
                self._active_by_activity.pop(job.activity_id, None)

    async def get_job(self, job_id: str) -> Optional[ActivityJob]:
        async with self._lock:
            return self._jobs.get(job_id)

    async def get_metrics(self) -> QueueMetrics:
        async with self._lock:
            attempts = len(self._completed) + self._failed_attempts
            error_rate = self._failed_attempts / attempts * 100 if attempts else 0.0
            avg_time = (
                sum(self._processing_times) / len(self._processing_times)
                if self._processing_times
                else 0.0
            )
            historical_pending = sum(
                1 for job in self._jobs.values()
                if job.historical and job.status == JobStatus.PENDING
            )

            return QueueMetrics(
                pending=self._pending_queue.qsize(),
                processing=len(self._processing),
                completed=len(self._completed),
                failed=self._failed_attempts,
                dead_letter=len(self._dead_letter),
                historical_pending=historical_pending,
                avg_processing_time_ms=avg_time,
                error_rate=error_rate,
            )

    async def get_dead_letter_jobs(self, limit: int = 100) -> list[ActivityJob]:
        async with self._lock:
            return list(self._dead_letter.values())[:limit]

    async def retry_dead_letter(self, job_id: str) -> None:
        async with self._lock:
            job = self._dead_letter.pop(job_id, None)
            if not job:
                return

            job.reset()
            self._active_by_activity[job.activity_id] = job_id
            self._push(job)
