"""
Base Queue Interface

Abstract interface for the activity processing queue: chronological ordering,
retry with backoff, dead letter and metrics.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Sequence
from pydantic import BaseModel, Field, ConfigDict

# 1 minute, 5 minutes, 15 minutes, 1 hour, 6 hours
DEFAULT_RETRY_DELAYS: tuple[int, ...] = (60, 300, 900, 3600, 21600)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Job processing status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class ActivityJob(BaseModel):
    """
    One activity waiting to go through the intelligence pipeline.

    Attributes:
        id: Unique job identifier
        activity_id: Activity to process
        activity_date: When the activity happened; earlier activities run first
        historical: Activity predates its arrival by more than the grace period
        status: Current processing status
        retry_count: Attempts that have failed so far
        max_retries: Failed attempts allowed before dead letter
        created_at: Timestamp when job was queued
        scheduled_at: Not processed before this time (retry delays)
        error: Last error message if failed
    """
    model_config = ConfigDict(use_enum_values=True)

    id: str = ""
    activity_id: str
    activity_date: Optional[datetime] = None
    historical: bool = False
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    max_retries: int = 5
    created_at: datetime = Field(default_factory=_now)
    scheduled_at: datetime = Field(default_factory=_now)
    error: Optional[str] = None

    @property
    def sort_key(self) -> float:
        """Chronological position: the activity's date, or the enqueue time when unknown."""
        when = self.activity_date or self.created_at
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return when.timestamp()

    def is_ready(self, now: Optional[datetime] = None) -> bool:
        return self.scheduled_at <= (now or _now())

    def record_failure(self, error: str, retryable: bool, delays: Sequence[int]) -> bool:
        """
        Count a failed attempt and schedule the next one.

        Returns:
            True if the job will be retried, False if it belongs in dead letter
        """
        self.error = error
        self.retry_count += 1
        if not retryable or self.retry_count > self.max_retries:
            self.status = JobStatus.DEAD_LETTER
            return False

        delay = delays[min(self.retry_count, len(delays)) - 1] if delays else 0
        self.scheduled_at = _now() + timedelta(seconds=delay)
        self.status = JobStatus.PENDING
        return True

    def reset(self) -> None:
        """Fresh start for a job revived from dead letter."""
        self.retry_count = 0
        self.status = JobStatus.PENDING
        self.scheduled_at = _now()
        self.error = None


class QueueMetrics(BaseModel):
    """
    Queue performance metrics.

    Attributes:
        pending: Jobs awaiting processing, including those waiting out a retry delay
        processing: Jobs currently being processed
        completed: Total successful jobs
        failed: Total failed attempts
        dead_letter: Jobs in dead letter queue
        historical_pending: Pending jobs flagged as historical backfill
        avg_processing_time_ms: Average time from enqueue to completion
        error_rate: Percentage of failed attempts
    """
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    dead_letter: int = 0
    historical_pending: int = 0
    avg_processing_time_ms: float = 0.0
    error_rate: float = 0.0


class ActivityQueue(ABC):
    """Abstract activity queue. Backends decide storage; ordering and retry rules live on ActivityJob."""

    @abstractmethod
    async def enqueue(self, job: ActivityJob) -> str:
        """
        Add job to queue.

        An activity that already has a pending or in-flight job is not queued
        twice; the existing job id is returned instead.

        Returns:
            Job ID
        """
        pass

    @abstractmethod
    async def dequeue(self) -> Optional[ActivityJob]:
        """
        Next ready job, earliest activity first.

        Returns:
            None when nothing is ready yet
        """
        pass

    @abstractmethod
    async def complete(self, job_id: str) -> None:
        pass

    @abstractmethod
    async def fail(self, job_id: str, error: str, retryable: bool = True) -> None:
        """
        Record a failed attempt.

        Retryable failures are rescheduled with backoff until max_retries is
        exceeded; non-retryable ones go straight to dead letter.
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[ActivityJob]:
        pass

    @abstractmethod
    async def get_metrics(self) -> QueueMetrics:
        pass

    @abstractmethod
    async def get_dead_letter_jobs(self, limit: int = 100) -> list[ActivityJob]:
        pass

    @abstractmethod
    async def retry_dead_letter(self, job_id: str) -> None:
        """Move a dead-lettered job back to pending with its retry count reset."""
        pass
