"""
Activity Processing Queue

Durable hand-off between activity ingestion and the intelligence pipeline:
- Abstract queue interface supporting multiple backends
- In-memory queue for testing and single-process runs
- Retry logic with exponential backoff
- Dead letter queue for activities that keep failing
- Queue metrics and monitoring
"""

from deal_intel.message_queue.base import ActivityQueue, ActivityJob, QueueMetrics, JobStatus
from deal_intel.message_queue.memory import InMemoryActivityQueue
from deal_intel.message_queue.worker import QueueWorker

__all__ = [
    "ActivityQueue",
    "ActivityJob",
    "QueueMetrics",
    "JobStatus",
    "InMemoryActivityQueue",
    "QueueWorker",
]
