"""
Pipeline error taxonomy.
Input defects and primary-analyzer failures skip a pair; commit failures roll back the activity.
"""


class PipelineError(Exception):
    """Base class for intelligence pipeline failures."""
    retryable = True


class ActivityNotFoundError(PipelineError):
    """The activity id does not resolve to a stored activity."""
    retryable = False


class MissingSummaryError(PipelineError):
    """The activity has not been summarized yet; nothing can be derived from it."""
    pass


class EntityNotFoundError(PipelineError):
    """A contact or deal referenced by a pair no longer exists."""
    retryable = False


class PairAbortedError(PipelineError):
    """A primary analyzer (impact scorer or role assigner) failed for the pair."""
    pass


class CommitError(PipelineError):
    """Persisting the activity's results failed; nothing was written."""
    pass


class ConcurrentModificationError(CommitError):
    """An entity changed in storage between load and commit."""
    pass


class PartialProcessingError(PipelineError):
    """Some pairs were skipped; their results are missing until the activity is processed again."""

    def __init__(self, activity_id: str, skipped: dict, retryable: bool = True):
        self.activity_id = activity_id
        self.skipped = dict(skipped)
        self.retryable = retryable
        super().__init__(f"Activity {activity_id}: {len(self.skipped)} pairs skipped: {self.skipped}")


class DealReplayInProgressError(PipelineError):
    """A deal the activity touches is being rebuilt; the activity runs once the rebuild finishes."""

    def __init__(self, deal_ids):
        self.deal_ids = list(deal_ids)
        super().__init__(f"Deals being rebuilt: {self.deal_ids}")
