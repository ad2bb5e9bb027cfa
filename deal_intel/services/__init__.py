"""Services package."""
from deal_intel.services.intelligence_processor import (
    IntelligenceProcessor,
    ReplayResult,
    is_historical_activity,
    needs_replay,
)

__all__ = [
    "IntelligenceProcessor",
    "ReplayResult",
    "is_historical_activity",
    "needs_replay",
]
