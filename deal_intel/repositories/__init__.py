"""
Repositories Layer
Data persistence and query operations for the intelligence pipeline.
"""
from .connection import db_manager, get_database, DatabaseManager
from .base import BaseRepository
from .contacts import ContactRepository
from .deals import DealRepository
from .activities import ActivityRepository
from .store import IntelligenceStore, CommitBatch, intelligence_timestamp
from .mongo_store import MongoIntelligenceStore
from .memory_store import InMemoryIntelligenceStore

__all__ = [
    "db_manager",
    "get_database",
    "DatabaseManager",
    "BaseRepository",
    "ContactRepository",
    "DealRepository",
    "ActivityRepository",
    "IntelligenceStore",
    "CommitBatch",
    "intelligence_timestamp",
    "MongoIntelligenceStore",
    "InMemoryIntelligenceStore",
]
