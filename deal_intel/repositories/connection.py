"""
MongoDB Connection Management
Singleton Motor client shared by the intelligence store, plus index setup.
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from typing import Any, Dict, List, Optional, Tuple
from ..config import Settings, get_settings
from ..utils.observability import logger

# (collection, keys, options) for every index the pipeline's queries rely on
INDEXES: List[Tuple[str, Any, Dict[str, Any]]] = [
    # Pair discovery by prospect and participant lookup by address
    ("contacts", "prospect_id", {"name": "idx_contact_prospect", "sparse": True}),
    ("contacts", "emails", {"name": "idx_contact_emails"}),
    # Deal selection: a contact's deals, most recently updated first
    ("deals", [("contact_ids", 1), ("updated_at", -1)], {"name": "idx_deal_contacts_updated"}),
    # History windows and thread metrics
    ("activities", [("contact_ids", 1), ("date", -1)], {"name": "idx_activity_contacts_date"}),
    ("activities", "thread_id", {"name": "idx_activity_thread", "sparse": True}),
    # Deal rebuilds: pinned activities and receipts to pull
    ("activities", "deal_id", {"name": "idx_activity_deal", "sparse": True}),
    ("activities", "processed_for.deal_id", {"name": "idx_activity_receipt_deal"}),
]


class DatabaseManager:
    """
    Singleton MongoDB client manager.
    The intelligence commit needs a replica set or sharded cluster for transactions.
    """

    _instance: Optional["DatabaseManager"] = None
    _client: Optional[AsyncIOMotorClient] = None
    _database: Optional[AsyncIOMotorDatabase] = None

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def connect(self, settings: Optional[Settings] = None) -> None:
        """
        Open the client with the configured pool. Safe to call repeatedly;
        a client that no longer answers pings (closed event loop, lost
        connection) is replaced.
        """
        if self._client:
            try:
                await self._client.admin.command("ping")
                return
            except (PyMongoError, RuntimeError) as e:
                logger.warning(f"🔁 MongoDB client unusable ({e}), rebuilding")
                self._client = None
                self._database = None

        settings = settings or get_settings()
        logger.bind(
            database=settings.mongodb_database,
            max_pool_size=settings.mongodb_max_pool_size,
            environment=settings.environment,
        ).info("🔌 Connecting to MongoDB")

        self._client = AsyncIOMotorClient(
            settings.mongodb_uri,
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
            tz_aware=True,
        )
        self._database = self._client[settings.mongodb_database]

    async def disconnect(self) -> None:
        if self._client is None:
            return

        self._client.close()
        self._client = None
        self._database = None
        logger.info("MongoDB connection closed")

    @property
    def database(self) -> AsyncIOMotorDatabase:
        if self._database is None:
            raise RuntimeError(
                "Database not connected. Call await db_manager.connect() first."
            )
        return self._database

    @property
    def client(self) -> AsyncIOMotorClient:
        if self._client is None:
            raise RuntimeError(
                "Database client not connected. Call await db_manager.connect() first."
            )
        return self._client

    async def supports_transactions(self) -> bool:
        """True when the server is a replica set member or a mongos."""
        hello = await self.client.admin.command("hello")
        return "setName" in hello or hello.get("msg") == "isdbgrid"

    async def create_indexes(self) -> None:
        db = self.database
        for collection, keys, options in INDEXES:
            await db[collection].create_index(keys, **options)
        logger.success(f"✅ {len(INDEXES)} MongoDB indexes ensured")


db_manager = DatabaseManager()


async def get_database() -> AsyncIOMotorDatabase:
    """Connected database of the shared manager."""
    return db_manager.database
