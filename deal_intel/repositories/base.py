"""
Generic Repository Base Class
Typed reads and version-guarded writes shared by the intelligence repositories.
"""
from typing import Generic, TypeVar, Type, Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorCollection, AsyncIOMotorDatabase
from bson import ObjectId
import datetime as dt

from ..models.base import MongoBaseModel
from ..utils.observability import logger

T = TypeVar("T", bound=MongoBaseModel)


def to_object_id(value: str) -> ObjectId | str:
    """ObjectId for valid hex ids; other ids are stored as plain strings."""
    if isinstance(value, ObjectId):
        return value
    return ObjectId(value) if ObjectId.is_valid(value) else value


def version_filter(document_id: str, expected_version: int) -> Dict[str, Any]:
    """
    Match a document at the given version.

    Documents written by other services carry no version field; they load
    as version 0 and must match as such.
    """
    if expected_version == 0:
        return {
            "_id": to_object_id(document_id),
            "$or": [{"version": 0}, {"version": {"$exists": False}}],
        }
    return {"_id": to_object_id(document_id), "version": expected_version}


class BaseRepository(Generic[T]):
    """
    Generic async repository over one MongoDB collection.

    Every method accepts an optional client session so it can take part in a
    multi-document transaction.

    Usage:
        class ContactRepository(BaseRepository[Contact]):
            def __init__(self, database: AsyncIOMotorDatabase):
                super().__init__(database, "contacts", Contact)
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        collection_name: str,
        model_class: Type[T]
    ):
        self.database = database
        self.collection: AsyncIOMotorCollection = database[collection_name]
        self.model_class = model_class
        self.collection_name = collection_name

    async def find_by_id(
        self,
        document_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> Optional[T]:
        doc = await self.collection.find_one({"_id": to_object_id(document_id)}, session=session)
        return self._to_model(doc) if doc is not None else None

    async def find_by_ids(
        self,
        document_ids: List[str],
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> List[T]:
        """Several documents by id; missing ids are simply absent from the result."""
        if not document_ids:
            return []
        return await self.find_many(
            {"_id": {"$in": [to_object_id(i) for i in document_ids]}},
            limit=len(document_ids),
            session=session,
        )

    async def find_many(
        self,
        filter_dict: Dict[str, Any],
        limit: int = 100,
        sort: Optional[List[tuple]] = None,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> List[T]:
        """
        Documents matching the filter.

        Args:
            filter_dict: MongoDB query filter
            limit: Maximum number of documents to return
            sort: List of (field, direction) tuples
            session: Optional transaction session
        """
        cursor = self.collection.find(filter_dict, session=session)
        if sort:
            cursor = cursor.sort(sort)
        docs = await cursor.limit(limit).to_list(length=limit)
        return [self._to_model(doc) for doc in docs]

    async def versioned_update(
        self,
        document_id: str,
        expected_version: int,
        update: Dict[str, Any],
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> bool:
        """
        Apply an update only if the stored version still matches.

        The version is incremented and updated_at refreshed as part of the
        same write.

        Returns:
            False when another writer got there first
        """
        update = {key: dict(value) for key, value in update.items()}
        update.setdefault("$set", {})["updated_at"] = dt.datetime.now(dt.UTC)
        update.setdefault("$inc", {})["version"] = 1

        result = await self.collection.update_one(
            version_filter(document_id, expected_version),
            update,
            session=session,
        )
        if result.matched_count != 1:
            logger.warning(
                f"Version check failed in {self.collection_name}",
                extra={"document_id": document_id, "expected_version": expected_version},
            )
            return False
        return True

    def _to_model(self, doc: Dict[str, Any]) -> T:
        """MongoDB document to model instance; unknown keys are dropped."""
        if "_id" in doc:
            doc["_id"] = str(doc["_id"])

        model_fields = self.model_class.model_fields.keys()
        cleaned_doc = {
            k: v for k, v in doc.items()
            if k in model_fields or k == "_id"
        }
        return self.model_class.model_validate(cleaned_doc)
