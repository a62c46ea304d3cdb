"""
MongoDB document store backed by motor.

This module provides the production DocumentStore implementation. It wraps a
motor database handle and translates pymongo failures into StoreError.

Invariants:
    - Every pymongo error is logged with operation and collection, then re-raised
      as StoreError (DuplicateKeyError for unique index violations)
    - No retries are attempted here; the driver handles transport retries

How to change safely:
    - Keep method signatures in sync with store.base.DocumentStore
    - Test against a real MongoDB (>= 5.0 for lookup with pipeline + localField)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, Dict, List, Optional, TypeVar

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError as PyMongoDuplicateKeyError
from pymongo.errors import PyMongoError

from ..errors import DuplicateKeyError, StoreError
from .base import DeleteResult, Document, Filter, InsertResult, Update, UpdateResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MotorDocumentStore:
    """DocumentStore over a motor database.

    Example:
        >>> client = AsyncIOMotorClient("mongodb://localhost:27017", tz_aware=True)
        >>> store = MotorDocumentStore(client["app"])
        >>> await store.insert_one("users", {"name": "Ada"})
    """

    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        """Initialize the store.

        Args:
            database: Motor database handle
        """
        self._database = database

    @property
    def database(self) -> AsyncIOMotorDatabase:
        return self._database

    async def _run(self, operation: str, collection: str | None, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except PyMongoDuplicateKeyError as e:
            logger.error(
                f"Duplicate key in {operation}: {e}",
                extra={"operation": operation, "collection": collection},
            )
            raise DuplicateKeyError(str(e), collection=collection) from e
        except PyMongoError as e:
            logger.error(
                f"Store operation {operation} failed: {e}",
                exc_info=True,
                extra={"operation": operation, "collection": collection},
            )
            raise StoreError(str(e), operation=operation, collection=collection) from e

    async def find_one(
        self,
        collection: str,
        filter: Filter,
        projection: Optional[Dict[str, Any]] = None,
    ) -> Optional[Document]:
        return await self._run(
            "find_one",
            collection,
            self._database[collection].find_one(filter, projection),
        )

    async def insert_one(self, collection: str, document: Document) -> InsertResult:
        result = await self._run(
            "insert_one",
            collection,
            self._database[collection].insert_one(document),
        )
        return InsertResult(inserted_id=result.inserted_id)

    async def find_one_and_replace(
        self,
        collection: str,
        filter: Filter,
        document: Document,
    ) -> Optional[Document]:
        return await self._run(
            "find_one_and_replace",
            collection,
            self._database[collection].find_one_and_replace(
                filter, document, return_document=ReturnDocument.AFTER
            ),
        )

    async def find_one_and_update(
        self,
        collection: str,
        filter: Filter,
        update: Update,
        upsert: bool = False,
    ) -> Optional[Document]:
        return await self._run(
            "find_one_and_update",
            collection,
            self._database[collection].find_one_and_update(
                filter, update, upsert=upsert, return_document=ReturnDocument.AFTER
            ),
        )

    async def update_many(self, collection: str, filter: Filter, update: Update) -> UpdateResult:
        result = await self._run(
            "update_many",
            collection,
            self._database[collection].update_many(filter, update),
        )
        return UpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

    async def delete_one(self, collection: str, filter: Filter) -> DeleteResult:
        result = await self._run(
            "delete_one",
            collection,
            self._database[collection].delete_one(filter),
        )
        return DeleteResult(deleted_count=result.deleted_count)

    async def delete_many(self, collection: str, filter: Filter) -> DeleteResult:
        result = await self._run(
            "delete_many",
            collection,
            self._database[collection].delete_many(filter),
        )
        return DeleteResult(deleted_count=result.deleted_count)

    async def aggregate(self, collection: str, pipeline: List[Document]) -> List[Document]:
        cursor = self._database[collection].aggregate(pipeline)
        return await self._run("aggregate", collection, cursor.to_list(length=None))

    async def create_index(
        self,
        collection: str,
        keys: Dict[str, int],
        unique: bool = False,
    ) -> str:
        return await self._run(
            "create_index",
            collection,
            self._database[collection].create_index(list(keys.items()), unique=unique),
        )

    async def list_indexes(self, collection: str) -> List[Document]:
        cursor = self._database[collection].list_indexes()
        indexes = await self._run("list_indexes", collection, cursor.to_list(length=None))
        return [dict(index) for index in indexes]

    async def drop_indexes(self, collection: str) -> None:
        await self._run("drop_indexes", collection, self._database[collection].drop_indexes())

    async def list_collection_names(self) -> List[str]:
        return await self._run("list_collection_names", None, self._database.list_collection_names())
