"""
In-memory document store implementation for testing.

This module provides a simple in-memory DocumentStore for:
- Unit tests
- Integration tests
- Local development without a running MongoDB

Invariants:
    - All data is lost on process exit
    - Every operation runs under one asyncio lock, so each call is atomic
    - Documents are deep-copied on the way in and out; callers never share state
      with the store

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the DocumentStore protocol
    - Add evaluator features in store/evaluate.py, not here
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from bson import ObjectId

from ..errors import DuplicateKeyError
from .base import DeleteResult, Document, Filter, InsertResult, Update, UpdateResult
from .evaluate import apply_update, match_filter, run_pipeline

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Thread safety:
        Uses an asyncio lock. Safe to use from multiple coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.insert_one("users", {"name": "Ada"})
        >>> await store.aggregate("users", [{"$match": {"name": "Ada"}}])
    """

    def __init__(self) -> None:
        self._collections: Dict[str, List[Document]] = defaultdict(list)
        self._unique_indexes: Dict[str, List[tuple[str, ...]]] = defaultdict(list)
        self._indexes: Dict[str, List[Document]] = defaultdict(list)
        self._lock = asyncio.Lock()

    # =========================
    # Testing helpers
    # =========================
    def documents(self, collection: str) -> List[Document]:
        """Copies of every stored document in a collection."""
        return copy.deepcopy(self._collections.get(collection, []))

    def clear(self) -> None:
        """Remove every collection and index."""
        self._collections.clear()
        self._unique_indexes.clear()
        self._indexes.clear()

    # =========================
    # Internal
    # =========================
    def _find(self, collection: str, filter: Filter) -> Optional[int]:
        for position, doc in enumerate(self._collections.get(collection, [])):
            if match_filter(doc, filter):
                return position
        return None

    def _check_unique(self, collection: str, document: Document, skip: Optional[int] = None) -> None:
        for keys in self._unique_indexes.get(collection, []):
            values = tuple(document.get(key) for key in keys)
            for position, existing in enumerate(self._collections[collection]):
                if position == skip:
                    continue
                if tuple(existing.get(key) for key in keys) == values:
                    raise DuplicateKeyError(
                        f"Duplicate key for index {keys} with value {values}",
                        collection=collection,
                    )

    def _insert(self, collection: str, document: Document) -> Document:
        stored = copy.deepcopy(document)
        if "_id" not in stored:
            stored["_id"] = ObjectId()
        self._check_unique(collection, stored)
        self._collections[collection].append(stored)
        return stored

    # =========================
    # DocumentStore
    # =========================
    async def find_one(
        self,
        collection: str,
        filter: Filter,
        projection: Optional[Dict[str, Any]] = None,
    ) -> Optional[Document]:
        async with self._lock:
            pipeline: List[Document] = [{"$match": filter}, {"$limit": 1}]
            if projection:
                pipeline.append({"$project": projection})
            found = run_pipeline(self._collections.get(collection, []), pipeline)
            return found[0] if found else None

    async def insert_one(self, collection: str, document: Document) -> InsertResult:
        async with self._lock:
            stored = self._insert(collection, document)
            logger.debug(f"Inserted {stored['_id']} into {collection}")
            return InsertResult(inserted_id=stored["_id"])

    async def find_one_and_replace(
        self,
        collection: str,
        filter: Filter,
        document: Document,
    ) -> Optional[Document]:
        async with self._lock:
            position = self._find(collection, filter)
            if position is None:
                return None
            replacement = copy.deepcopy(document)
            replacement["_id"] = self._collections[collection][position]["_id"]
            self._check_unique(collection, replacement, skip=position)
            self._collections[collection][position] = replacement
            return copy.deepcopy(replacement)

    async def find_one_and_update(
        self,
        collection: str,
        filter: Filter,
        update: Update,
        upsert: bool = False,
    ) -> Optional[Document]:
        async with self._lock:
            position = self._find(collection, filter)
            if position is None:
                if not upsert:
                    return None
                seed = {
                    key: value for key, value in filter.items()
                    if not key.startswith("$") and not isinstance(value, dict)
                }
                seed["_id"] = ObjectId()
                stored = self._insert(collection, apply_update(seed, update, is_insert=True))
                return copy.deepcopy(stored)

            updated = apply_update(self._collections[collection][position], update)
            self._check_unique(collection, updated, skip=position)
            self._collections[collection][position] = updated
            return copy.deepcopy(updated)

    async def update_many(self, collection: str, filter: Filter, update: Update) -> UpdateResult:
        async with self._lock:
            matched = 0
            modified = 0
            docs = self._collections.get(collection, [])
            for position, doc in enumerate(docs):
                if not match_filter(doc, filter):
                    continue
                matched += 1
                updated = apply_update(doc, update)
                if updated != doc:
                    docs[position] = updated
                    modified += 1
            return UpdateResult(matched_count=matched, modified_count=modified)

    async def delete_one(self, collection: str, filter: Filter) -> DeleteResult:
        async with self._lock:
            position = self._find(collection, filter)
            if position is None:
                return DeleteResult(deleted_count=0)
            del self._collections[collection][position]
            return DeleteResult(deleted_count=1)

    async def delete_many(self, collection: str, filter: Filter) -> DeleteResult:
        async with self._lock:
            docs = self._collections.get(collection, [])
            kept = [doc for doc in docs if not match_filter(doc, filter)]
            deleted = len(docs) - len(kept)
            if collection in self._collections:
                self._collections[collection] = kept
            return DeleteResult(deleted_count=deleted)

    async def aggregate(self, collection: str, pipeline: List[Document]) -> List[Document]:
        async with self._lock:
            return run_pipeline(
                self._collections.get(collection, []),
                pipeline,
                resolve_collection=lambda name: self._collections.get(name, []),
            )

    async def create_index(
        self,
        collection: str,
        keys: Dict[str, int],
        unique: bool = False,
    ) -> str:
        async with self._lock:
            name = "_".join(f"{key}_{direction}" for key, direction in keys.items())
            if not any(index["name"] == name for index in self._indexes[collection]):
                self._indexes[collection].append({"name": name, "key": dict(keys), "unique": unique})
                if unique:
                    self._unique_indexes[collection].append(tuple(keys))
            return name

    async def list_indexes(self, collection: str) -> List[Document]:
        async with self._lock:
            return [{"name": "_id_", "key": {"_id": 1}}] + copy.deepcopy(self._indexes.get(collection, []))

    async def drop_indexes(self, collection: str) -> None:
        async with self._lock:
            self._indexes.pop(collection, None)
            self._unique_indexes.pop(collection, None)

    async def list_collection_names(self) -> List[str]:
        async with self._lock:
            return sorted(name for name, docs in self._collections.items() if docs)
