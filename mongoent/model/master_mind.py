"""
Identity counter.

MasterMind keeps one {collection, id} document per model collection and hands
out sequential integer ids.

Invariants:
    - generate_next_id is a single atomic upsert; concurrent callers for the
      same collection never receive the same id
    - The upsert is only atomic on first use when the counter collection has
      a unique index on "collection"; Connection.connect() creates it, and a
      duplicate key from a racing first insert is retried once
    - The first id of a collection is initial_id, later ids add increment_by
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..errors import DuplicateKeyError
from ..store.base import DocumentStore

logger = logging.getLogger(__name__)


class MasterMind:
    """Sequential id generator backed by a counter collection.

    Attributes:
        collection: Counter collection name
    """

    def __init__(self, store: DocumentStore | None = None, collection: str | None = None) -> None:
        self.collection = collection or get_settings().master_mind_collection
        self._store = store

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            from ..connection import get_store

            self._store = get_store()
        return self._store

    async def generate_next_id(self, collection: str, increment_by: int = 1, initial_id: int = 1) -> int:
        """Reserve the next id of a collection.

        Args:
            collection: Model collection the id is for
            increment_by: Step added to the previous id
            initial_id: Id returned when the collection has no counter yet

        Returns:
            The reserved id
        """
        counter_filter = {"collection": collection}
        update = [
            {
                "$set": {
                    "collection": collection,
                    "id": {"$ifNull": [{"$add": ["$id", increment_by]}, initial_id]},
                }
            }
        ]
        try:
            counter = await self.store.find_one_and_update(self.collection, counter_filter, update, upsert=True)
        except DuplicateKeyError:
            # Another caller inserted the counter first; the retry matches it
            logger.debug(f"Counter for {collection} created concurrently, retrying")
            counter = await self.store.find_one_and_update(self.collection, counter_filter, update, upsert=True)
        next_id = counter["id"]
        logger.debug(f"Reserved id {next_id} for {collection}")
        return next_id

    async def get_last_id(self, collection: str) -> int:
        """Last id handed out for a collection, 0 if none."""
        counter = await self.store.find_one(self.collection, {"collection": collection})
        return counter["id"] if counter else 0

    async def ensure_index(self) -> str:
        """Create the unique index on the counter collection."""
        return await self.store.create_index(self.collection, {"collection": 1}, unique=True)
