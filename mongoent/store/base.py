"""
Base protocol and types for the document store abstraction.

This module defines the DocumentStore protocol that every backend implements,
along with the small result types the models consume.

Invariants:
    - Every operation addresses a collection by name
    - Backends raise StoreError (or a subclass) on failure, never a driver error
    - find_one_and_replace / find_one_and_update return the document after the write

How to change safely:
    - Protocol changes require updating both MotorDocumentStore and InMemoryDocumentStore
    - Keep result types driver-agnostic
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

Document = Dict[str, Any]
Filter = Dict[str, Any]
Update = Union[Dict[str, Any], List[Dict[str, Any]]]


@dataclass(frozen=True)
class InsertResult:
    """Result of insert_one.

    Attributes:
        inserted_id: The _id the store assigned (or kept)
    """

    inserted_id: Any


@dataclass(frozen=True)
class UpdateResult:
    """Result of update_many.

    Attributes:
        matched_count: Documents matching the filter
        modified_count: Documents actually changed
    """

    matched_count: int
    modified_count: int


@dataclass(frozen=True)
class DeleteResult:
    """Result of delete_one / delete_many.

    Attributes:
        deleted_count: Documents removed
    """

    deleted_count: int


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> result = await store.insert_one("users", {"name": "Ada"})
        >>> await store.find_one("users", {"_id": result.inserted_id})
    """

    @abstractmethod
    async def find_one(
        self,
        collection: str,
        filter: Filter,
        projection: Optional[Dict[str, Any]] = None,
    ) -> Optional[Document]:
        """Return the first document matching the filter, or None."""
        ...

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> InsertResult:
        """Insert a document; an _id is assigned when missing."""
        ...

    @abstractmethod
    async def find_one_and_replace(
        self,
        collection: str,
        filter: Filter,
        document: Document,
    ) -> Optional[Document]:
        """Replace the matched document and return it after the write."""
        ...

    @abstractmethod
    async def find_one_and_update(
        self,
        collection: str,
        filter: Filter,
        update: Update,
        upsert: bool = False,
    ) -> Optional[Document]:
        """Atomically update (or upsert) one document and return it after the write."""
        ...

    @abstractmethod
    async def update_many(self, collection: str, filter: Filter, update: Update) -> UpdateResult:
        """Apply an update document or update pipeline to every match."""
        ...

    @abstractmethod
    async def delete_one(self, collection: str, filter: Filter) -> DeleteResult:
        """Delete the first matching document."""
        ...

    @abstractmethod
    async def delete_many(self, collection: str, filter: Filter) -> DeleteResult:
        """Delete every matching document."""
        ...

    @abstractmethod
    async def aggregate(self, collection: str, pipeline: List[Document]) -> List[Document]:
        """Run an aggregation pipeline and return all resulting documents."""
        ...

    @abstractmethod
    async def create_index(
        self,
        collection: str,
        keys: Dict[str, int],
        unique: bool = False,
    ) -> str:
        """Create an index and return its name."""
        ...

    @abstractmethod
    async def list_indexes(self, collection: str) -> List[Document]:
        """List index descriptions for a collection."""
        ...

    @abstractmethod
    async def drop_indexes(self, collection: str) -> None:
        """Drop every index except the _id index."""
        ...

    @abstractmethod
    async def list_collection_names(self) -> List[str]:
        """List collection names in the database."""
        ...
