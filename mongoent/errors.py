"""
Error types for mongoent.

This module defines all exception types raised by the package:
- MongoEntError: Base exception
- UsageError: Builder/model misuse, raised synchronously
- RelationNotFoundError: Unknown relation name on a model
- ConnectionError: Database connection issues
- StoreError: A store operation failed
- RegistryFrozenError: Registration after the registry was frozen

Invariants:
    - All errors inherit from MongoEntError
    - Errors include context for debugging
    - Cast failures never surface as errors (the empty default is used instead)
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class MongoEntError(Exception):
    """Base exception for all mongoent errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "MONGOENT_ERROR"
        self.details = details or {}


class UsageError(MongoEntError):
    """The API was used incorrectly.

    Raised when:
    - random() is called with no limit anywhere in the pipeline
    - An unknown where operator is given
    - A model name cannot be resolved
    """

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="USAGE_ERROR", details=details)


class RelationNotFoundError(UsageError):
    """Relation name is not declared on the model.

    Attributes:
        relation: The missing relation name
        model_name: The model that was queried
    """

    def __init__(self, relation: str, model_name: str) -> None:
        super().__init__(
            f"Relation '{relation}' not found on model '{model_name}'",
            relation=relation,
            model_name=model_name,
        )
        self.relation = relation
        self.model_name = model_name


class ConnectionError(MongoEntError):
    """Failed to connect to the database.

    Raised when:
    - Server is unreachable
    - No default store has been installed
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class StoreError(MongoEntError):
    """A document store operation failed.

    Raised when:
    - The server rejects the command (constraint violation, bad query)
    - The connection drops mid-operation

    Attributes:
        operation: Store operation name (insert_one, aggregate, ...)
        collection: Collection the operation targeted
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        collection: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORE_ERROR",
            details={"operation": operation, "collection": collection},
        )
        self.operation = operation
        self.collection = collection


class DuplicateKeyError(StoreError):
    """Unique index violated."""

    def __init__(self, message: str, collection: Optional[str] = None) -> None:
        super().__init__(message, operation="insert", collection=collection)
        self.code = "DUPLICATE_KEY"


class RegistryFrozenError(MongoEntError):
    """Registry is frozen and cannot be modified."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="REGISTRY_FROZEN")
