"""
Document store backends for mongoent.

This package provides the DocumentStore protocol and its implementations:
- MotorDocumentStore: MongoDB through motor (production)
- InMemoryDocumentStore: in-process store (tests and local development)
"""

from .base import (
    DeleteResult,
    Document,
    DocumentStore,
    Filter,
    InsertResult,
    Update,
    UpdateResult,
)
from .memory import InMemoryDocumentStore
from .mongo import MotorDocumentStore

__all__ = [
    "DocumentStore",
    "Document",
    "Filter",
    "Update",
    "InsertResult",
    "UpdateResult",
    "DeleteResult",
    "InMemoryDocumentStore",
    "MotorDocumentStore",
]
