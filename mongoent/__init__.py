"""
mongoent - document models and aggregation pipelines for MongoDB.

This package provides an object-like layer over MongoDB collections:
- Model: dirty tracking, casts, defaults, sequential ids and lifecycle events
- Aggregate: fluent builder compiling to MongoDB aggregation pipelines
- ModelSync: keeps embedded copies of documents consistent across collections

Example:
    >>> from mongoent import Model, ModelSync, default_connection
    >>>
    >>> class Category(Model):
    ...     collection = "categories"
    ...     casts = {"name": "string"}
    ...     embedded = ["id", "name"]
    ...     sync_with = [ModelSync("Post", "category").unset_on_delete()]
    >>>
    >>> class Post(Model):
    ...     collection = "posts"
    ...     casts = {"title": "string", "views": "int"}
    >>>
    >>> await default_connection.connect()
    >>> news = await Category.create({"name": "News"})
    >>> await Post.create({"title": "Hello", "category": news.embedded_data})
    >>> await Post.aggregate().where("views", ">=", 10).latest().paginate(page=2)

Invariants:
    - Compiled pipeline stages keep the order they were added in
    - Sequential ids come from one atomic counter per collection
    - All lifecycle hooks, trash archival and syncs are awaited

Version: 1.0.0
"""

__version__ = "1.0.0"

from .aggregate import Aggregate, PaginationInfo, PaginationListing, WhereExpression
from .config import DatabaseSettings, get_settings
from .connection import Connection, default_connection, get_store, reset_store, set_store
from .errors import (
    ConnectionError,
    DuplicateKeyError,
    MongoEntError,
    RegistryFrozenError,
    RelationNotFoundError,
    StoreError,
    UsageError,
)
from .model import (
    CastKind,
    Custom,
    MasterMind,
    Model,
    ModelAggregate,
    ModelEvents,
    ModelSync,
    Primitive,
    Relation,
    cast_model,
)
from .store import DocumentStore, InMemoryDocumentStore, MotorDocumentStore

__all__ = [
    # Version
    "__version__",
    # Aggregation
    "Aggregate",
    "PaginationInfo",
    "PaginationListing",
    "WhereExpression",
    # Models
    "CastKind",
    "Custom",
    "MasterMind",
    "Model",
    "ModelAggregate",
    "ModelEvents",
    "ModelSync",
    "Primitive",
    "Relation",
    "cast_model",
    # Connection
    "Connection",
    "DatabaseSettings",
    "default_connection",
    "get_settings",
    "get_store",
    "reset_store",
    "set_store",
    # Stores
    "DocumentStore",
    "InMemoryDocumentStore",
    "MotorDocumentStore",
    # Errors
    "ConnectionError",
    "DuplicateKeyError",
    "MongoEntError",
    "RegistryFrozenError",
    "RelationNotFoundError",
    "StoreError",
    "UsageError",
]
