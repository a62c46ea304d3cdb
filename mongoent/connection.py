"""
Database connection for mongoent.

This module owns the motor client and the process-wide default store that
models fall back to when they do not declare their own.

Example:
    >>> from mongoent import default_connection
    >>> await default_connection.connect()
    >>> # models now read and write through default_connection.store
    >>> await default_connection.close()

Invariants:
    - connect() is idempotent
    - The default store is installed only after the server answered a ping
      and the identity counter index exists
    - Connection failures are logged, reported to "error" listeners and re-raised
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Literal

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from .config import DatabaseSettings, get_settings
from .errors import ConnectionError, MongoEntError
from .model.master_mind import MasterMind
from .store.base import DocumentStore
from .store.mongo import MotorDocumentStore

logger = logging.getLogger(__name__)

ConnectionEvent = Literal["connected", "error", "close"]

# Global default store
_default_store: DocumentStore | None = None
_store_lock = threading.Lock()


def get_store() -> DocumentStore:
    """Get the default document store.

    Raises:
        ConnectionError: If no store has been installed
    """
    with _store_lock:
        if _default_store is None:
            raise ConnectionError("No document store installed; call connection.connect() or set_store()")
        return _default_store


def set_store(store: DocumentStore) -> None:
    """Install the default document store."""
    global _default_store
    with _store_lock:
        _default_store = store


def reset_store() -> None:
    """Remove the default store (for testing only)."""
    global _default_store
    with _store_lock:
        _default_store = None


class Connection:
    """MongoDB connection manager.

    Attributes:
        settings: Database settings
        client: Motor client (after connect)
        store: MotorDocumentStore bound to the configured database (after connect)
    """

    def __init__(self, settings: DatabaseSettings | None = None) -> None:
        self.settings = settings
        self.client: AsyncIOMotorClient | None = None
        self.store: MotorDocumentStore | None = None
        self._connected = False
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    @property
    def is_connected(self) -> bool:
        """Whether connect() succeeded and close() was not called since."""
        return self._connected

    def on(self, event: ConnectionEvent, callback: Callable[..., Any]) -> Connection:
        """Subscribe to a connection event."""
        self._listeners[event].append(callback)
        return self

    async def _trigger(self, event: ConnectionEvent, *args: Any) -> None:
        for callback in self._listeners.get(event, []):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

    async def connect(self, settings: DatabaseSettings | None = None) -> MotorDocumentStore:
        """Connect to the database and install the default store.

        Args:
            settings: Overrides the settings given at construction

        Returns:
            The connected store

        Raises:
            ConnectionError: If the server cannot be reached
        """
        if self._connected and self.store is not None:
            return self.store

        if settings is not None:
            self.settings = settings
        if self.settings is None:
            self.settings = get_settings()
        config = self.settings

        logger.info("Connecting to the database", extra={"host": config.host, "database": config.name})

        options: Dict[str, Any] = {
            "tz_aware": True,
            "serverSelectionTimeoutMS": config.server_selection_timeout_ms,
        }
        if config.auth_source:
            options["authSource"] = config.auth_source

        try:
            self.client = AsyncIOMotorClient(config.connection_uri, **options)
            await self.client.admin.command("ping")
        except PyMongoError as e:
            logger.error(f"Database connection failed: {e}", exc_info=True)
            await self._trigger("error", e)
            raise ConnectionError(
                f"Failed to connect: {e}",
                address=f"{config.host}:{config.port}",
            ) from e

        store = MotorDocumentStore(self.client[config.name])
        try:
            await MasterMind(store, config.master_mind_collection).ensure_index()
        except MongoEntError:
            self.client.close()
            self.client = None
            raise

        self.store = store
        set_store(self.store)
        self._connected = True

        if not config.is_authenticated:
            logger.warning("Connected, but you are not making a secure authenticated connection!")
        else:
            logger.info("Connected to the database")

        await self._trigger("connected", self)
        return self.store

    async def close(self) -> None:
        """Close the client and uninstall the default store."""
        if not self._connected:
            return
        if self.client is not None:
            self.client.close()
        reset_store()
        self._connected = False
        self.store = None
        await self._trigger("close", self)


default_connection = Connection()
