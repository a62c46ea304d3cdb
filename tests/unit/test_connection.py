"""
Unit tests for settings, the connection manager and the motor store.

Motor is replaced with mocks; no server is needed.
"""

import importlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError as PyMongoDuplicateKeyError
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from mongoent.config import DatabaseSettings
from mongoent.connection import Connection, get_store, reset_store, set_store
from mongoent.errors import ConnectionError, DuplicateKeyError, StoreError
from mongoent.store import InMemoryDocumentStore, MotorDocumentStore

connection_module = importlib.import_module("mongoent.connection")


class TestDatabaseSettings:
    """Tests for DatabaseSettings."""

    def test_defaults(self):
        settings = DatabaseSettings()

        assert settings.connection_uri == "mongodb://localhost:27017"
        assert settings.master_mind_collection == "MasterMind"
        assert settings.trash_suffix == "Trash"
        assert not settings.is_authenticated

    def test_credentials_are_quoted(self):
        settings = DatabaseSettings(username="ada", password="p@ss:word", host="db", port=27018)

        assert settings.connection_uri == "mongodb://ada:p%40ss%3Aword@db:27018"
        assert settings.is_authenticated

    def test_uri_overrides_host(self):
        settings = DatabaseSettings(uri="mongodb+srv://cluster.example.net", host="ignored")

        assert settings.connection_uri == "mongodb+srv://cluster.example.net"

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("MONGOENT_NAME", "shop")
        monkeypatch.setenv("MONGOENT_PER_PAGE", "30")

        settings = DatabaseSettings()

        assert settings.name == "shop"
        assert settings.per_page == 30


class TestDefaultStore:
    """Tests for the process-wide default store."""

    def test_get_store_without_store_raises(self):
        reset_store()

        with pytest.raises(ConnectionError):
            get_store()

    def test_set_and_reset(self):
        memory_store = InMemoryDocumentStore()

        set_store(memory_store)
        assert get_store() is memory_store

        reset_store()
        with pytest.raises(ConnectionError):
            get_store()


class TestDefaultConnection:
    """Tests for the package-level connection exports."""

    def test_submodule_is_not_shadowed(self):
        import mongoent

        assert mongoent.connection is connection_module
        assert isinstance(mongoent.default_connection, Connection)
        assert mongoent.default_connection is connection_module.default_connection


class TestConnection:
    """Tests for Connection with a mocked motor client."""

    @pytest.fixture
    def motor_client(self):
        """Patched AsyncIOMotorClient class."""
        with patch.object(connection_module, "AsyncIOMotorClient") as client_cls:
            client = MagicMock()
            client.admin.command = AsyncMock(return_value={"ok": 1})
            counters = client.__getitem__.return_value.__getitem__.return_value
            counters.create_index = AsyncMock(return_value="collection_1")
            client_cls.return_value = client
            yield client_cls
        reset_store()

    @pytest.mark.asyncio
    async def test_connect_installs_default_store(self, motor_client):
        events = []
        connection = Connection(DatabaseSettings(name="shop", auth_source="admin"))
        connection.on("connected", lambda conn: events.append("connected"))

        store = await connection.connect()

        assert isinstance(store, MotorDocumentStore)
        assert get_store() is store
        assert connection.is_connected
        assert events == ["connected"]
        motor_client.assert_called_once_with(
            "mongodb://localhost:27017",
            tz_aware=True,
            serverSelectionTimeoutMS=30000,
            authSource="admin",
        )
        motor_client.return_value.__getitem__.assert_called_with("shop")

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, motor_client):
        connection = Connection(DatabaseSettings())

        first = await connection.connect()
        second = await connection.connect()

        assert first is second
        motor_client.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_uninstalls_store(self, motor_client):
        closed = []
        connection = Connection(DatabaseSettings())

        async def on_close(conn):
            closed.append(conn)

        connection.on("close", on_close)
        await connection.connect()
        await connection.close()

        assert not connection.is_connected
        assert closed == [connection]
        motor_client.return_value.close.assert_called_once()
        with pytest.raises(ConnectionError):
            get_store()

    @pytest.mark.asyncio
    async def test_failed_ping_raises_and_reports(self, motor_client):
        errors = []
        motor_client.return_value.admin.command.side_effect = ServerSelectionTimeoutError("down")
        connection = Connection(DatabaseSettings(host="db", port=27019))
        connection.on("error", errors.append)

        with pytest.raises(ConnectionError) as exc_info:
            await connection.connect()

        assert exc_info.value.address == "db:27019"
        assert len(errors) == 1
        assert not connection.is_connected

    @pytest.mark.asyncio
    async def test_connect_creates_counter_index(self, motor_client):
        """The identity counter is unique per collection before any model writes."""
        connection = Connection(DatabaseSettings(name="shop", master_mind_collection="Counters"))

        await connection.connect()

        database = motor_client.return_value.__getitem__.return_value
        database.__getitem__.assert_any_call("Counters")
        database.__getitem__.return_value.create_index.assert_awaited_once_with(
            [("collection", 1)], unique=True
        )

    @pytest.mark.asyncio
    async def test_failed_counter_index_closes_client(self, motor_client):
        database = motor_client.return_value.__getitem__.return_value
        database.__getitem__.return_value.create_index.side_effect = OperationFailure("not authorized")
        connection = Connection(DatabaseSettings())

        with pytest.raises(StoreError) as exc_info:
            await connection.connect()

        assert exc_info.value.operation == "create_index"
        assert not connection.is_connected
        motor_client.return_value.close.assert_called_once()
        with pytest.raises(ConnectionError):
            get_store()


class TestMotorDocumentStore:
    """Tests for MotorDocumentStore with a mocked database."""

    @pytest.fixture
    def collection(self):
        """Mocked motor collection returned for every name."""
        return MagicMock()

    @pytest.fixture
    def motor_store(self, collection):
        database = MagicMock()
        database.__getitem__.return_value = collection
        return MotorDocumentStore(database)

    @pytest.mark.asyncio
    async def test_find_one_and_update_returns_document_after(self, motor_store, collection):
        collection.find_one_and_update = AsyncMock(return_value={"id": 2})

        result = await motor_store.find_one_and_update("counters", {"collection": "a"}, [], upsert=True)

        assert result == {"id": 2}
        collection.find_one_and_update.assert_awaited_once_with(
            {"collection": "a"}, [], upsert=True, return_document=ReturnDocument.AFTER
        )

    @pytest.mark.asyncio
    async def test_aggregate_collects_cursor(self, motor_store, collection):
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=[{"id": 1}])
        collection.aggregate.return_value = cursor

        assert await motor_store.aggregate("posts", [{"$limit": 1}]) == [{"id": 1}]
        collection.aggregate.assert_called_once_with([{"$limit": 1}])

    @pytest.mark.asyncio
    async def test_create_index_passes_key_list(self, motor_store, collection):
        collection.create_index = AsyncMock(return_value="collection_1")

        assert await motor_store.create_index("counters", {"collection": 1}, unique=True) == "collection_1"
        collection.create_index.assert_awaited_once_with([("collection", 1)], unique=True)

    @pytest.mark.asyncio
    async def test_duplicate_key_is_translated(self, motor_store, collection):
        collection.insert_one = AsyncMock(side_effect=PyMongoDuplicateKeyError("E11000"))

        with pytest.raises(DuplicateKeyError) as exc_info:
            await motor_store.insert_one("users", {"email": "a@b.c"})

        assert exc_info.value.collection == "users"

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_errors(self, motor_store, collection):
        collection.update_many = AsyncMock(side_effect=OperationFailure("bad update"))

        with pytest.raises(StoreError) as exc_info:
            await motor_store.update_many("users", {}, {"$set": {"a": 1}})

        assert exc_info.value.operation == "update_many"
        assert not isinstance(exc_info.value, DuplicateKeyError)
