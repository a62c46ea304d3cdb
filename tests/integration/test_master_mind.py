"""
Integration tests for the identity counter.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from mongoent.errors import DuplicateKeyError
from mongoent.model import MasterMind, Model


class Invoice(Model):
    collection = "invoices"
    initial_id = 1000
    increment_id_by = 10


class TestMasterMind:
    """Tests for MasterMind."""

    @pytest.mark.asyncio
    async def test_ids_start_at_one_and_increment(self, store):
        master_mind = MasterMind(store)

        ids = [await master_mind.generate_next_id("posts") for _ in range(3)]

        assert ids == [1, 2, 3]
        assert await master_mind.generate_next_id("users") == 1

    @pytest.mark.asyncio
    async def test_one_counter_document_per_collection(self, store):
        master_mind = MasterMind(store)

        await master_mind.generate_next_id("posts")
        await master_mind.generate_next_id("posts")
        await master_mind.generate_next_id("users")

        counters = sorted(store.documents("MasterMind"), key=lambda doc: doc["collection"])
        assert [(doc["collection"], doc["id"]) for doc in counters] == [("posts", 2), ("users", 1)]

    @pytest.mark.asyncio
    async def test_custom_initial_id_and_step(self, store):
        first = await Invoice.create({"total": 10})
        second = await Invoice.create({"total": 20})

        assert (first.id, second.id) == (1000, 1010)
        assert await Invoice.get_last_id() == 1010

    @pytest.mark.asyncio
    async def test_concurrent_callers_get_distinct_ids(self, store):
        master_mind = MasterMind(store)

        ids = await asyncio.gather(*(master_mind.generate_next_id("orders") for _ in range(25)))

        assert sorted(ids) == list(range(1, 26))

    @pytest.mark.asyncio
    async def test_concurrent_creates_get_distinct_ids(self, store):
        invoices = await asyncio.gather(*(Invoice.create({"total": n}) for n in range(5)))

        assert sorted(invoice.id for invoice in invoices) == [1000, 1010, 1020, 1030, 1040]

    @pytest.mark.asyncio
    async def test_last_id_of_unknown_collection_is_zero(self, store):
        assert await MasterMind(store).get_last_id("nothing") == 0

    @pytest.mark.asyncio
    async def test_custom_counter_collection(self, store):
        master_mind = MasterMind(store, collection="Counters")

        await master_mind.generate_next_id("posts")

        assert store.documents("MasterMind") == []
        assert len(store.documents("Counters")) == 1

    @pytest.mark.asyncio
    async def test_ensure_index_makes_collection_unique(self, store):
        master_mind = MasterMind(store)

        assert await master_mind.ensure_index() == "collection_1"
        await master_mind.generate_next_id("posts")

        with pytest.raises(DuplicateKeyError):
            await store.insert_one("MasterMind", {"collection": "posts", "id": 99})

    @pytest.mark.asyncio
    async def test_default_store_is_used(self, store):
        assert await MasterMind().generate_next_id("posts") == 1
        assert len(store.documents("MasterMind")) == 1

    @pytest.mark.asyncio
    async def test_racing_first_insert_is_retried(self):
        """A duplicate key from a concurrent first upsert retries against the winner's counter."""
        counter_store = MagicMock()
        counter_store.find_one_and_update = AsyncMock(
            side_effect=[
                DuplicateKeyError("E11000 duplicate key", collection="MasterMind"),
                {"collection": "orders", "id": 2},
            ]
        )

        next_id = await MasterMind(counter_store).generate_next_id("orders")

        assert next_id == 2
        assert counter_store.find_one_and_update.await_count == 2
        first_call, second_call = counter_store.find_one_and_update.await_args_list
        assert first_call == second_call
