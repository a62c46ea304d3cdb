"""
Unit tests for the in-memory document store and its evaluator.

Tests cover:
- CRUD operations
- Unique indexes
- Update documents and update pipelines
- Aggregation stages used by the builder
"""

import pytest
from bson import ObjectId

from mongoent.errors import DuplicateKeyError, StoreError
from mongoent.store import DocumentStore, InMemoryDocumentStore
from mongoent.store.evaluate import apply_update, match_filter, run_pipeline


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    @pytest.fixture
    def store(self):
        """Create a fresh store."""
        return InMemoryDocumentStore()

    def test_implements_protocol(self, store):
        assert isinstance(store, DocumentStore)

    @pytest.mark.asyncio
    async def test_insert_assigns_object_id(self, store):
        result = await store.insert_one("users", {"name": "Ada"})

        assert isinstance(result.inserted_id, ObjectId)
        assert await store.find_one("users", {"_id": result.inserted_id}) == {
            "_id": result.inserted_id,
            "name": "Ada",
        }

    @pytest.mark.asyncio
    async def test_insert_keeps_given_id_and_copies_input(self, store):
        object_id = ObjectId()
        document = {"_id": object_id, "tags": ["a"]}

        await store.insert_one("users", document)
        document["tags"].append("b")

        assert store.documents("users") == [{"_id": object_id, "tags": ["a"]}]

    @pytest.mark.asyncio
    async def test_find_one_with_projection(self, store):
        await store.insert_one("users", {"name": "Ada", "age": 36})

        found = await store.find_one("users", {"age": {"$gt": 30}}, {"name": 1, "_id": 0})

        assert found == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_find_one_and_replace_keeps_id(self, store):
        result = await store.insert_one("users", {"name": "Ada"})

        replaced = await store.find_one_and_replace("users", {"name": "Ada"}, {"name": "Grace"})

        assert replaced == {"_id": result.inserted_id, "name": "Grace"}
        assert await store.find_one_and_replace("users", {"name": "Nobody"}, {}) is None

    @pytest.mark.asyncio
    async def test_upsert_with_update_pipeline(self, store):
        """The counter update used for ids seeds and increments."""
        update = [{"$set": {"collection": "posts", "id": {"$ifNull": [{"$add": ["$id", 5]}, 10]}}}]

        first = await store.find_one_and_update("counters", {"collection": "posts"}, update, upsert=True)
        second = await store.find_one_and_update("counters", {"collection": "posts"}, update, upsert=True)

        assert first["id"] == 10
        assert second["id"] == 15
        assert len(store.documents("counters")) == 1

    @pytest.mark.asyncio
    async def test_find_one_and_update_without_upsert(self, store):
        assert await store.find_one_and_update("users", {"a": 1}, {"$set": {"b": 2}}) is None

    @pytest.mark.asyncio
    async def test_update_many_counts_modified(self, store):
        await store.insert_one("users", {"role": "user", "active": True})
        await store.insert_one("users", {"role": "user", "active": False})
        await store.insert_one("users", {"role": "admin", "active": False})

        result = await store.update_many("users", {"role": "user"}, [{"$set": {"active": False}}])

        assert result.matched_count == 2
        assert result.modified_count == 1

    @pytest.mark.asyncio
    async def test_delete_one_and_many(self, store):
        for n in range(4):
            await store.insert_one("items", {"n": n})

        assert (await store.delete_one("items", {"n": 0})).deleted_count == 1
        assert (await store.delete_one("items", {"n": 0})).deleted_count == 0
        assert (await store.delete_many("items", {"n": {"$in": [1, 2]}})).deleted_count == 2
        assert [doc["n"] for doc in store.documents("items")] == [3]

    @pytest.mark.asyncio
    async def test_unique_index_rejects_duplicates(self, store):
        name = await store.create_index("counters", {"collection": 1}, unique=True)
        await store.insert_one("counters", {"collection": "posts"})

        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.insert_one("counters", {"collection": "posts"})

        assert name == "collection_1"
        assert isinstance(exc_info.value, StoreError)

    @pytest.mark.asyncio
    async def test_index_administration(self, store):
        await store.insert_one("users", {"email": "a@b.c"})
        await store.create_index("users", {"email": 1}, unique=True)

        names = [index["name"] for index in await store.list_indexes("users")]
        assert names == ["_id_", "email_1"]

        await store.drop_indexes("users")
        assert [index["name"] for index in await store.list_indexes("users")] == ["_id_"]
        await store.insert_one("users", {"email": "a@b.c"})

        assert await store.list_collection_names() == ["users"]

    @pytest.mark.asyncio
    async def test_aggregate_lookup_against_other_collection(self, store):
        await store.insert_one("items", {"id": 1, "name": "pen"})
        await store.insert_one("tags", {"itemId": 1, "label": "office"})

        results = await store.aggregate(
            "items",
            [
                {"$lookup": {"from": "tags", "localField": "id", "foreignField": "itemId", "as": "tag", "pipeline": []}},
                {"$addFields": {"tag": {"$first": "$tag"}}},
                {"$project": {"_id": 0, "tag._id": 0}},
            ],
        )

        assert results == [{"id": 1, "name": "pen", "tag": {"itemId": 1, "label": "office"}}]


class TestEvaluator:
    """Tests for filter, update and pipeline evaluation."""

    def test_dotted_paths_match_through_arrays(self):
        doc = {"tags": [{"id": 1}, {"id": 2}]}

        assert match_filter(doc, {"tags.id": 2})
        assert not match_filter(doc, {"tags.id": 3})

    def test_logical_operators(self):
        doc = {"a": 1, "b": 2}

        assert match_filter(doc, {"$or": [{"a": 5}, {"b": 2}]})
        assert not match_filter(doc, {"$and": [{"a": 1}, {"b": 3}]})
        assert match_filter(doc, {"$nor": [{"a": 2}]})
        assert match_filter(doc, {"$expr": {"$gt": ["$b", "$a"]}})

    def test_null_matches_missing(self):
        assert match_filter({}, {"deletedAt": None})
        assert match_filter({"deletedAt": None}, {"deletedAt": {"$eq": None}})
        assert not match_filter({}, {"deletedAt": {"$ne": None}})

    def test_update_operators(self):
        doc = {"n": 1, "tags": ["a", "b"], "gone": True}

        updated = apply_update(
            doc,
            {"$inc": {"n": 2}, "$push": {"tags": "c"}, "$pull": {"tags": "a"}, "$unset": {"gone": ""}},
        )

        assert updated == {"n": 3, "tags": ["b", "c"]}
        assert doc["n"] == 1

    def test_set_on_insert_only_applies_on_insert(self):
        assert apply_update({}, {"$setOnInsert": {"a": 1}}) == {}
        assert apply_update({}, {"$setOnInsert": {"a": 1}}, is_insert=True) == {"a": 1}

    def test_group_and_sort(self):
        docs = [
            {"category": "a", "price": 5},
            {"category": "b", "price": 1},
            {"category": "a", "price": 7},
        ]

        results = run_pipeline(
            docs,
            [
                {"$group": {"_id": "$category", "total": {"$sum": "$price"}, "count": {"$sum": 1}}},
                {"$sort": {"total": -1}},
            ],
        )

        assert results == [
            {"_id": "a", "total": 12, "count": 2},
            {"_id": "b", "total": 1, "count": 1},
        ]

    def test_unwind_and_size(self):
        docs = [{"id": 1, "tags": ["x", "y"]}, {"id": 2, "tags": []}]

        unwound = run_pipeline(docs, [{"$unwind": {"path": "$tags", "includeArrayIndex": "i"}}])
        sized = run_pipeline(docs, [{"$addFields": {"n": {"$size": "$tags"}}}, {"$match": {"n": 2}}])

        assert unwound == [{"id": 1, "tags": "x", "i": 0}, {"id": 1, "tags": "y", "i": 1}]
        assert [doc["id"] for doc in sized] == [1]

    def test_unsupported_stage_raises(self):
        with pytest.raises(StoreError):
            run_pipeline([{}], [{"$graphLookup": {}}])
