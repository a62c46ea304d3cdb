"""
Integration tests for embedded document synchronization.

Tests cover:
- Single embedded copies: update and unset on delete
- Embedded lists: reassociate and disassociate
- remove_on_delete, update_when_change, embed_on_create_from
- Query refinement and custom projections
"""

import pytest

from mongoent.errors import UsageError
from mongoent.model import Model, ModelSync


class SyncPost(Model):
    collection = "sync_posts"


class SyncCategory(Model):
    collection = "sync_categories"
    embedded = ["id", "name"]
    sync_with = [ModelSync("SyncPost", "category").unset_on_delete()]


class SyncProduct(Model):
    collection = "sync_products"


class SyncBrand(Model):
    collection = "sync_brands"
    embedded = ["id", "name", "country"]
    sync_with = [ModelSync(SyncProduct, "brand").update_when_change("name")]


class SyncLabel(Model):
    collection = "sync_labels"
    embedded = ["id", "name"]
    sync_with = [SyncProduct.sync_many("labels")]


class SyncBook(Model):
    collection = "sync_books"


class SyncShelf(Model):
    collection = "sync_shelves"
    embedded = ["id", "name"]
    sync_with = [ModelSync("SyncBook", "shelf").remove_on_delete()]


class SyncWriter(Model):
    collection = "sync_writers"
    sync_with = [
        ModelSync("SyncBook", "writer", embed_with="summary").where(
            lambda query: query.where("published", True)
        )
    ]

    def summary(self):
        return {"id": self.id, "name": self.get("name").upper()}


class SyncComment(Model):
    collection = "sync_comments"
    embedded = ["id", "body"]
    sync_with = [ModelSync("SyncPost", "comments").sync_many().embed_on_create_from("post")]


class TestSingleEmbedded:
    """Tests for one embedded copy per target."""

    @pytest.mark.asyncio
    async def test_update_refreshes_embedded_copy(self, store):
        category = await SyncCategory.create({"name": "News"})
        post = await SyncPost.create({"title": "Hello", "category": category.embedded_data})

        await category.save({"name": "World"})

        reloaded = await SyncPost.find(post.id)
        assert reloaded.get("category") == {"id": category.id, "name": "World"}

    @pytest.mark.asyncio
    async def test_destroy_unsets_embedded_copy(self, store):
        category = await SyncCategory.create({"name": "News"})
        post = await SyncPost.create({"title": "Hello", "category": category.embedded_data})
        other = await SyncPost.create({"title": "Other", "category": {"id": 99, "name": "Else"}})

        await category.destroy()

        assert not (await SyncPost.find(post.id)).has("category")
        assert (await SyncPost.find(other.id)).get("category.id") == 99
        assert await SyncCategory.count() == 0

    @pytest.mark.asyncio
    async def test_remove_on_delete_destroys_targets(self, store):
        shelf = await SyncShelf.create({"name": "Top"})
        await SyncBook.create({"title": "A", "shelf": shelf.embedded_data})
        await SyncBook.create({"title": "B"})

        await shelf.destroy()

        assert [book.get("title") for book in await SyncBook.list()] == ["B"]
        assert len(store.documents("sync_booksTrash")) == 1

    @pytest.mark.asyncio
    async def test_update_when_change_skips_other_columns(self, store):
        brand = await SyncBrand.create({"name": "Acme", "country": "NL"})
        product = await SyncProduct.create({"title": "Anvil", "brand": brand.embedded_data})

        await brand.save({"country": "BE"})
        assert (await SyncProduct.find(product.id)).get("brand.country") == "NL"

        await brand.save({"name": "Acme Corp"})
        assert (await SyncProduct.find(product.id)).get("brand") == {
            "id": brand.id,
            "name": "Acme Corp",
            "country": "BE",
        }

    @pytest.mark.asyncio
    async def test_refinement_and_custom_projection(self, store):
        writer = await SyncWriter.create({"name": "Ada"})
        published = await SyncBook.create({"published": True, "writer": {"id": writer.id, "name": "ADA"}})
        draft = await SyncBook.create({"published": False, "writer": {"id": writer.id, "name": "ADA"}})

        await writer.save({"name": "Grace"})

        assert (await SyncBook.find(published.id)).get("writer") == {"id": writer.id, "name": "GRACE"}
        assert (await SyncBook.find(draft.id)).get("writer.name") == "ADA"


class TestEmbeddedLists:
    """Tests for sync_many descriptors."""

    @pytest.mark.asyncio
    async def test_update_reassociates_in_place(self, store):
        red = await SyncLabel.create({"name": "red"})
        blue = await SyncLabel.create({"name": "blue"})
        product = await SyncProduct.create({"labels": [red.embedded_data, blue.embedded_data]})

        await red.save({"name": "crimson"})

        assert (await SyncProduct.find(product.id)).get("labels") == [
            {"id": red.id, "name": "crimson"},
            {"id": blue.id, "name": "blue"},
        ]

    @pytest.mark.asyncio
    async def test_destroy_disassociates(self, store):
        red = await SyncLabel.create({"name": "red"})
        blue = await SyncLabel.create({"name": "blue"})
        product = await SyncProduct.create({"labels": [red.embedded_data, blue.embedded_data]})

        await blue.destroy()

        assert (await SyncProduct.find(product.id)).get("labels") == [{"id": red.id, "name": "red"}]

    @pytest.mark.asyncio
    async def test_embed_on_create(self, store):
        post = await SyncPost.create({"title": "Hello", "comments": []})

        first = await SyncComment.create({"body": "first", "post": {"id": post.id}})
        second = await SyncComment.create({"body": "second", "post": {"id": post.id}})

        assert (await SyncPost.find(post.id)).get("comments") == [
            {"id": first.id, "body": "first"},
            {"id": second.id, "body": "second"},
        ]

    @pytest.mark.asyncio
    async def test_embed_on_create_without_target_is_skipped(self, store):
        comment = await SyncComment.create({"body": "orphan", "post": {"id": 404}})

        assert comment.id == 1
        assert await SyncPost.count() == 0


class TestModelSync:
    """Tests for descriptor construction."""

    def test_model_name_resolves_through_registry(self):
        assert ModelSync("SyncPost", "category").model is SyncPost

    def test_unknown_model_name_raises(self):
        with pytest.raises(UsageError):
            ModelSync("NoSuchSyncTarget", "category").model

    def test_fluent_configuration(self):
        sync = SyncPost.sync(["a", "b"], embed_with="summary").remove_on_delete()

        assert sync.columns == ["a", "b"]
        assert sync.when_delete == "remove"
        assert sync.sync_mode == "single"
        assert SyncPost.sync_many("tags").sync_mode == "many"
