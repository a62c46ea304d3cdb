"""
Model: an object view over one MongoDB document.

A model subclass names its collection and declares casts, defaults, embedding
rules, relations and sync descriptors as class attributes:

    >>> class Post(Model):
    ...     collection = "posts"
    ...     casts = {"title": "string", "views": "int", "publishedAt": "date"}
    ...     default_value = {"views": 0}
    ...     embedded = ["id", "title"]
    >>> post = await Post.create({"title": " Hello "})
    >>> post.id
    1
    >>> await post.save({"views": 10})

The model keeps three snapshots of its document:
    - initial_data: constructor input after date normalization
    - original_data: last known persisted state
    - data: current state, mutated by set()/merge()/unset()

Invariants:
    - original_data and data never share mutable state
    - A field is dirty iff its value in data differs from original_data;
      a new model (no _id, or marked restored) is entirely dirty
    - save() on an unchanged persisted model performs no store call
    - Casting runs only on dirty fields and only right before persistence
    - Hooks run in a fixed order and are all awaited: instance hooks, then the
      model's registry, then the catch-all registry (Model.events())

How to change safely:
    - Lifecycle failures are logged and re-raised; nothing is rolled back, so
      hooks that already ran stay applied
    - Keep persistence calls on the DocumentStore protocol only
"""

from __future__ import annotations

import copy
import inspect
import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Literal, Optional, Sequence, TypeVar, Union

from bson import ObjectId
from bson.errors import InvalidId

from ..aggregate.aggregate import PaginationListing
from ..config import get_settings
from ..errors import UsageError
from ..store.base import Document, DocumentStore
from ..utils import (
    MISSING,
    deep_get,
    deep_has,
    deep_merge,
    deep_set,
    except_,
    only,
    to_utc,
    utc_now,
)
from .casts import CastKind, CastSpec, Custom, Primitive, as_cast, cast_value
from .events import ModelEvents
from .master_mind import MasterMind
from .registry import get_model_registry
from .relations import Relation, validate_relations
from .sync import ModelSync

if TYPE_CHECKING:
    from .model_aggregate import ModelAggregate

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")

SaveMode = Literal["create", "update"]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class Model:
    """Base class for document models.

    Class attributes:
        collection: Collection name
        document_store: Store for this model (defaults to the connection's store)
        initial_id: First id handed out by the identity counter
        increment_id_by: Identity counter step
        per_page: Default page size (defaults to settings.per_page)
        move_to_trash: Archive destroyed documents into <collection>Trash
        default_value: Values applied to absent fields on create
        casts: Column -> cast declaration
        custom_casts: Column -> fn(model, column) computed on every save
        guarded: Columns hidden from public_data and ignored by fill()
        fillable: Columns accepted by fill() (empty accepts all)
        embedded: Columns copied into embedded_data
        embed_all_except: Columns left out of embedded_data
        embed_all_except_timestamps_and_user_columns: Leave audit columns out of embedded_data
        sync_with: Sync descriptors run after save/destroy
        relations: Relation name -> Relation for ModelAggregate.with_
    """

    collection: str = ""
    document_store: Optional[DocumentStore] = None

    initial_id: int = 1
    increment_id_by: int = 1
    per_page: Optional[int] = None
    move_to_trash: bool = True
    date_format: Optional[str] = None

    default_value: Dict[str, Any] = {}
    casts: Dict[str, CastSpec] = {}
    custom_casts: Dict[str, Callable[[Model, str], Any]] = {}

    guarded: List[str] = []
    fillable: List[str] = []

    embedded: List[str] = []
    embed_all_except: List[str] = []
    embed_all_except_timestamps_and_user_columns: bool = False

    created_at_column: Optional[str] = "createdAt"
    updated_at_column: Optional[str] = "updatedAt"
    deleted_at_column: Optional[str] = "deletedAt"
    created_by_column: Optional[str] = "createdBy"
    updated_by_column: Optional[str] = "updatedBy"
    deleted_by_column: Optional[str] = "deletedBy"

    sync_with: List[ModelSync] = []
    relations: Dict[str, Relation] = {}

    _events: ModelEvents = ModelEvents("Model")
    _casts: Dict[str, Union[Primitive, Custom]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._events = ModelEvents(cls.__name__)
        cls._casts = {column: as_cast(spec) for column, spec in cls.casts.items()}
        validate_relations(cls.__name__, cls.relations)
        get_model_registry().register(cls)

    def __init__(self, data: Union[Document, Model, None] = None) -> None:
        """Wrap a document.

        Args:
            data: Document (or model whose data is copied); a document with an
                _id is treated as persisted
        """
        type(self)._events.freeze()
        Model._events.freeze()

        source = data.data if isinstance(data, Model) else (data or {})
        document = copy.deepcopy(source)

        if isinstance(document.get("_id"), str):
            try:
                document["_id"] = ObjectId(document["_id"])
            except InvalidId as e:
                raise UsageError(
                    f"Invalid _id for {type(self).__name__}: {document['_id']!r}",
                    model=type(self).__name__,
                ) from e

        document = self._cast_dates(document)

        self.initial_data: Document = document
        self.original_data: Document = copy.deepcopy(document)
        self.data: Document = copy.deepcopy(document)
        self._is_restored = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"

    # =========================
    # Class level
    # =========================
    @classmethod
    def events(cls) -> ModelEvents:
        """Event registry of this model; on Model itself, the catch-all registry."""
        return cls._events

    @classmethod
    def get_collection(cls) -> str:
        return cls.collection

    @classmethod
    def resolve_store(cls) -> DocumentStore:
        if cls.document_store is not None:
            return cls.document_store

        from ..connection import get_store

        return get_store()

    @classmethod
    def get_per_page(cls) -> int:
        return cls.per_page or get_settings().per_page

    @classmethod
    def get_date_format(cls) -> str:
        return cls.date_format or get_settings().date_format

    @classmethod
    def master_mind(cls) -> MasterMind:
        return MasterMind(store=cls.resolve_store())

    @classmethod
    async def generate_next_id(cls) -> int:
        """Reserve the next id of this model's collection."""
        return await cls.master_mind().generate_next_id(cls.collection, cls.increment_id_by, cls.initial_id)

    @classmethod
    async def get_last_id(cls) -> int:
        return await cls.master_mind().get_last_id(cls.collection)

    @classmethod
    def aggregate(cls: type[M]) -> ModelAggregate[M]:
        """New model-aware aggregate over this collection."""
        from .model_aggregate import ModelAggregate

        return ModelAggregate(cls)

    @classmethod
    def sync(cls, columns: Union[str, Sequence[str]], embed_with: Optional[str] = None) -> ModelSync:
        """Sync descriptor embedding another model into this model's columns."""
        return ModelSync(cls, columns, embed_with)

    @classmethod
    def sync_many(cls, columns: Union[str, Sequence[str]], embed_with: Optional[str] = None) -> ModelSync:
        """Sync descriptor embedding another model into a list column of this model."""
        return ModelSync(cls, columns, embed_with).sync_many()

    @classmethod
    async def create(cls: type[M], data: Document) -> M:
        """Build and save a new model."""
        model = cls(data)
        await model.save()
        return model

    @classmethod
    async def find(cls: type[M], id: Union[int, str, ObjectId]) -> Optional[M]:
        """Find by sequential id, or by _id when given an ObjectId."""
        if isinstance(id, ObjectId):
            return await cls.find_by("_id", id)
        return await cls.find_by("id", int(id))

    @classmethod
    async def find_by(cls: type[M], column: str, value: Any) -> Optional[M]:
        return await cls.aggregate().where(column, value).first()

    @classmethod
    async def first(cls: type[M], filters: Optional[Dict[str, Any]] = None) -> Optional[M]:
        return await cls.aggregate().first(filters)

    @classmethod
    async def last(cls: type[M], filters: Optional[Dict[str, Any]] = None) -> Optional[M]:
        return await cls.aggregate().last(filters)

    @classmethod
    async def list(cls: type[M], filters: Optional[Dict[str, Any]] = None) -> List[M]:
        query = cls.aggregate()
        if filters:
            query.where(filters)
        return await query.get()

    @classmethod
    async def count(cls, filters: Optional[Dict[str, Any]] = None) -> int:
        query = cls.aggregate()
        if filters:
            query.where(filters)
        return await query.count()

    @classmethod
    async def paginate(
        cls,
        page: int = 1,
        limit: Optional[int] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> PaginationListing:
        query = cls.aggregate()
        if filters:
            query.where(filters)
        return await query.paginate(page, limit)

    # =========================
    # Accessors
    # =========================
    @property
    def id(self) -> Optional[int]:
        return self.get("id")

    @property
    def object_id(self) -> Optional[ObjectId]:
        return self.get("_id")

    def get(self, column: str, default: Any = None) -> Any:
        return deep_get(self.data, column, default)

    def set(self, column: str, value: Any) -> Model:
        deep_set(self.data, column, value)
        return self

    def has(self, column: str) -> bool:
        return deep_has(self.data, column)

    def unset(self, *columns: str) -> Model:
        self.data = except_(self.data, columns)
        return self

    def merge(self, data: Dict[str, Any]) -> Model:
        self.data = deep_merge(self.data, copy.deepcopy(data))
        return self

    def fill(self, data: Dict[str, Any]) -> Model:
        """Mass-assign columns, honouring fillable and guarded."""
        for column, value in data.items():
            if self.fillable and column not in self.fillable:
                continue
            if column in self.guarded:
                continue
            self.set(column, value)
        return self

    def replace_with(self, data: Document) -> Model:
        """Replace the whole document, keeping id and _id when the new data has none."""
        data = dict(data)
        if not data.get("id") and self.data.get("id"):
            data["id"] = self.data["id"]
        if not data.get("_id") and self.data.get("_id"):
            data["_id"] = self.data["_id"]
        self.data = data
        return self

    def increment(self, column: str, value: Union[int, float] = 1) -> Model:
        return self.set(column, self.get(column, 0) + value)

    def decrement(self, column: str, value: Union[int, float] = 1) -> Model:
        return self.set(column, self.get(column, 0) - value)

    def only(self, columns: Sequence[str]) -> Document:
        return only(self.data, columns)

    def except_(self, columns: Sequence[str]) -> Document:
        return except_(self.data, columns)

    def original(self, column: str, default: Any = None) -> Any:
        """Value of a column as last persisted."""
        return deep_get(self.original_data, column, default)

    @property
    def public_data(self) -> Document:
        return except_(self.data, self.guarded)

    @property
    def guarded_data(self) -> Document:
        return only(self.data, self.guarded)

    @property
    def embedded_data(self) -> Document:
        """Projection stored when this model is embedded in another document."""
        if self.embed_all_except:
            return except_(self.data, self.embed_all_except)

        if self.embed_all_except_timestamps_and_user_columns:
            return except_(
                self.data,
                [
                    column
                    for column in (
                        self.created_at_column,
                        self.updated_at_column,
                        self.deleted_at_column,
                        self.created_by_column,
                        self.updated_by_column,
                        self.deleted_by_column,
                    )
                    if column
                ],
            )

        if self.embedded:
            return self.only(self.embedded)

        return self.data

    def mark_as_restored(self) -> Model:
        """Treat the model as new so the next save inserts it with its current _id."""
        self._is_restored = True
        return self

    def is_new_model(self) -> bool:
        return not self.data.get("_id") or self._is_restored

    def is_dirty(self, column: Optional[str] = None) -> bool:
        """Whether the column (or any column) differs from the persisted state."""
        if self.is_new_model():
            return True
        if column is None:
            return self.data != self.original_data
        return deep_get(self.data, column, MISSING) != deep_get(self.original_data, column, MISSING)

    def clone(self: M) -> M:
        return type(self)(copy.deepcopy(self.data))

    # =========================
    # Embedded lists
    # =========================
    @staticmethod
    def _embed_value(value: Union[Model, Dict[str, Any]], embed_with: Optional[str] = None) -> Any:
        if isinstance(value, Model):
            return getattr(value, embed_with)() if embed_with else value.embedded_data
        return value

    def associate(self, column: str, value: Union[Model, Dict[str, Any]], embed_with: Optional[str] = None) -> Model:
        """Append an embedded document to a list column."""
        embedded = self._embed_value(value, embed_with)
        if embedded is None:
            return self

        documents = list(self.get(column) or [])
        documents.append(copy.deepcopy(embedded))
        return self.set(column, documents)

    def reassociate(self, column: str, value: Union[Model, Dict[str, Any]], embed_with: Optional[str] = None) -> Model:
        """Replace the embedded document with the same id, or append it."""
        embedded = self._embed_value(value, embed_with)
        if embedded is None:
            return self

        documents = copy.deepcopy(list(self.get(column) or []))
        for position, document in enumerate(documents):
            if isinstance(document, dict) and document.get("id") == embedded.get("id"):
                documents[position] = copy.deepcopy(embedded)
                break
        else:
            documents.append(copy.deepcopy(embedded))

        return self.set(column, documents)

    def disassociate(self, column: str, value: Union[Model, Dict[str, Any]]) -> Model:
        """Remove the embedded document with the same id from a list column."""
        embedded = self._embed_value(value)
        documents = self.get(column)
        if embedded is None or not isinstance(documents, list):
            return self

        return self.set(
            column,
            [
                document
                for document in documents
                if not (isinstance(document, dict) and document.get("id") == embedded.get("id"))
            ],
        )

    # =========================
    # Instance hooks
    # =========================
    async def on_saving(self) -> None:
        pass

    async def on_saved(self) -> None:
        pass

    async def on_creating(self) -> None:
        pass

    async def on_created(self) -> None:
        pass

    async def on_updating(self) -> None:
        pass

    async def on_updated(self) -> None:
        pass

    async def on_deleting(self) -> None:
        pass

    async def on_deleted(self) -> None:
        pass

    async def _fire(self, events: Sequence[str], *args: Any) -> None:
        for event in events:
            await _maybe_await(getattr(self, f"on_{event}")())

        registries = [type(self).events()]
        if type(self).events() is not Model.events():
            registries.append(Model.events())

        for registry in registries:
            for event in events:
                await registry.trigger(event, self, *args)

    # =========================
    # Lifecycle
    # =========================
    async def save(
        self,
        merged_data: Optional[Dict[str, Any]] = None,
        *,
        trigger_events: bool = True,
        cast: bool = True,
    ) -> Model:
        """Create or update the document.

        Args:
            merged_data: Columns merged into data before saving
            trigger_events: Fire lifecycle hooks
            cast: Run casts on dirty columns

        Returns:
            self

        Raises:
            StoreError: If the store rejects the write
        """
        collection = self.get_collection()
        store = self.resolve_store()
        old_model: Optional[Model] = None

        try:
            if merged_data:
                self.merge(merged_data)

            if not self.is_new_model():
                if self.original_data == self.data:
                    return self

                mode: SaveMode = "update"
                old_model = type(self)(self.original_data)

                if self.updated_at_column:
                    self.set(self.updated_at_column, utc_now())

                if cast:
                    await self.cast_data()

                if trigger_events:
                    await self._fire(("saving", "updating"), old_model)

                replaced = await store.find_one_and_replace(collection, {"_id": self.data["_id"]}, self.data)
                if replaced is None:
                    logger.warning(
                        f"Save of {type(self).__name__} {self.id} matched no document in {collection}",
                        extra={"collection": collection, "_id": str(self.data["_id"])},
                    )

                if trigger_events:
                    await self._fire(("updated", "saved"), old_model)
            else:
                mode = "create"
                self._apply_default_values()

                if not self.get("id"):
                    self.set("id", await self.generate_next_id())

                now = utc_now()
                if self.created_at_column:
                    self.set(self.created_at_column, now)
                if self.updated_at_column:
                    self.set(self.updated_at_column, now)

                if cast:
                    await self.cast_data()

                if trigger_events:
                    await self._fire(("saving", "creating"), None)

                result = await store.insert_one(collection, self.data)
                self.data["_id"] = result.inserted_id

                if trigger_events:
                    await self._fire(("created", "saved"), None)

            self.original_data = copy.deepcopy(self.data)
            self._is_restored = False
        except Exception as e:
            logger.error(
                f"{type(self).__name__}.save() failed: {e}",
                exc_info=True,
                extra={"collection": collection, "model_id": self.id},
            )
            raise

        await self.start_syncing(mode, old_model)
        return self

    async def silent_saving(self, merged_data: Optional[Dict[str, Any]] = None, *, cast: bool = True) -> Model:
        """Save without firing events."""
        return await self.save(merged_data, trigger_events=False, cast=cast)

    async def destroy(self) -> None:
        """Delete the document, archiving it to the trash collection first."""
        if not self.data.get("_id"):
            return

        collection = self.get_collection()
        store = self.resolve_store()

        try:
            if self.deleted_at_column:
                self.set(self.deleted_at_column, utc_now())

            if self.move_to_trash:
                await store.insert_one(
                    collection + get_settings().trash_suffix,
                    {"document": copy.deepcopy(self.data)},
                )

            await self._fire(("deleting",))

            await store.delete_one(collection, {"_id": self.data["_id"]})

            await self._fire(("deleted",))
        except Exception as e:
            logger.error(
                f"{type(self).__name__}.destroy() failed: {e}",
                exc_info=True,
                extra={"collection": collection, "model_id": self.id},
            )
            raise

        await self.sync_destruction()

    async def start_syncing(self, save_mode: SaveMode, old_model: Optional[Model] = None) -> None:
        for model_sync in self.sync_with:
            await model_sync.sync(self, save_mode, old_model)

    async def sync_destruction(self) -> None:
        for model_sync in self.sync_with:
            await model_sync.sync_destruction(self)

    # =========================
    # Casting
    # =========================
    def _apply_default_values(self) -> None:
        if self.default_value:
            self.data = deep_merge(copy.deepcopy(self.default_value), self.data)

    def _cast_dates(self, document: Document) -> Document:
        columns = [
            column
            for column in (self.created_at_column, self.updated_at_column, self.deleted_at_column)
            if column
        ]
        columns.extend(
            column
            for column, cast in self._casts.items()
            if isinstance(cast, Primitive) and cast.kind is CastKind.DATE
        )

        for column in columns:
            value = deep_get(document, column)
            if isinstance(value, date):
                deep_set(document, column, to_utc(value))
        return document

    async def _cast_item(self, value: Any, column: str, cast: Union[Primitive, Custom]) -> Any:
        if isinstance(value, Model):
            return value.embedded_data
        if isinstance(cast, Custom):
            return await _maybe_await(cast.fn(value, column, self))
        return cast_value(value, cast.kind, self.get_date_format())

    async def cast_data(self) -> None:
        """Cast dirty columns, then compute custom casts."""
        for column, cast in self._casts.items():
            if not self.has(column) or not self.is_dirty(column):
                continue

            value = self.get(column)

            if isinstance(cast, Custom) and cast.whole_array:
                value = await _maybe_await(cast.fn(value, column, self))
            elif isinstance(value, list) and not (
                isinstance(cast, Primitive) and cast.kind in (CastKind.ARRAY, CastKind.LOCALIZED)
            ):
                value = [await self._cast_item(item, column, cast) for item in value]
            else:
                value = await self._cast_item(value, column, cast)

            self.set(column, value)

        for column, compute in self.custom_casts.items():
            self.set(column, await _maybe_await(compute(self, column)))
