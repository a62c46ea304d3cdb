"""
Cross-collection synchronization of embedded documents.

A ModelSync declares that documents of a target model embed a projection of
the source model in one or more columns, and keeps those copies current when
the source is created, updated or destroyed.

Example:
    >>> class Category(Model):
    ...     collection = "categories"
    ...     sync_with = [
    ...         ModelSync("Post", "category").unset_on_delete(),
    ...         ModelSync("Product", "categories").sync_many().remove_on_delete(),
    ...     ]

Invariants:
    - Targets are found by "<column>.id" equal to the source id, OR-ed across columns
    - A missing target is skipped silently; embedded data is a cache
    - Every target write goes through Model.save()/destroy(), so target events
      and nested syncs run too

How to change safely:
    - Keep update and destroy on the same target lookup, otherwise unset and
      update disagree about which documents reference the source
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, List, Literal, Optional, Sequence, Union

from ..utils import MISSING
from .registry import get_model_registry

if TYPE_CHECKING:
    from .model import Model
    from .model_aggregate import ModelAggregate

logger = logging.getLogger(__name__)

OnDelete = Literal["unset", "remove"]
SyncMode = Literal["single", "many"]
SaveMode = Literal["create", "update"]


class ModelSync:
    """Embedded copy descriptor.

    Attributes:
        columns: Target columns holding the embedded source
        embed_with: Source model method returning the projection to embed
        when_delete: "unset" removes the embedded copy, "remove" destroys the target
        sync_mode: "single" for one embedded document, "many" for a list of them
    """

    def __init__(
        self,
        model: Union[str, type[Model]],
        columns: Union[str, Sequence[str]],
        embed_with: Optional[str] = None,
    ) -> None:
        """Initialize the descriptor.

        Args:
            model: Target model class or its registered name
            columns: Target column(s) embedding the source
            embed_with: Source method name producing the projection
                (defaults to the source's embedded_data)
        """
        self._model = model
        self.columns: List[str] = [columns] if isinstance(columns, str) else list(columns)
        self.embed_with = embed_with
        self.when_delete: OnDelete = "unset"
        self.sync_mode: SyncMode = "single"
        self.embed_on_create = ""
        self._update_when_change: Optional[List[str]] = None
        self._query_refinement: Optional[Callable[[ModelAggregate], Any]] = None

    @property
    def model(self) -> type[Model]:
        """The target model class.

        Raises:
            UsageError: If the target was given by a name that is not registered
        """
        if isinstance(self._model, str):
            self._model = get_model_registry().get_model(self._model)
        return self._model

    def update_when_change(self, columns: Union[str, Sequence[str]]) -> ModelSync:
        """Only sync updates when one of the given source columns changed."""
        self._update_when_change = [columns] if isinstance(columns, str) else list(columns)
        return self

    def where(self, query_refinement: Callable[[ModelAggregate], Any]) -> ModelSync:
        """Refine the target lookup, e.g. lambda query: query.where("published", True)."""
        self._query_refinement = query_refinement
        return self

    def unset_on_delete(self) -> ModelSync:
        self.when_delete = "unset"
        return self

    def remove_on_delete(self) -> ModelSync:
        self.when_delete = "remove"
        return self

    def embed_on_create_from(self, column: str) -> ModelSync:
        """Embed a new source into the target referenced by source.<column>.id."""
        self.embed_on_create = column
        return self

    def sync_many(self) -> ModelSync:
        self.sync_mode = "many"
        return self

    def _embedded(self, model: Model) -> Any:
        if self.embed_with:
            return getattr(model, self.embed_with)()
        return model.embedded_data

    async def _targets(self, model: Model) -> List[Model]:
        query = self.model.aggregate().or_where({column + ".id": model.id for column in self.columns})
        if self._query_refinement is not None:
            self._query_refinement(query)
        return await query.get()

    async def sync(self, model: Model, save_mode: SaveMode, old_model: Optional[Model] = None) -> None:
        """Propagate a saved source to its targets."""
        if save_mode == "update":
            await self.sync_update(model, old_model)
            return

        if not self.embed_on_create:
            return

        target = await self.model.first({"id": model.get(self.embed_on_create + ".id")})
        if target is None:
            logger.debug(
                f"No {self.model.__name__} to embed {type(model).__name__} {model.id} into"
            )
            return

        data = self._embedded(model)
        for column in self.columns:
            if self.sync_mode == "single":
                target.set(column, data)
            else:
                target.associate(column, data)

        await target.save()

    async def sync_update(self, model: Model, old_model: Optional[Model] = None) -> None:
        """Refresh the embedded copies of an updated source."""
        if self._update_when_change and old_model is not None:
            if all(
                model.get(column, MISSING) == old_model.get(column, MISSING)
                for column in self._update_when_change
            ):
                return

        targets = await self._targets(model)
        data = self._embedded(model)

        for target in targets:
            for column in self.columns:
                if self.sync_mode == "single":
                    target.set(column, data)
                else:
                    target.reassociate(column, data)
            await target.save()

        logger.debug(
            f"Synced {type(model).__name__} {model.id} into {len(targets)} {self.model.__name__} documents"
        )

    async def sync_destruction(self, model: Model) -> None:
        """Unset or remove the embedded copies of a destroyed source."""
        targets = await self._targets(model)

        for target in targets:
            if self.when_delete == "remove":
                await target.destroy()
                continue

            for column in self.columns:
                if self.sync_mode == "single":
                    target.unset(column)
                else:
                    target.disassociate(column, model)
            await target.save()

        logger.debug(
            f"Ran {self.when_delete} on {len(targets)} {self.model.__name__} documents "
            f"after {type(model).__name__} {model.id} was destroyed"
        )
