"""
Model-aware aggregate.

ModelAggregate is the Aggregate returned by Model.aggregate(): results are
rehydrated into model instances, relations can be joined by name and delete()
goes through Model.destroy().

Example:
    >>> posts = await Post.aggregate().where("published", True).with_("author").latest().get()
    >>> posts[0].get("author.name")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, List, Optional, TypeVar

from ..aggregate.aggregate import Aggregate, PaginationListing
from ..errors import RelationNotFoundError

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")


class ModelAggregate(Aggregate, Generic[M]):
    """Aggregate over a model's collection.

    Attributes:
        model: Model class records are rehydrated into
    """

    def __init__(self, model: type[M]) -> None:
        super().__init__(model.collection, model.document_store)
        self.model = model

    async def get(self, map_data: Optional[Callable[[Dict[str, Any]], Any]] = None) -> List[Any]:
        """Fetch records as model instances, or mapped by map_data."""
        return await super().get(map_data or self.model)

    async def paginate(self, page: int = 1, limit: Optional[int] = None) -> PaginationListing:
        """Paginate with the model's per_page as the default page size."""
        return await super().paginate(page, limit or self.model.get_per_page())

    async def delete(self) -> int:
        """Destroy every matching model so events, trash and sync run.

        Returns:
            Number of destroyed models
        """
        models = await self.get()

        for model in models:
            await model.destroy()

        logger.debug(f"Destroyed {len(models)} {self.model.__name__} models")
        return len(models)

    def with_(self, name: str) -> ModelAggregate[M]:
        """Join a relation declared in the model's relations table.

        Raises:
            RelationNotFoundError: If the model declares no such relation
        """
        relation = self.model.relations.get(name)
        if relation is None:
            raise RelationNotFoundError(name, self.model.__name__)

        self.lookup(**relation.lookup_options(name))
        return self
