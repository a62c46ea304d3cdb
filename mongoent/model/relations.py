"""
Relation descriptors.

A model declares the collections it can join in its `relations` table:

    >>> class Post(Model):
    ...     collection = "posts"
    ...     relations = {
    ...         "comments": Relation("Comment", local_field="id", foreign_field="post.id"),
    ...         "author": Relation("User", single=True),
    ...     }
    >>> await Post.aggregate().with_("comments").get()

Invariants:
    - The table is validated when the model class is defined
    - Target models given by name are resolved on first use through the model registry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from ..aggregate.pipelines import SelectPipeline
from ..errors import UsageError
from .registry import get_model_registry

if TYPE_CHECKING:
    from .model import Model


@dataclass(frozen=True)
class Relation:
    """Join description for ModelAggregate.with_.

    Attributes:
        model: Related model class or its registered name
        local_field: Field of this model to match (default "<as_>.id", the
            id of the embedded copy)
        foreign_field: Field of the related model (default "id")
        as_: Alias of the joined value (default: the relation name)
        single: Collapse the joined array to its first element
        select: Columns of the related documents to keep
        pipeline: Extra stages run on the related documents
    """

    model: Union[str, type]
    local_field: Optional[str] = None
    foreign_field: str = "id"
    as_: Optional[str] = None
    single: bool = False
    select: Optional[Sequence[str]] = None
    pipeline: Sequence[Any] = field(default_factory=tuple)

    def resolve_model(self) -> type[Model]:
        if isinstance(self.model, str):
            return get_model_registry().get_model(self.model)
        return self.model

    def lookup_options(self, name: str) -> Dict[str, Any]:
        """Arguments for Aggregate.lookup when joined under the given relation name."""
        alias = self.as_ or name
        pipeline: List[Any] = list(self.pipeline)
        if self.select:
            pipeline.append(SelectPipeline(self.select))

        return {
            "from_": self.resolve_model().collection,
            "local_field": self.local_field or f"{alias}.id",
            "foreign_field": self.foreign_field,
            "as_": alias,
            "pipeline": pipeline,
            "single": self.single,
        }


def validate_relations(owner: str, relations: Dict[str, Any]) -> None:
    """Check a relations table.

    Raises:
        UsageError: If an entry is not a Relation
    """
    for name, relation in relations.items():
        if not isinstance(relation, Relation):
            raise UsageError(
                f"Relation '{name}' on {owner} must be a Relation, got {type(relation).__name__}",
                model=owner,
                relation=name,
            )
