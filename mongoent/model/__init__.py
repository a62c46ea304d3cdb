"""Model layer: entities, casts, events, identity counter, relations and sync."""

from .casts import Cast, CastKind, Custom, Primitive, as_cast, cast_model, cast_value
from .events import EVENTS, ModelEvents
from .master_mind import MasterMind
from .model import Model
from .model_aggregate import ModelAggregate
from .registry import ModelRegistry, get_model_registry, reset_model_registry
from .relations import Relation
from .sync import ModelSync

__all__ = [
    "Cast",
    "CastKind",
    "Custom",
    "EVENTS",
    "MasterMind",
    "Model",
    "ModelAggregate",
    "ModelEvents",
    "ModelRegistry",
    "ModelSync",
    "Primitive",
    "Relation",
    "as_cast",
    "cast_model",
    "cast_value",
    "get_model_registry",
    "reset_model_registry",
]
