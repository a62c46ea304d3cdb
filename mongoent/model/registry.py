"""
Model name registry.

Every Model subclass registers itself under its class name so sync
descriptors and relations can refer to models by name before the class is
importable.

Example:
    >>> get_model_registry().get_model("Category")
    <class 'app.models.Category'>
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING

from ..errors import UsageError

if TYPE_CHECKING:
    from .model import Model

# Global registry
_global_registry: ModelRegistry | None = None
_registry_lock = threading.Lock()


class ModelRegistry:
    """Name -> model class lookup.

    Registering a name twice replaces the earlier class.
    """

    def __init__(self) -> None:
        self._models: dict[str, type[Model]] = {}
        self._lock = threading.Lock()

    def register(self, model_cls: type[Model], name: str | None = None) -> None:
        with self._lock:
            self._models[name or model_cls.__name__] = model_cls

    def get_model(self, name: str) -> type[Model]:
        """Resolve a model class by name.

        Raises:
            UsageError: If no model is registered under the name
        """
        model_cls = self._models.get(name)
        if model_cls is None:
            raise UsageError(f"Model '{name}' is not registered", model=name)
        return model_cls

    def models(self) -> Iterator[type[Model]]:
        """Iterate over all registered models."""
        yield from list(self._models.values())

    def __contains__(self, name: str) -> bool:
        return name in self._models


def get_model_registry() -> ModelRegistry:
    """Get the global model registry."""
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = ModelRegistry()
        return _global_registry


def reset_model_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
