"""
Lifecycle event registries.

Every model class owns one ModelEvents registry; Model.events() on the base
class is the catch-all registry whose callbacks run for every model type.

Example:
    >>> User.events().on_created(send_welcome_email)
    >>> Model.events().on_saved(audit_log)

Callback arguments:
    - saving, saved, creating, created, updating, updated: (model, old_model)
      where old_model is None on create
    - deleting, deleted: (model,)

Invariants:
    - Callbacks run in registration order and are always awaited
    - A registry is frozen once the first instance of its model is constructed;
      registering after that raises RegistryFrozenError

How to change safely:
    - Adding an event means adding it to EVENTS and firing it from Model
"""

from __future__ import annotations

import inspect
import logging
import threading
from typing import Any, Callable, Dict, List

from ..errors import RegistryFrozenError, UsageError

logger = logging.getLogger(__name__)

EVENTS = (
    "saving",
    "saved",
    "creating",
    "created",
    "updating",
    "updated",
    "deleting",
    "deleted",
)

EventCallback = Callable[..., Any]


class ModelEvents:
    """Ordered callback registry for one model type.

    Attributes:
        name: Owner name used in log messages
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: Dict[str, List[EventCallback]] = {event: [] for event in EVENTS}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether registration is closed."""
        return self._frozen

    def on(self, event: str, callback: EventCallback) -> ModelEvents:
        """Register a callback for an event.

        Raises:
            UsageError: If the event name is unknown
            RegistryFrozenError: If the registry is frozen
        """
        if event not in self._callbacks:
            raise UsageError(f"Unknown model event: {event}", event=event)

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register '{event}' on {self.name}: a model instance already exists"
                )
            self._callbacks[event].append(callback)
        return self

    def on_saving(self, callback: EventCallback) -> ModelEvents:
        return self.on("saving", callback)

    def on_saved(self, callback: EventCallback) -> ModelEvents:
        return self.on("saved", callback)

    def on_creating(self, callback: EventCallback) -> ModelEvents:
        return self.on("creating", callback)

    def on_created(self, callback: EventCallback) -> ModelEvents:
        return self.on("created", callback)

    def on_updating(self, callback: EventCallback) -> ModelEvents:
        return self.on("updating", callback)

    def on_updated(self, callback: EventCallback) -> ModelEvents:
        return self.on("updated", callback)

    def on_deleting(self, callback: EventCallback) -> ModelEvents:
        return self.on("deleting", callback)

    def on_deleted(self, callback: EventCallback) -> ModelEvents:
        return self.on("deleted", callback)

    async def trigger(self, event: str, *args: Any) -> None:
        """Run the callbacks of an event in registration order."""
        for callback in self._callbacks.get(event, []):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

    def freeze(self) -> None:
        """Close registration."""
        with self._lock:
            if not self._frozen:
                logger.debug(f"Event registry {self.name} frozen")
            self._frozen = True

    def reset(self) -> None:
        """Drop all callbacks and reopen registration (for testing only)."""
        with self._lock:
            self._callbacks = {event: [] for event in EVENTS}
            self._frozen = False
