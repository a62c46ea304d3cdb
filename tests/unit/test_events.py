"""
Unit tests for model event registries.

Tests cover:
- Registration order
- Sync and async callbacks
- Freezing
"""

import pytest

from mongoent.errors import RegistryFrozenError, UsageError
from mongoent.model import Model, ModelEvents


class EventsWidget(Model):
    collection = "event_widgets"


class TestModelEvents:
    """Tests for ModelEvents."""

    @pytest.fixture
    def events(self):
        """Create a fresh registry."""
        return ModelEvents("Widget")

    @pytest.mark.asyncio
    async def test_callbacks_run_in_registration_order(self, events):
        calls = []
        events.on_saving(lambda model, old: calls.append(("first", model, old)))
        events.on_saving(lambda model, old: calls.append(("second", model, old)))

        await events.trigger("saving", "model", None)

        assert calls == [("first", "model", None), ("second", "model", None)]

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, events):
        calls = []

        async def on_deleted(model):
            calls.append(model)

        events.on_deleted(on_deleted)
        await events.trigger("deleted", "model")

        assert calls == ["model"]

    @pytest.mark.asyncio
    async def test_trigger_without_callbacks_is_noop(self, events):
        await events.trigger("updated", "model", None)

    def test_unknown_event_raises(self, events):
        with pytest.raises(UsageError):
            events.on("archived", lambda model: None)

    def test_register_after_freeze_raises(self, events):
        events.freeze()

        assert events.frozen
        with pytest.raises(RegistryFrozenError):
            events.on_created(lambda model, old: None)

    @pytest.mark.asyncio
    async def test_reset_clears_and_reopens(self, events):
        calls = []
        events.on_created(lambda model, old: calls.append(model))
        events.freeze()

        events.reset()
        events.on_updated(lambda model, old: calls.append(model))
        await events.trigger("created", "model", None)

        assert not events.frozen
        assert calls == []


class TestModelEventOwnership:
    """Tests for per-model and catch-all registries."""

    def test_each_model_owns_a_registry(self):
        assert EventsWidget.events() is not Model.events()
        assert isinstance(EventsWidget.events(), ModelEvents)

    def test_first_instance_freezes_registries(self):
        """Constructing a model closes its registry and the catch-all registry."""
        EventsWidget.events().on_saved(lambda model, old: None)

        EventsWidget({"name": "a"})

        assert EventsWidget.events().frozen
        assert Model.events().frozen
        with pytest.raises(RegistryFrozenError):
            EventsWidget.events().on_saved(lambda model, old: None)
