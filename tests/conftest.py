"""
Shared test fixtures for mongoent.

Every test gets fresh event registries; tests that touch the database ask for
the `store` fixture, which installs a fresh InMemoryDocumentStore as the
default store.
"""

import pytest

from mongoent.connection import reset_store, set_store
from mongoent.model import Model, get_model_registry
from mongoent.store import InMemoryDocumentStore


@pytest.fixture(autouse=True)
def reset_events():
    """Reopen and clear every model event registry."""
    Model.events().reset()
    for model_cls in get_model_registry().models():
        model_cls.events().reset()
    yield


@pytest.fixture
def store():
    """Install a fresh in-memory store as the default store."""
    memory_store = InMemoryDocumentStore()
    set_store(memory_store)
    yield memory_store
    reset_store()
