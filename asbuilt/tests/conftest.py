from __future__ import annotations

import pytest

from asbuilt.migrations import run_migrations
from asbuilt.project import Project
from asbuilt.storage import MemoryStorage
from asbuilt.store import EntityStore


@pytest.fixture()
def storage():
    return MemoryStorage()


@pytest.fixture()
def store(storage):
    store = EntityStore.load(storage)
    run_migrations(store)
    return store


@pytest.fixture()
def object_id(store):
    return store.current_object_id


@pytest.fixture()
def project(storage):
    return Project.open(storage)
