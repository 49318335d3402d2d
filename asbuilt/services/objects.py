from __future__ import annotations

import logging
from typing import Collection, Optional

from ..schemas import ConstructionObject
from ..scoping import SCOPED_COLLECTIONS, owner_of
from ..store import CollectionKey, EntityStore
from .cloning import build_clone_plan

logger = logging.getLogger(__name__)

FALLBACK_OBJECT_NAME = "Новый объект"
FALLBACK_OBJECT_SHORT_NAME = "Новый"


def create_object(
    store: EntityStore,
    name: str,
    short_name: str | None = None,
    *,
    clone_from: str | None = None,
    categories: Optional[Collection[str]] = None,
    select: bool = True,
) -> ConstructionObject:
    """Register a new object, optionally seeded with records of another one.

    ``categories`` picks which record kinds are copied from ``clone_from``;
    links pointing at kinds left out resolve to absent.
    """
    target = ConstructionObject(name=name, shortName=short_name)
    with store.transaction():
        if clone_from and categories:
            if not store.contains(CollectionKey.OBJECTS, clone_from):
                raise ValueError("Исходный объект строительства не найден")
            build_clone_plan(store, clone_from, target, categories).commit(store)
        else:
            store.upsert(CollectionKey.OBJECTS, target)
        if select:
            store.set_current_object(target.id)
    logger.info("Created construction object %s (%s)", target.name, target.id)
    return target


def update_object(
    store: EntityStore,
    object_id: str,
    name: str,
    short_name: str | None = None,
) -> ConstructionObject:
    current = store.get(CollectionKey.OBJECTS, object_id)
    if current is None:
        raise ValueError("Объект строительства не найден")
    updated = ConstructionObject.model_validate(
        {**current.model_dump(), "name": name, "shortName": short_name}
    )
    return store.upsert(CollectionKey.OBJECTS, updated)


def select_object(store: EntityStore, object_id: str) -> ConstructionObject:
    obj = store.get(CollectionKey.OBJECTS, object_id)
    if obj is None:
        raise ValueError("Объект строительства не найден")
    store.set_current_object(obj.id)
    return obj


def delete_object(store: EntityStore, object_id: str) -> Optional[ConstructionObject]:
    """Remove an object together with every record scoped to it, trash included.

    If the current object goes away the first remaining one is selected, or a
    fresh empty object is created when none remain.
    """
    obj = store.get(CollectionKey.OBJECTS, object_id)
    if obj is None:
        return None
    with store.transaction():
        store.remove(CollectionKey.OBJECTS, object_id)
        for key in SCOPED_COLLECTIONS:
            store.remove_where(key, lambda record: owner_of(record) == object_id)
        if store.current_object_id == object_id:
            remaining = store.list(CollectionKey.OBJECTS)
            if remaining:
                store.set_current_object(remaining[0].id)
            else:
                fallback = ConstructionObject(name=FALLBACK_OBJECT_NAME, shortName=FALLBACK_OBJECT_SHORT_NAME)
                store.upsert(CollectionKey.OBJECTS, fallback)
                store.set_current_object(fallback.id)
    logger.info("Deleted construction object %s (%s) with its records", obj.name, object_id)
    return obj
