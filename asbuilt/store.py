from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Type

from pydantic import BaseModel, ValidationError

from .schemas import (
    Act,
    Certificate,
    CommissionGroup,
    ConstructionObject,
    DeletedActEntry,
    DeletedCertificateEntry,
    Organization,
    Person,
    ProjectSettings,
    Regulation,
)
from .storage import KeyValueStorage, StorageError

logger = logging.getLogger(__name__)


class CollectionKey(str, Enum):
    OBJECTS = "objects"
    ACTS = "acts"
    DELETED_ACTS = "deleted-acts"
    PEOPLE = "people"
    ORGANIZATIONS = "organizations"
    GROUPS = "groups"
    REGULATIONS = "regulations"
    CERTIFICATES = "certificates"
    DELETED_CERTIFICATES = "deleted-certificates"


SETTINGS_KEY = "settings"
CURRENT_OBJECT_KEY = "current-object-id"
TEMPLATE_KEY = "template"
REGISTRY_TEMPLATE_KEY = "registry-template"


def _by_name(record: Any) -> str:
    return (record.name or "").casefold()


@dataclass(frozen=True)
class CollectionSpec:
    key: CollectionKey
    model: Type[BaseModel]
    file_key: str
    identity: Callable[[Any], str]
    sort_key: Optional[Callable[[Any], Any]] = None


COLLECTIONS: Dict[CollectionKey, CollectionSpec] = {
    CollectionKey.OBJECTS: CollectionSpec(
        CollectionKey.OBJECTS, ConstructionObject, "constructionObjects", lambda record: record.id
    ),
    CollectionKey.ACTS: CollectionSpec(CollectionKey.ACTS, Act, "acts", lambda record: record.id),
    CollectionKey.DELETED_ACTS: CollectionSpec(
        CollectionKey.DELETED_ACTS, DeletedActEntry, "deletedActs", lambda entry: entry.act.id
    ),
    CollectionKey.PEOPLE: CollectionSpec(
        CollectionKey.PEOPLE, Person, "people", lambda record: record.id, sort_key=_by_name
    ),
    CollectionKey.ORGANIZATIONS: CollectionSpec(
        CollectionKey.ORGANIZATIONS, Organization, "organizations", lambda record: record.id, sort_key=_by_name
    ),
    CollectionKey.GROUPS: CollectionSpec(CollectionKey.GROUPS, CommissionGroup, "groups", lambda record: record.id),
    CollectionKey.REGULATIONS: CollectionSpec(
        CollectionKey.REGULATIONS, Regulation, "regulations", lambda record: record.id
    ),
    CollectionKey.CERTIFICATES: CollectionSpec(
        CollectionKey.CERTIFICATES, Certificate, "certificates", lambda record: record.id
    ),
    CollectionKey.DELETED_CERTIFICATES: CollectionSpec(
        CollectionKey.DELETED_CERTIFICATES,
        DeletedCertificateEntry,
        "deletedCertificates",
        lambda entry: entry.certificate.id,
    ),
}

Listener = Callable[[str], None]


def serialize(record: BaseModel) -> dict:
    return record.model_dump(mode="json", exclude_none=True)


class EntityStore:
    """In-memory collections mirrored to a key-value storage.

    Every collection is an id-keyed ordered map, so links between records are
    plain ids and replacing a record keeps its position. The store applies no
    business rules; integrity lives in :mod:`asbuilt.services.relations`.
    """

    def __init__(self, storage: KeyValueStorage | None = None) -> None:
        self._storage = storage
        self._collections: Dict[CollectionKey, Dict[str, Any]] = {key: {} for key in CollectionKey}
        self._listeners: List[Listener] = []
        self._pending: Optional[set[str]] = None
        self.settings = ProjectSettings()
        self.current_object_id: Optional[str] = None
        self.template: Optional[str] = None
        self.registry_template: Optional[str] = None

    # -- loading -------------------------------------------------------------

    @classmethod
    def load(cls, storage: KeyValueStorage) -> "EntityStore":
        store = cls(storage)
        for key, spec in COLLECTIONS.items():
            raw = store._read(key.value)
            if not isinstance(raw, list):
                continue
            records = {}
            for item in raw:
                try:
                    record = spec.model.model_validate(item)
                except ValidationError as exc:
                    logger.warning("Skipping malformed %s record: %s", key.value, exc.errors()[:1])
                    continue
                records[spec.identity(record)] = record
            store._collections[key] = records

        raw_settings = store._read(SETTINGS_KEY)
        if isinstance(raw_settings, dict):
            try:
                store.settings = ProjectSettings.model_validate(raw_settings)
            except ValidationError as exc:
                logger.warning("Project settings are malformed, using defaults: %s", exc.errors()[:1])

        current = store._read(CURRENT_OBJECT_KEY)
        store.current_object_id = current if isinstance(current, str) and current else None
        template = store._read(TEMPLATE_KEY)
        store.template = template if isinstance(template, str) else None
        registry_template = store._read(REGISTRY_TEMPLATE_KEY)
        store.registry_template = registry_template if isinstance(registry_template, str) else None
        return store

    def _read(self, key: str) -> Any:
        if self._storage is None:
            return None
        try:
            return self._storage.get(key)
        except StorageError as exc:
            logger.warning("Unable to read %s from storage: %s", key, exc)
            return None

    # -- reads ---------------------------------------------------------------

    def list(self, key: CollectionKey) -> list:
        return list(self._collections[key].values())

    def get(self, key: CollectionKey, record_id: str | None) -> Any:
        if not record_id:
            return None
        return self._collections[key].get(record_id)

    def contains(self, key: CollectionKey, record_id: str | None) -> bool:
        return bool(record_id) and record_id in self._collections[key]

    def ids(self, key: CollectionKey) -> set[str]:
        return set(self._collections[key])

    # -- writes --------------------------------------------------------------

    def upsert(self, key: CollectionKey, record: Any, *, index: int | None = None) -> Any:
        spec = COLLECTIONS[key]
        items = self._collections[key]
        record_id = spec.identity(record)
        if record_id in items:
            items[record_id] = record
        elif index is not None:
            ordered = list(items.items())
            position = max(0, min(index, len(ordered)))
            ordered.insert(position, (record_id, record))
            self._collections[key] = dict(ordered)
        else:
            items[record_id] = record
            if spec.sort_key is not None:
                self._collections[key] = dict(
                    sorted(items.items(), key=lambda pair: spec.sort_key(pair[1]))
                )
        self._changed(key.value)
        return record

    def remove(self, key: CollectionKey, record_id: str) -> Any:
        removed = self._collections[key].pop(record_id, None)
        if removed is not None:
            self._changed(key.value)
        return removed

    def remove_where(self, key: CollectionKey, predicate: Callable[[Any], bool]) -> list:
        items = self._collections[key]
        removed = [record for record in items.values() if predicate(record)]
        if removed:
            spec = COLLECTIONS[key]
            drop = {spec.identity(record) for record in removed}
            self._collections[key] = {rid: rec for rid, rec in items.items() if rid not in drop}
            self._changed(key.value)
        return removed

    def replace(self, key: CollectionKey, records: Iterable[Any]) -> None:
        spec = COLLECTIONS[key]
        self._collections[key] = {spec.identity(record): record for record in records}
        self._changed(key.value)

    def set_settings(self, value: ProjectSettings) -> None:
        self.settings = value
        self._changed(SETTINGS_KEY)

    def set_current_object(self, object_id: str | None) -> None:
        self.current_object_id = object_id
        self._changed(CURRENT_OBJECT_KEY)

    def set_template(self, value: str | None) -> None:
        self.template = value
        self._changed(TEMPLATE_KEY)

    def set_registry_template(self, value: str | None) -> None:
        self.registry_template = value
        self._changed(REGISTRY_TEMPLATE_KEY)

    # -- observation ---------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def transaction(self) -> Generator["EntityStore", None, None]:
        """Group several writes: on error every collection is rolled back and
        nothing is persisted; on success each touched key is flushed once."""
        if self._pending is not None:
            yield self
            return
        snapshot = {key: dict(items) for key, items in self._collections.items()}
        scalars = (self.settings, self.current_object_id, self.template, self.registry_template)
        self._pending = set()
        try:
            yield self
        except Exception:
            self._collections = snapshot
            self.settings, self.current_object_id, self.template, self.registry_template = scalars
            self._pending = None
            raise
        touched, self._pending = self._pending, None
        for key in sorted(touched):
            self._flush(key)

    def _changed(self, key: str) -> None:
        if self._pending is not None:
            self._pending.add(key)
            return
        self._flush(key)

    def _flush(self, key: str) -> None:
        self._persist(key)
        for listener in list(self._listeners):
            listener(key)

    def _persist(self, key: str) -> None:
        if self._storage is None:
            return
        try:
            self._storage.set(key, self._serialized(key))
        except StorageError as exc:
            logger.warning("Unable to persist %s: %s", key, exc)

    def _serialized(self, key: str) -> Any:
        if key == SETTINGS_KEY:
            return self.settings.model_dump(mode="json", exclude_none=True)
        if key == CURRENT_OBJECT_KEY:
            return self.current_object_id
        if key == TEMPLATE_KEY:
            return self.template
        if key == REGISTRY_TEMPLATE_KEY:
            return self.registry_template
        return [serialize(record) for record in self._collections[CollectionKey(key)].values()]
