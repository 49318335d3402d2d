from __future__ import annotations

from typing import Any, Iterable, List, Optional, Tuple

from .schemas import DeletedActEntry, DeletedCertificateEntry
from .store import CollectionKey, EntityStore

SCOPED_COLLECTIONS: Tuple[CollectionKey, ...] = (
    CollectionKey.ACTS,
    CollectionKey.DELETED_ACTS,
    CollectionKey.PEOPLE,
    CollectionKey.ORGANIZATIONS,
    CollectionKey.GROUPS,
    CollectionKey.REGULATIONS,
    CollectionKey.CERTIFICATES,
    CollectionKey.DELETED_CERTIFICATES,
)


def owner_of(record: Any) -> Optional[str]:
    if isinstance(record, DeletedActEntry):
        return record.act.constructionObjectId
    if isinstance(record, DeletedCertificateEntry):
        return record.certificate.constructionObjectId
    return getattr(record, "constructionObjectId", None)


def filter_scoped(records: Iterable[Any], object_id: str | None) -> List[Any]:
    if not object_id:
        return []
    return [record for record in records if owner_of(record) == object_id]


def scoped(store: EntityStore, key: CollectionKey, object_id: str | None) -> List[Any]:
    if key not in SCOPED_COLLECTIONS:
        raise ValueError(f"Collection {key.value} is not scoped to an object")
    return filter_scoped(store.list(key), object_id)


def in_scope(record: Any, object_id: str | None) -> bool:
    return bool(object_id) and owner_of(record) == object_id
