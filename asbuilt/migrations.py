from __future__ import annotations

import logging
from typing import Any, Iterable, List

from .schemas import (
    Certificate,
    CertificateFile,
    ConstructionObject,
    DeletedCertificateEntry,
    ProjectSettings,
)
from .scoping import owner_of
from .store import CollectionKey, EntityStore

logger = logging.getLogger(__name__)

LEGACY_OBJECT_NAME = "Мой объект"
DEFAULT_OBJECT_NAME = "Основной объект"
DEFAULT_OBJECT_SHORT_NAME = "Основной"

_LEGACY_SCOPED = (
    CollectionKey.ACTS,
    CollectionKey.PEOPLE,
    CollectionKey.ORGANIZATIONS,
    CollectionKey.GROUPS,
    CollectionKey.REGULATIONS,
    CollectionKey.CERTIFICATES,
)


def upgrade_certificate(certificate: Certificate) -> Certificate:
    """Fold the single-file layout of older releases into ``files``."""
    if not certificate.fileData:
        if certificate.fileType or certificate.fileName:
            return certificate.model_copy(update={"fileType": None, "fileName": None})
        return certificate
    files = list(certificate.files)
    if not any(item.data == certificate.fileData for item in files):
        files.insert(
            0,
            CertificateFile(
                type=certificate.fileType or "pdf",
                name=certificate.fileName or certificate.number or "certificate",
                data=certificate.fileData,
            ),
        )
    return certificate.model_copy(
        update={"files": files, "fileType": None, "fileName": None, "fileData": None}
    )


def stamp_object(record: Any, object_id: str) -> Any:
    return record.model_copy(update={"constructionObjectId": object_id})


def _has_legacy_certificates(store: EntityStore) -> bool:
    certificates: Iterable[Certificate] = store.list(CollectionKey.CERTIFICATES)
    trashed = [entry.certificate for entry in store.list(CollectionKey.DELETED_CERTIFICATES)]
    return any(cert.fileData or cert.fileType or cert.fileName for cert in list(certificates) + trashed)


def _upgrade_certificates(store: EntityStore) -> None:
    if not _has_legacy_certificates(store):
        return
    store.replace(
        CollectionKey.CERTIFICATES,
        [upgrade_certificate(cert) for cert in store.list(CollectionKey.CERTIFICATES)],
    )
    store.replace(
        CollectionKey.DELETED_CERTIFICATES,
        [
            DeletedCertificateEntry(certificate=upgrade_certificate(entry.certificate), deletedOn=entry.deletedOn)
            for entry in store.list(CollectionKey.DELETED_CERTIFICATES)
        ],
    )
    logger.info("Upgraded legacy single-file certificates")


def _assign_legacy_records(store: EntityStore) -> None:
    settings_extra = store.settings.model_extra or {}
    legacy_name = settings_extra.get("objectName") or LEGACY_OBJECT_NAME
    obj = ConstructionObject(name=legacy_name, shortName=legacy_name)
    store.upsert(CollectionKey.OBJECTS, obj)
    store.set_current_object(obj.id)

    for key in _LEGACY_SCOPED:
        records: List[Any] = store.list(key)
        store.replace(key, [record if owner_of(record) else stamp_object(record, obj.id) for record in records])

    if "objectName" in settings_extra:
        cleaned = store.settings.model_dump()
        cleaned.pop("objectName", None)
        store.set_settings(ProjectSettings.model_validate(cleaned))
    logger.info("Assigned legacy records to construction object %s", obj.id)


def ensure_current_object(store: EntityStore) -> None:
    objects = store.list(CollectionKey.OBJECTS)
    if not objects:
        obj = ConstructionObject(name=DEFAULT_OBJECT_NAME, shortName=DEFAULT_OBJECT_SHORT_NAME)
        store.upsert(CollectionKey.OBJECTS, obj)
        store.set_current_object(obj.id)
        return
    if not store.contains(CollectionKey.OBJECTS, store.current_object_id):
        store.set_current_object(objects[0].id)


def run_migrations(store: EntityStore) -> None:
    """One-time, best-effort upgrade of data written by earlier releases."""
    with store.transaction():
        has_data = any(store.list(key) for key in _LEGACY_SCOPED)
        if has_data and not store.list(CollectionKey.OBJECTS):
            _assign_legacy_records(store)
        else:
            ensure_current_object(store)
        _upgrade_certificates(store)
