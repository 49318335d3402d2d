from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from ..migrations import ensure_current_object, stamp_object, upgrade_certificate
from ..schemas import (
    DeletedActEntry,
    DeletedCertificateEntry,
    ExportSettings,
    ImportData,
    ImportMode,
    ImportSettings,
    ImportSummary,
    ProjectSettings,
)
from ..scoping import owner_of
from ..store import COLLECTIONS, CollectionKey, EntityStore, serialize
from .relations import sanitize_acts

logger = logging.getLogger(__name__)

SCALAR_SECTIONS = ("template", "registryTemplate", "projectSettings")


class ImportValidationError(ValueError):
    """The payload is not an import file at all."""


def _describe_error(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    reason = first.get("msg", "неверный формат")
    if location:
        return f"запись {location}: {reason}"
    return reason


def parse_import_data(payload: Any) -> ImportData:
    """Validate a flat import payload.

    Each collection is taken whole or rejected whole; rejected sections are
    listed in ``ImportData.rejected`` so the caller can explain them.
    """
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ImportValidationError(
                "Не удалось импортировать данные. Файл может быть поврежден или иметь неверный формат."
            ) from exc
    if not isinstance(payload, dict):
        raise ImportValidationError("Ошибка: Неверный формат файла.")

    known = {spec.file_key for spec in COLLECTIONS.values()} | set(SCALAR_SECTIONS)
    if not known.intersection(payload):
        raise ImportValidationError("Ошибка: Неверный формат файла.")

    values: Dict[str, Any] = {}
    rejected: Dict[str, str] = {}

    for spec in COLLECTIONS.values():
        raw = payload.get(spec.file_key)
        if raw is None:
            continue
        if not isinstance(raw, list):
            rejected[spec.file_key] = "ожидался список записей"
            continue
        try:
            values[spec.file_key] = TypeAdapter(List[spec.model]).validate_python(raw)
        except ValidationError as exc:
            rejected[spec.file_key] = _describe_error(exc)

    for key in ("template", "registryTemplate"):
        raw = payload.get(key)
        if raw is None:
            continue
        if isinstance(raw, str):
            values[key] = raw
        else:
            rejected[key] = "ожидалась строка base64"

    raw_settings = payload.get("projectSettings")
    if raw_settings is not None:
        try:
            values["projectSettings"] = ProjectSettings.model_validate(raw_settings)
        except ValidationError as exc:
            rejected["projectSettings"] = _describe_error(exc)

    if "certificates" in values:
        values["certificates"] = [upgrade_certificate(cert) for cert in values["certificates"]]
    if "deletedCertificates" in values:
        values["deletedCertificates"] = [
            DeletedCertificateEntry(certificate=upgrade_certificate(entry.certificate), deletedOn=entry.deletedOn)
            for entry in values["deletedCertificates"]
        ]

    for section, reason in rejected.items():
        logger.warning("Rejected import section %s: %s", section, reason)
    return ImportData(**values, rejected=rejected)


def import_collection(
    store: EntityStore,
    key: CollectionKey,
    incoming: Sequence[Any],
    mode: ImportMode,
    selected_ids: Optional[Iterable[str]] = None,
    sort_key: Optional[Callable[[Any], Any]] = None,
) -> int:
    """Reconcile one collection with ``incoming``; returns the number of records taken.

    ``replace`` installs ``incoming`` as is. ``merge`` takes only records whose
    identity is in ``selected_ids`` (all of them when it is ``None``), overwrites
    records with the same identity in place and appends the rest.
    """
    spec = COLLECTIONS[key]
    if mode == ImportMode.REPLACE:
        store.replace(key, incoming)
        return len(incoming)

    selected = None if selected_ids is None else set(selected_ids)
    chosen = [record for record in incoming if selected is None or spec.identity(record) in selected]
    merged = {spec.identity(record): record for record in store.list(key)}
    for record in chosen:
        merged[spec.identity(record)] = record
    result = list(merged.values())
    if sort_key is not None:
        result.sort(key=sort_key)
    store.replace(key, result)
    return len(chosen)


def _adopt_orphans(records: Sequence[Any], known_objects: set[str], fallback: str | None) -> List[Any]:
    if not fallback:
        return list(records)
    adopted: List[Any] = []
    for record in records:
        if owner_of(record) in known_objects:
            adopted.append(record)
        elif isinstance(record, DeletedActEntry):
            adopted.append(
                DeletedActEntry(
                    act=stamp_object(record.act, fallback),
                    deletedOn=record.deletedOn,
                    associatedGroup=stamp_object(record.associatedGroup, fallback)
                    if record.associatedGroup
                    else None,
                )
            )
        elif isinstance(record, DeletedCertificateEntry):
            adopted.append(
                DeletedCertificateEntry(certificate=stamp_object(record.certificate, fallback), deletedOn=record.deletedOn)
            )
        else:
            adopted.append(stamp_object(record, fallback))
    return adopted


def import_data(store: EntityStore, data: ImportData, selection: ImportSettings) -> ImportSummary:
    """Apply the sections picked in ``selection``.

    Records that do not belong to a known construction object (files written
    before objects existed) are assigned to the current object.
    """
    summary = ImportSummary(rejected=dict(data.rejected))
    with store.transaction():
        if selection.template and data.template is not None:
            store.set_template(data.template)
            summary.template = True
        if selection.registryTemplate and data.registryTemplate is not None:
            store.set_registry_template(data.registryTemplate)
            summary.registryTemplate = True
        if selection.projectSettings and data.projectSettings is not None:
            store.set_settings(data.projectSettings)
            summary.projectSettings = True

        for key, spec in COLLECTIONS.items():
            category = getattr(selection, spec.file_key)
            incoming = getattr(data, spec.file_key)
            if category is None or not category.enabled or incoming is None:
                continue
            if key != CollectionKey.OBJECTS:
                incoming = _adopt_orphans(incoming, store.ids(CollectionKey.OBJECTS), store.current_object_id)
            summary.imported[spec.file_key] = import_collection(
                store,
                key,
                incoming,
                category.mode,
                category.selectedIds,
                spec.sort_key,
            )
            if key == CollectionKey.OBJECTS:
                ensure_current_object(store)

        if summary.imported:
            acts = store.list(CollectionKey.ACTS)
            cleaned = sanitize_acts(store, acts)
            if cleaned != acts:
                logger.debug("Cleared unresolved references on imported acts")
                store.replace(CollectionKey.ACTS, cleaned)

    logger.info("Imported sections: %s", ", ".join(summary.imported) or "none")
    return summary


def export_data(store: EntityStore, selection: ExportSettings | None = None) -> Dict[str, Any]:
    """Build the flat backup payload; packing it into a file is up to the caller."""
    selection = selection or ExportSettings()
    payload: Dict[str, Any] = {}
    if selection.template and store.template is not None:
        payload["template"] = store.template
    if selection.registryTemplate and store.registry_template is not None:
        payload["registryTemplate"] = store.registry_template
    if selection.projectSettings:
        payload["projectSettings"] = store.settings.model_dump(mode="json", exclude_none=True)
    for key, spec in COLLECTIONS.items():
        if getattr(selection, spec.file_key):
            payload[spec.file_key] = [serialize(record) for record in store.list(key)]
    return payload
