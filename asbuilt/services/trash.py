from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from ..schemas import (
    Act,
    Certificate,
    CommissionGroup,
    DeletedActEntry,
    DeletedCertificateEntry,
    utc_now_iso,
)
from ..scoping import scoped
from ..store import CollectionKey, EntityStore
from .relations import detach_successors, sanitize_acts, sanitize_group

logger = logging.getLogger(__name__)


class GroupRestoreRequired(Exception):
    """Restoring acts needs a decision about commission groups deleted since."""

    def __init__(self, groups: Sequence[CommissionGroup]) -> None:
        names = ", ".join(group.name for group in groups)
        super().__init__(
            "Одна или несколько групп комиссий, связанные с восстанавливаемыми актами, были удалены: "
            f"{names}. Восстановить эти группы вместе с актами?"
        )
        self.groups = list(groups)


def move_acts_to_trash(
    store: EntityStore,
    act_ids: Iterable[str],
    *,
    deleted_on: str | None = None,
) -> List[DeletedActEntry]:
    targets = set(act_ids)
    timestamp = deleted_on or utc_now_iso()
    with store.transaction():
        removed = store.remove_where(CollectionKey.ACTS, lambda act: act.id in targets)
        if not removed:
            return []
        entries = [
            DeletedActEntry(
                act=act,
                deletedOn=timestamp,
                associatedGroup=store.get(CollectionKey.GROUPS, act.commissionGroupId),
            )
            for act in removed
        ]
        moved = {entry.act.id for entry in entries}
        previous = [entry for entry in store.list(CollectionKey.DELETED_ACTS) if entry.act.id not in moved]
        store.replace(CollectionKey.DELETED_ACTS, entries + previous)
        detach_successors(store, removed)
    logger.info("Moved %d act(s) to trash", len(entries))
    return entries


def _selected_act_entries(store: EntityStore, act_ids: Iterable[str]) -> List[DeletedActEntry]:
    targets = set(act_ids)
    return [entry for entry in store.list(CollectionKey.DELETED_ACTS) if entry.act.id in targets]


def missing_groups(store: EntityStore, entries: Sequence[DeletedActEntry]) -> List[CommissionGroup]:
    found: dict[str, CommissionGroup] = {}
    for entry in entries:
        group = entry.associatedGroup
        if group is None or store.contains(CollectionKey.GROUPS, group.id):
            continue
        found.setdefault(group.id, group)
    return list(found.values())


def restore_acts(
    store: EntityStore,
    act_ids: Iterable[str],
    *,
    restore_groups: bool | None = None,
) -> List[Act]:
    """Return trashed acts to the active collection.

    When a snapshotted commission group no longer exists the caller must pass
    ``restore_groups``: ``True`` re-creates the groups from their snapshots,
    ``False`` restores the acts without a group. Leaving it ``None`` raises
    :class:`GroupRestoreRequired` listing the groups in question.
    """
    entries = _selected_act_entries(store, act_ids)
    if not entries:
        return []
    groups = missing_groups(store, entries)
    if groups and restore_groups is None:
        raise GroupRestoreRequired(groups)

    for entry in entries:
        if not store.contains(CollectionKey.OBJECTS, entry.act.constructionObjectId):
            raise ValueError(f"Объект строительства акта № {entry.act.number} не найден")

    missing_ids = {group.id for group in groups}
    restored: List[Act] = []
    for entry in entries:
        act = entry.act
        if act.commissionGroupId in missing_ids and not restore_groups:
            act = act.model_copy(update={"commissionGroupId": None})
        restored.append(act)

    with store.transaction():
        if groups and restore_groups:
            for group in groups:
                store.upsert(CollectionKey.GROUPS, sanitize_group(store, group))
        restored_ids = {act.id for act in restored}
        active = [act for act in store.list(CollectionKey.ACTS) if act.id not in restored_ids]
        restored = sanitize_acts(store, restored, installed=active + restored)
        store.replace(CollectionKey.ACTS, active + restored)
        store.remove_where(CollectionKey.DELETED_ACTS, lambda entry: entry.act.id in restored_ids)
    logger.info("Restored %d act(s) from trash", len(restored))
    return restored


def permanently_delete_acts(store: EntityStore, act_ids: Iterable[str]) -> List[DeletedActEntry]:
    targets = set(act_ids)
    return store.remove_where(CollectionKey.DELETED_ACTS, lambda entry: entry.act.id in targets)


def empty_acts_trash(store: EntityStore, object_id: str) -> List[DeletedActEntry]:
    entries = scoped(store, CollectionKey.DELETED_ACTS, object_id)
    return permanently_delete_acts(store, [entry.act.id for entry in entries])


def move_certificates_to_trash(
    store: EntityStore,
    certificate_ids: Iterable[str],
    *,
    deleted_on: str | None = None,
) -> List[DeletedCertificateEntry]:
    targets = set(certificate_ids)
    timestamp = deleted_on or utc_now_iso()
    with store.transaction():
        removed = store.remove_where(CollectionKey.CERTIFICATES, lambda cert: cert.id in targets)
        if not removed:
            return []
        entries = [DeletedCertificateEntry(certificate=cert, deletedOn=timestamp) for cert in removed]
        moved = {cert.id for cert in removed}
        previous = [
            entry
            for entry in store.list(CollectionKey.DELETED_CERTIFICATES)
            if entry.certificate.id not in moved
        ]
        store.replace(CollectionKey.DELETED_CERTIFICATES, entries + previous)
    logger.info("Moved %d certificate(s) to trash", len(entries))
    return entries


def restore_certificates(store: EntityStore, certificate_ids: Iterable[str]) -> List[Certificate]:
    targets = set(certificate_ids)
    entries = [entry for entry in store.list(CollectionKey.DELETED_CERTIFICATES) if entry.certificate.id in targets]
    if not entries:
        return []
    for entry in entries:
        if not store.contains(CollectionKey.OBJECTS, entry.certificate.constructionObjectId):
            raise ValueError(f"Объект строительства сертификата № {entry.certificate.number} не найден")
    restored = [entry.certificate for entry in entries]
    with store.transaction():
        for certificate in restored:
            store.upsert(CollectionKey.CERTIFICATES, certificate)
        store.remove_where(
            CollectionKey.DELETED_CERTIFICATES,
            lambda entry: entry.certificate.id in targets,
        )
    logger.info("Restored %d certificate(s) from trash", len(restored))
    return restored


def permanently_delete_certificates(
    store: EntityStore, certificate_ids: Iterable[str]
) -> List[DeletedCertificateEntry]:
    targets = set(certificate_ids)
    return store.remove_where(
        CollectionKey.DELETED_CERTIFICATES,
        lambda entry: entry.certificate.id in targets,
    )


def empty_certificates_trash(store: EntityStore, object_id: str) -> List[DeletedCertificateEntry]:
    entries = scoped(store, CollectionKey.DELETED_CERTIFICATES, object_id)
    return permanently_delete_certificates(store, [entry.certificate.id for entry in entries])
