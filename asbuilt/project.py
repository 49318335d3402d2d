from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Collection, Generator, Iterable, List, Optional, Sequence

from .config import settings as app_settings
from .migrations import run_migrations
from .schemas import (
    Act,
    Certificate,
    CommissionGroup,
    ConstructionObject,
    CopySummary,
    DeletedActEntry,
    DeletedCertificateEntry,
    ExportSettings,
    ImportData,
    ImportSettings,
    ImportSummary,
    Organization,
    Person,
    ProjectSettings,
    Regulation,
)
from .scoping import scoped
from .services import cloning, imports, objects, relations, trash
from .services.history import ActHistory
from .storage import KeyValueStorage, create_storage
from .store import CollectionKey, EntityStore

logger = logging.getLogger(__name__)


class Project:
    """Working session over one store: current object, act history and every
    operation a caller needs, each applied to the current object by default."""

    def __init__(self, store: EntityStore, history_depth: int | None = None) -> None:
        self.store = store
        self.history = ActHistory(history_depth or store.settings.historyDepth)

    @classmethod
    def open(cls, storage: KeyValueStorage | None = None) -> "Project":
        storage = storage if storage is not None else create_storage(app_settings)
        store = EntityStore.load(storage)
        run_migrations(store)
        depth = store.settings.historyDepth
        if "historyDepth" not in store.settings.model_fields_set:
            depth = app_settings.history_depth
        logger.info("Opened project with %d construction object(s)", len(store.list(CollectionKey.OBJECTS)))
        return cls(store, depth)

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    # -- views ---------------------------------------------------------------

    @property
    def current_object_id(self) -> Optional[str]:
        return self.store.current_object_id

    @property
    def current_object(self) -> Optional[ConstructionObject]:
        return self.store.get(CollectionKey.OBJECTS, self.store.current_object_id)

    @property
    def settings(self) -> ProjectSettings:
        return self.store.settings

    @property
    def objects(self) -> List[ConstructionObject]:
        return self.store.list(CollectionKey.OBJECTS)

    def _scoped(self, key: CollectionKey) -> list:
        return scoped(self.store, key, self.store.current_object_id)

    @property
    def acts(self) -> List[Act]:
        return self._scoped(CollectionKey.ACTS)

    @property
    def people(self) -> List[Person]:
        return self._scoped(CollectionKey.PEOPLE)

    @property
    def organizations(self) -> List[Organization]:
        return self._scoped(CollectionKey.ORGANIZATIONS)

    @property
    def groups(self) -> List[CommissionGroup]:
        return self._scoped(CollectionKey.GROUPS)

    @property
    def regulations(self) -> List[Regulation]:
        return self._scoped(CollectionKey.REGULATIONS)

    @property
    def certificates(self) -> List[Certificate]:
        return self._scoped(CollectionKey.CERTIFICATES)

    @property
    def deleted_acts(self) -> List[DeletedActEntry]:
        return self._scoped(CollectionKey.DELETED_ACTS)

    @property
    def deleted_certificates(self) -> List[DeletedCertificateEntry]:
        return self._scoped(CollectionKey.DELETED_CERTIFICATES)

    # -- history -------------------------------------------------------------

    @contextmanager
    def _recording(self, *, drops_references: bool = False) -> Generator[None, None, None]:
        before = self.store.list(CollectionKey.ACTS)
        yield
        if self.store.list(CollectionKey.ACTS) != before:
            self.history.record(before)
        elif drops_references:
            # redo installs snapshots unsanitized
            self.history.future.clear()

    def _owned(self, snapshot: Sequence[Act]) -> List[Act]:
        object_ids = self.store.ids(CollectionKey.OBJECTS)
        return [act for act in snapshot if act.constructionObjectId in object_ids]

    def undo(self) -> bool:
        snapshot = self.history.undo(self.store.list(CollectionKey.ACTS))
        if snapshot is None:
            return False
        # people, groups and organizations may have been deleted since the snapshot
        self.store.replace(CollectionKey.ACTS, relations.sanitize_acts(self.store, self._owned(snapshot)))
        return True

    def redo(self) -> bool:
        snapshot = self.history.redo(self.store.list(CollectionKey.ACTS))
        if snapshot is None:
            return False
        self.store.replace(CollectionKey.ACTS, self._owned(snapshot))
        return True

    # -- construction objects ------------------------------------------------

    def create_object(
        self,
        name: str,
        short_name: str | None = None,
        *,
        clone_from: str | None = None,
        categories: Optional[Collection[str]] = None,
    ) -> ConstructionObject:
        return objects.create_object(
            self.store, name, short_name, clone_from=clone_from, categories=categories
        )

    def update_object(self, object_id: str, name: str, short_name: str | None = None) -> ConstructionObject:
        return objects.update_object(self.store, object_id, name, short_name)

    def select_object(self, object_id: str) -> ConstructionObject:
        return objects.select_object(self.store, object_id)

    def delete_object(self, object_id: str) -> Optional[ConstructionObject]:
        return objects.delete_object(self.store, object_id)

    def clone_object(self, source_id: str, categories: Optional[Collection[str]] = None) -> ConstructionObject:
        return cloning.clone_object(self.store, source_id, categories)

    # -- records -------------------------------------------------------------

    def _stamp(self, record: Any) -> Any:
        if record.constructionObjectId:
            return record
        return record.model_copy(update={"constructionObjectId": self.store.current_object_id})

    def save_act(self, act: Act, *, index: int | None = None) -> Act:
        with self._recording():
            return relations.save_act(self.store, self._stamp(act), index=index)

    def reorder_acts(self, ordered_ids: Sequence[str]) -> List[Act]:
        with self._recording():
            return relations.reorder_acts(self.store, self.store.current_object_id, ordered_ids)

    def delete_acts(self, act_ids: Iterable[str]) -> List[Act]:
        with self._recording():
            return relations.delete_acts(self.store, act_ids)

    def save_person(self, person: Person) -> Person:
        return relations.save_person(self.store, self._stamp(person))

    def delete_person(self, person_id: str) -> Optional[Person]:
        with self._recording(drops_references=True):
            return relations.delete_person(self.store, person_id)

    def save_organization(self, organization: Organization) -> Organization:
        return relations.save_organization(self.store, self._stamp(organization))

    def delete_organization(self, organization_id: str) -> Optional[Organization]:
        with self._recording(drops_references=True):
            return relations.delete_organization(self.store, organization_id)

    def save_group(self, group: CommissionGroup) -> CommissionGroup:
        return relations.save_group(self.store, self._stamp(group))

    def delete_group(self, group_id: str) -> Optional[CommissionGroup]:
        with self._recording(drops_references=True):
            return relations.delete_group(self.store, group_id)

    def save_certificate(self, certificate: Certificate) -> Certificate:
        return relations.save_certificate(self.store, self._stamp(certificate))

    def save_regulations(self, regulations: Iterable[Regulation]) -> List[Regulation]:
        return relations.save_regulations(self.store, self.store.current_object_id, regulations)

    def delete_regulation(self, regulation_id: str) -> Optional[Regulation]:
        return relations.delete_regulation(self.store, regulation_id)

    # -- trash ---------------------------------------------------------------

    def move_acts_to_trash(self, act_ids: Iterable[str]) -> List[DeletedActEntry]:
        with self._recording():
            return trash.move_acts_to_trash(self.store, act_ids)

    def restore_acts(self, act_ids: Iterable[str], *, restore_groups: bool | None = None) -> List[Act]:
        with self._recording():
            return trash.restore_acts(self.store, act_ids, restore_groups=restore_groups)

    def permanently_delete_acts(self, act_ids: Iterable[str]) -> List[DeletedActEntry]:
        return trash.permanently_delete_acts(self.store, act_ids)

    def empty_acts_trash(self) -> List[DeletedActEntry]:
        return trash.empty_acts_trash(self.store, self.store.current_object_id)

    def move_certificates_to_trash(self, certificate_ids: Iterable[str]) -> List[DeletedCertificateEntry]:
        return trash.move_certificates_to_trash(self.store, certificate_ids)

    def restore_certificates(self, certificate_ids: Iterable[str]) -> List[Certificate]:
        return trash.restore_certificates(self.store, certificate_ids)

    def permanently_delete_certificates(self, certificate_ids: Iterable[str]) -> List[DeletedCertificateEntry]:
        return trash.permanently_delete_certificates(self.store, certificate_ids)

    def empty_certificates_trash(self) -> List[DeletedCertificateEntry]:
        return trash.empty_certificates_trash(self.store, self.store.current_object_id)

    # -- copying into the current object -------------------------------------

    def copy_organizations(self, organization_ids: Iterable[str]) -> CopySummary:
        return cloning.copy_organizations(self.store, organization_ids, self.store.current_object_id)

    def copy_people(self, person_ids: Iterable[str]) -> CopySummary:
        return cloning.copy_people(self.store, person_ids, self.store.current_object_id)

    def copy_certificates(self, certificate_ids: Iterable[str]) -> CopySummary:
        return cloning.copy_certificates(self.store, certificate_ids, self.store.current_object_id)

    # -- settings, templates, backup -----------------------------------------

    def update_settings(self, values: ProjectSettings) -> ProjectSettings:
        self.store.set_settings(values)
        self.history.resize(values.historyDepth)
        return values

    def set_template(self, value: str | None) -> None:
        self.store.set_template(value)

    def set_registry_template(self, value: str | None) -> None:
        self.store.set_registry_template(value)

    def import_data(self, payload: Any, selection: ImportSettings) -> ImportSummary:
        data = payload if isinstance(payload, ImportData) else imports.parse_import_data(payload)
        summary = imports.import_data(self.store, data, selection)
        self.history.reset()
        self.history.resize(self.store.settings.historyDepth)
        return summary

    def export_data(self, selection: ExportSettings | None = None) -> dict:
        return imports.export_data(self.store, selection)
