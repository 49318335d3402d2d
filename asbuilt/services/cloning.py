from __future__ import annotations

import logging
from typing import Collection, Dict, Iterable, List, Optional

from ..schemas import (
    ORG_ROLE_FIELDS,
    Act,
    Certificate,
    CommissionGroup,
    ConstructionObject,
    CopySummary,
    Organization,
    Person,
    Regulation,
    generate_id,
)
from ..scoping import scoped
from ..store import CollectionKey, EntityStore

logger = logging.getLogger(__name__)

CLONE_CATEGORIES = ("organizations", "people", "groups", "acts", "regulations", "certificates")
COPY_SUFFIX = " (Копия)"


class IdentityMap:
    """Old id → fresh id, filled kind by kind while a graph is copied."""

    def __init__(self) -> None:
        self._ids: Dict[str, str] = {}

    def issue(self, old_id: str) -> str:
        new_id = generate_id()
        self._ids[old_id] = new_id
        return new_id

    def resolve(self, old_id: Optional[str]) -> Optional[str]:
        if not old_id:
            return None
        return self._ids.get(old_id)

    def representatives(self, representatives: Dict[str, str]) -> Dict[str, str]:
        remapped: Dict[str, str] = {}
        for role, person_id in representatives.items():
            new_id = self.resolve(person_id)
            if new_id:
                remapped[role] = new_id
        return remapped

    def org_links(self, record: Act | CommissionGroup) -> Dict[str, Optional[str]]:
        return {field: self.resolve(getattr(record, field)) for field in ORG_ROLE_FIELDS}


class ClonePlan:
    """The complete copied graph, built in memory before anything is stored."""

    def __init__(self, target: ConstructionObject) -> None:
        self.target = target
        self.organizations: List[Organization] = []
        self.people: List[Person] = []
        self.groups: List[CommissionGroup] = []
        self.acts: List[Act] = []
        self.regulations: List[Regulation] = []
        self.certificates: List[Certificate] = []

    def commit(self, store: EntityStore) -> None:
        with store.transaction():
            store.upsert(CollectionKey.OBJECTS, self.target)
            batches = (
                (CollectionKey.ORGANIZATIONS, self.organizations),
                (CollectionKey.PEOPLE, self.people),
                (CollectionKey.GROUPS, self.groups),
                (CollectionKey.ACTS, self.acts),
                (CollectionKey.REGULATIONS, self.regulations),
                (CollectionKey.CERTIFICATES, self.certificates),
            )
            for key, records in batches:
                if records:
                    store.replace(key, store.list(key) + records)


def build_clone_plan(
    store: EntityStore,
    source_id: str,
    target: ConstructionObject,
    categories: Optional[Collection[str]] = None,
) -> ClonePlan:
    wanted = set(CLONE_CATEGORIES if categories is None else categories)
    unknown = wanted - set(CLONE_CATEGORIES)
    if unknown:
        raise ValueError(f"Unknown clone categories: {', '.join(sorted(unknown))}")

    ids = IdentityMap()
    plan = ClonePlan(target)
    stamp = {"constructionObjectId": target.id}

    if "organizations" in wanted:
        for org in scoped(store, CollectionKey.ORGANIZATIONS, source_id):
            plan.organizations.append(org.model_copy(update={**stamp, "id": ids.issue(org.id)}))

    if "people" in wanted:
        for person in scoped(store, CollectionKey.PEOPLE, source_id):
            plan.people.append(person.model_copy(update={**stamp, "id": ids.issue(person.id)}))

    if "groups" in wanted:
        for group in scoped(store, CollectionKey.GROUPS, source_id):
            plan.groups.append(
                group.model_copy(
                    update={
                        **stamp,
                        "id": ids.issue(group.id),
                        "representatives": ids.representatives(group.representatives),
                        **ids.org_links(group),
                    }
                )
            )

    if "acts" in wanted:
        for act in scoped(store, CollectionKey.ACTS, source_id):
            # successor chains stay behind: a copied link would point into the source object
            plan.acts.append(
                act.model_copy(
                    update={
                        **stamp,
                        "id": generate_id(),
                        "objectName": target.name,
                        "representatives": ids.representatives(act.representatives),
                        "commissionGroupId": ids.resolve(act.commissionGroupId),
                        **ids.org_links(act),
                        "nextWorkActId": None,
                        "nextWork": "" if act.nextWorkActId else act.nextWork,
                    }
                )
            )

    if "regulations" in wanted:
        for regulation in scoped(store, CollectionKey.REGULATIONS, source_id):
            plan.regulations.append(regulation.model_copy(update={**stamp, "id": generate_id()}))

    if "certificates" in wanted:
        for certificate in scoped(store, CollectionKey.CERTIFICATES, source_id):
            plan.certificates.append(certificate.model_copy(update={**stamp, "id": generate_id()}))

    return plan


def clone_object(
    store: EntityStore,
    source_id: str,
    categories: Optional[Collection[str]] = None,
) -> ConstructionObject:
    source = store.get(CollectionKey.OBJECTS, source_id)
    if source is None:
        raise ValueError("Исходный объект строительства не найден")
    target = ConstructionObject(
        name=f"{source.name}{COPY_SUFFIX}",
        shortName=f"{source.shortName}{COPY_SUFFIX}" if source.shortName else None,
        description=source.description,
    )
    plan = build_clone_plan(store, source_id, target, categories)
    plan.commit(store)
    logger.info(
        "Cloned object %s into %s: %d org(s), %d people, %d group(s), %d act(s)",
        source_id,
        target.id,
        len(plan.organizations),
        len(plan.people),
        len(plan.groups),
        len(plan.acts),
    )
    return target


# -- copying selected records into another object ---------------------------


def _require_target(store: EntityStore, object_id: str) -> None:
    if not store.contains(CollectionKey.OBJECTS, object_id):
        raise ValueError("Объект строительства для копирования не найден")


def copy_organizations(
    store: EntityStore, organization_ids: Iterable[str], target_object_id: str
) -> CopySummary:
    _require_target(store, target_object_id)
    existing_inns = {org.inn for org in scoped(store, CollectionKey.ORGANIZATIONS, target_object_id) if org.inn}
    created: List[Organization] = []
    skipped = 0
    for org_id in organization_ids:
        source = store.get(CollectionKey.ORGANIZATIONS, org_id)
        if source is None:
            continue
        if source.inn and source.inn in existing_inns:
            skipped += 1
            continue
        created.append(source.model_copy(update={"id": generate_id(), "constructionObjectId": target_object_id}))
        if source.inn:
            existing_inns.add(source.inn)

    with store.transaction():
        for org in created:
            store.upsert(CollectionKey.ORGANIZATIONS, org)

    if created:
        message = f"Скопировано {len(created)} организаций."
    else:
        message = "Все выбранные организации уже существуют в текущем объекте (проверка по ИНН)."
    return CopySummary(created=len(created), skipped=skipped, message=message)


def copy_people(store: EntityStore, person_ids: Iterable[str], target_object_id: str) -> CopySummary:
    _require_target(store, target_object_id)
    target_orgs = scoped(store, CollectionKey.ORGANIZATIONS, target_object_id)
    new_people: List[Person] = []
    new_orgs: List[Organization] = []

    for person_id in person_ids:
        source = store.get(CollectionKey.PEOPLE, person_id)
        if source is None:
            continue
        if source.organization:
            source_org = next(
                (
                    org
                    for org in scoped(store, CollectionKey.ORGANIZATIONS, source.constructionObjectId)
                    if org.name == source.organization
                ),
                None,
            )
            known = target_orgs + new_orgs
            match = next((org for org in known if org.name == source.organization), None)
            if match is None and source_org is not None and source_org.inn:
                match = next((org for org in known if org.inn == source_org.inn), None)
            if match is None and source_org is not None:
                new_orgs.append(
                    source_org.model_copy(update={"id": generate_id(), "constructionObjectId": target_object_id})
                )
        new_people.append(source.model_copy(update={"id": generate_id(), "constructionObjectId": target_object_id}))

    with store.transaction():
        for org in new_orgs:
            store.upsert(CollectionKey.ORGANIZATIONS, org)
        for person in new_people:
            store.upsert(CollectionKey.PEOPLE, person)

    return CopySummary(
        created=len(new_people),
        relatedOrganizations=len(new_orgs),
        message=f"Скопировано {len(new_people)} участников и {len(new_orgs)} связанных организаций.",
    )


def copy_certificates(
    store: EntityStore, certificate_ids: Iterable[str], target_object_id: str
) -> CopySummary:
    _require_target(store, target_object_id)
    created: List[Certificate] = []
    for certificate_id in certificate_ids:
        source = store.get(CollectionKey.CERTIFICATES, certificate_id)
        if source is None:
            continue
        created.append(source.model_copy(update={"id": generate_id(), "constructionObjectId": target_object_id}))
    with store.transaction():
        for certificate in created:
            store.upsert(CollectionKey.CERTIFICATES, certificate)
    return CopySummary(created=len(created), message=f"Скопировано {len(created)} сертификатов.")
