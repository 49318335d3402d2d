from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from ..schemas import (
    ORG_ROLE_FIELDS,
    ROLES,
    Act,
    Certificate,
    CommissionGroup,
    ConstructionObject,
    Organization,
    Person,
    Regulation,
)
from ..scoping import filter_scoped, in_scope, scoped
from ..store import CollectionKey, EntityStore

logger = logging.getLogger(__name__)


class IntegrityConflictError(ValueError):
    """Raised before a delete that would leave other records pointing at nothing."""

    def __init__(self, message: str, *, entity_id: str, blockers: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.entity_id = entity_id
        self.blockers = list(blockers)


def describe_next_work(act: Act) -> str:
    work_name = act.workName.strip()
    if work_name:
        return f"Акт № {act.number}: {work_name}"
    return f"Акт № {act.number}"


def describe_deleted_successor(number: str) -> str:
    return f"Акт № {number} (удален)"


def _require_object(store: EntityStore, object_id: str | None) -> ConstructionObject:
    obj = store.get(CollectionKey.OBJECTS, object_id)
    if obj is None:
        raise ValueError("Объект строительства не найден. Выберите объект строительства")
    return obj


def _role_label(role: str) -> str:
    return ROLES.get(role, role)


def _check_representatives(store: EntityStore, representatives: Dict[str, str], object_id: str) -> None:
    for role, person_id in representatives.items():
        person = store.get(CollectionKey.PEOPLE, person_id)
        if person is None or not in_scope(person, object_id):
            raise ValueError(f"Участник для роли «{_role_label(role)}» недоступен в текущем объекте")


def _check_org_links(store: EntityStore, record: Act | CommissionGroup, object_id: str) -> None:
    for field in ORG_ROLE_FIELDS:
        org_id = getattr(record, field)
        if not org_id:
            continue
        org = store.get(CollectionKey.ORGANIZATIONS, org_id)
        if org is None or not in_scope(org, object_id):
            raise ValueError("Указанная организация недоступна в текущем объекте")


def _check_successor(store: EntityStore, act: Act) -> Act:
    target_id = act.nextWorkActId
    if target_id == act.id:
        raise ValueError(f"Акт № {act.number} не может ссылаться сам на себя")
    target = store.get(CollectionKey.ACTS, target_id)
    if target is None or not in_scope(target, act.constructionObjectId):
        raise ValueError("Акт, указанный в качестве последующих работ, не найден")

    visited = {act.id}
    current: Optional[Act] = target
    while current is not None:
        if current.id in visited:
            raise ValueError(
                f"Связь с актом № {target.number} образует цикл последующих работ"
            )
        visited.add(current.id)
        current = store.get(CollectionKey.ACTS, current.nextWorkActId)
    return target


# -- saves -------------------------------------------------------------------


def save_act(store: EntityStore, act: Act, *, index: int | None = None) -> Act:
    obj = _require_object(store, act.constructionObjectId)
    object_id = obj.id
    _check_representatives(store, act.representatives, object_id)
    _check_org_links(store, act, object_id)
    if act.commissionGroupId:
        group = store.get(CollectionKey.GROUPS, act.commissionGroupId)
        if group is None or not in_scope(group, object_id):
            raise ValueError("Указанная группа комиссии недоступна в текущем объекте")

    update: Dict[str, object] = {"objectName": obj.name}
    if act.nextWorkActId:
        target = _check_successor(store, act)
        update["nextWork"] = describe_next_work(target)
    act = act.model_copy(update=update)

    with store.transaction():
        store.upsert(CollectionKey.ACTS, act, index=index)
        refreshed = describe_next_work(act)
        for other in scoped(store, CollectionKey.ACTS, object_id):
            if other.id == act.id or other.nextWorkActId != act.id:
                continue
            if other.nextWork != refreshed:
                store.upsert(CollectionKey.ACTS, other.model_copy(update={"nextWork": refreshed}))
                logger.debug("Refreshed successor text of act %s", other.id)
    return act


def reorder_acts(store: EntityStore, object_id: str, ordered_ids: Sequence[str]) -> List[Act]:
    current = scoped(store, CollectionKey.ACTS, object_id)
    by_id = {act.id: act for act in current}
    if set(ordered_ids) != set(by_id) or len(ordered_ids) != len(by_id):
        raise ValueError("Новый порядок должен содержать все акты текущего объекта")
    others = [act for act in store.list(CollectionKey.ACTS) if not in_scope(act, object_id)]
    reordered = [by_id[act_id] for act_id in ordered_ids]
    store.replace(CollectionKey.ACTS, others + reordered)
    return reordered


def save_person(store: EntityStore, person: Person) -> Person:
    _require_object(store, person.constructionObjectId)
    if not person.name:
        raise ValueError("Укажите ФИО участника")
    return store.upsert(CollectionKey.PEOPLE, person)


def save_organization(store: EntityStore, organization: Organization) -> Organization:
    _require_object(store, organization.constructionObjectId)
    if not organization.name:
        raise ValueError("Укажите наименование организации")
    return store.upsert(CollectionKey.ORGANIZATIONS, organization)


def save_group(store: EntityStore, group: CommissionGroup) -> CommissionGroup:
    obj = _require_object(store, group.constructionObjectId)
    _check_representatives(store, group.representatives, obj.id)
    _check_org_links(store, group, obj.id)
    return store.upsert(CollectionKey.GROUPS, group)


def save_certificate(store: EntityStore, certificate: Certificate) -> Certificate:
    _require_object(store, certificate.constructionObjectId)
    return store.upsert(CollectionKey.CERTIFICATES, certificate)


def save_regulations(store: EntityStore, object_id: str, regulations: Iterable[Regulation]) -> List[Regulation]:
    _require_object(store, object_id)
    stamped = [item.model_copy(update={"constructionObjectId": object_id}) for item in regulations]
    others = [item for item in store.list(CollectionKey.REGULATIONS) if not in_scope(item, object_id)]
    store.replace(CollectionKey.REGULATIONS, others + stamped)
    return stamped


def delete_regulation(store: EntityStore, regulation_id: str) -> Optional[Regulation]:
    return store.remove(CollectionKey.REGULATIONS, regulation_id)


# -- deletes -----------------------------------------------------------------


def delete_person(store: EntityStore, person_id: str) -> Optional[Person]:
    person = store.get(CollectionKey.PEOPLE, person_id)
    if person is None:
        return None
    object_id = person.constructionObjectId

    def _strip(representatives: Dict[str, str]) -> Dict[str, str]:
        return {role: value for role, value in representatives.items() if value != person_id}

    with store.transaction():
        store.remove(CollectionKey.PEOPLE, person_id)
        for key in (CollectionKey.ACTS, CollectionKey.GROUPS):
            for record in scoped(store, key, object_id):
                if person_id in record.representatives.values():
                    store.upsert(key, record.model_copy(update={"representatives": _strip(record.representatives)}))
    logger.info("Deleted person %s (%s)", person.name, person_id)
    return person


def organization_blockers(store: EntityStore, organization: Organization) -> List[Person]:
    return [
        person
        for person in scoped(store, CollectionKey.PEOPLE, organization.constructionObjectId)
        if person.organization == organization.name
    ]


def delete_organization(store: EntityStore, organization_id: str) -> Optional[Organization]:
    organization = store.get(CollectionKey.ORGANIZATIONS, organization_id)
    if organization is None:
        return None
    blockers = organization_blockers(store, organization)
    if blockers:
        names = ", ".join(person.name for person in blockers)
        raise IntegrityConflictError(
            f"Нельзя удалить организацию \"{organization.name}\", так как она используется "
            f"участниками: {names}. Пожалуйста, сначала измените или удалите соответствующих участников.",
            entity_id=organization_id,
            blockers=[person.id for person in blockers],
        )

    with store.transaction():
        store.remove(CollectionKey.ORGANIZATIONS, organization_id)
        for key in (CollectionKey.ACTS, CollectionKey.GROUPS):
            for record in scoped(store, key, organization.constructionObjectId):
                cleared = {field: None for field in ORG_ROLE_FIELDS if getattr(record, field) == organization_id}
                if cleared:
                    store.upsert(key, record.model_copy(update=cleared))
    logger.info("Deleted organization %s (%s)", organization.name, organization_id)
    return organization


def delete_group(store: EntityStore, group_id: str) -> Optional[CommissionGroup]:
    group = store.get(CollectionKey.GROUPS, group_id)
    if group is None:
        return None
    with store.transaction():
        store.remove(CollectionKey.GROUPS, group_id)
        for act in scoped(store, CollectionKey.ACTS, group.constructionObjectId):
            if act.commissionGroupId == group_id:
                store.upsert(CollectionKey.ACTS, act.model_copy(update={"commissionGroupId": None}))
    logger.info("Deleted commission group %s (%s)", group.name, group_id)
    return group


def successor_links(store: EntityStore, act_ids: Iterable[str]) -> Dict[str, List[str]]:
    """Map each act id to the numbers of remaining acts that name it as next work."""
    targets = set(act_ids)
    links: Dict[str, List[str]] = {}
    for act in store.list(CollectionKey.ACTS):
        if act.nextWorkActId in targets and act.id not in targets:
            links.setdefault(act.nextWorkActId, []).append(act.number)
    return links


def detach_successors(store: EntityStore, removed: Sequence[Act]) -> List[Act]:
    numbers = {act.id: act.number for act in removed}
    updated: List[Act] = []
    for act in store.list(CollectionKey.ACTS):
        if act.nextWorkActId not in numbers:
            continue
        detached = act.model_copy(
            update={
                "nextWorkActId": None,
                "nextWork": describe_deleted_successor(numbers[act.nextWorkActId]),
            }
        )
        store.upsert(CollectionKey.ACTS, detached)
        updated.append(detached)
    return updated


def delete_acts(store: EntityStore, act_ids: Iterable[str]) -> List[Act]:
    targets = set(act_ids)
    with store.transaction():
        removed = store.remove_where(CollectionKey.ACTS, lambda act: act.id in targets)
        detach_successors(store, removed)
    if removed:
        logger.info("Permanently deleted %d act(s)", len(removed))
    return removed


# -- sanitizing --------------------------------------------------------------


def sanitize_group(store: EntityStore, group: CommissionGroup) -> CommissionGroup:
    object_id = group.constructionObjectId
    people = {person.id for person in scoped(store, CollectionKey.PEOPLE, object_id)}
    orgs = {org.id for org in scoped(store, CollectionKey.ORGANIZATIONS, object_id)}
    update: Dict[str, object] = {
        "representatives": {role: pid for role, pid in group.representatives.items() if pid in people}
    }
    for field in ORG_ROLE_FIELDS:
        if getattr(group, field) and getattr(group, field) not in orgs:
            update[field] = None
    return group.model_copy(update=update)


def sanitize_acts(
    store: EntityStore,
    acts: Sequence[Act],
    *,
    installed: Optional[Sequence[Act]] = None,
) -> List[Act]:
    """Drop references that no longer resolve against the live store.

    Successor links are checked against ``installed``, the full act array
    about to be stored (``acts`` itself by default); everything else against
    the store.
    """
    act_numbers = {act.id: act.number for act in (acts if installed is None else installed)}
    people = store.list(CollectionKey.PEOPLE)
    orgs = store.list(CollectionKey.ORGANIZATIONS)
    groups = store.list(CollectionKey.GROUPS)

    result: List[Act] = []
    for act in acts:
        object_id = act.constructionObjectId
        people_ids = {person.id for person in filter_scoped(people, object_id)}
        org_ids = {org.id for org in filter_scoped(orgs, object_id)}
        group_ids = {group.id for group in filter_scoped(groups, object_id)}

        update: Dict[str, object] = {}
        representatives = {role: pid for role, pid in act.representatives.items() if pid in people_ids}
        if representatives != act.representatives:
            update["representatives"] = representatives
        for field in ORG_ROLE_FIELDS:
            if getattr(act, field) and getattr(act, field) not in org_ids:
                update[field] = None
        if act.commissionGroupId and act.commissionGroupId not in group_ids:
            update["commissionGroupId"] = None
        if act.nextWorkActId and (act.nextWorkActId not in act_numbers or act.nextWorkActId == act.id):
            update["nextWorkActId"] = None
            update["nextWork"] = ""
        result.append(act.model_copy(update=update) if update else act)
    return result
