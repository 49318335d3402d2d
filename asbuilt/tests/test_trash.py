from __future__ import annotations

import pytest

from asbuilt.schemas import Act, Certificate, CommissionGroup, Person
from asbuilt.services.objects import create_object, delete_object
from asbuilt.services.relations import delete_group, delete_person, save_act, save_certificate, save_group, save_person
from asbuilt.services.trash import (
    GroupRestoreRequired,
    empty_acts_trash,
    empty_certificates_trash,
    move_acts_to_trash,
    move_certificates_to_trash,
    permanently_delete_acts,
    restore_acts,
    restore_certificates,
)
from asbuilt.store import CollectionKey


def _make_grouped_act(store, object_id):
    person = save_person(store, Person(name="Петров", constructionObjectId=object_id))
    group = save_group(
        store,
        CommissionGroup(name="Основная комиссия", constructionObjectId=object_id, representatives={"g": person.id}),
    )
    act = save_act(store, Act(number="3", constructionObjectId=object_id, commissionGroupId=group.id))
    return person, group, act


def test_trash_snapshots_group_and_lists_newest_first(store, object_id):
    _, group, act = _make_grouped_act(store, object_id)
    other = save_act(store, Act(number="4", constructionObjectId=object_id))

    move_acts_to_trash(store, [act.id], deleted_on="2024-01-01T00:00:00+00:00")
    move_acts_to_trash(store, [other.id], deleted_on="2024-01-02T00:00:00+00:00")

    entries = store.list(CollectionKey.DELETED_ACTS)
    assert [entry.act.id for entry in entries] == [other.id, act.id]
    assert entries[1].associatedGroup == group
    assert store.list(CollectionKey.ACTS) == []


def test_restore_with_live_group_needs_no_decision(store, object_id):
    _, group, act = _make_grouped_act(store, object_id)
    move_acts_to_trash(store, [act.id])

    (restored,) = restore_acts(store, [act.id])

    assert restored.commissionGroupId == group.id
    assert store.list(CollectionKey.DELETED_ACTS) == []


def test_restore_with_deleted_group_requires_decision(store, object_id):
    _, group, act = _make_grouped_act(store, object_id)
    move_acts_to_trash(store, [act.id])
    delete_group(store, group.id)

    with pytest.raises(GroupRestoreRequired) as excinfo:
        restore_acts(store, [act.id])

    assert [item.id for item in excinfo.value.groups] == [group.id]
    assert len(store.list(CollectionKey.DELETED_ACTS)) == 1


def test_declined_group_restore_leaves_no_dangling_id(store, object_id):
    _, group, act = _make_grouped_act(store, object_id)
    move_acts_to_trash(store, [act.id])
    delete_group(store, group.id)

    (restored,) = restore_acts(store, [act.id], restore_groups=False)

    assert restored.commissionGroupId is None
    assert not store.contains(CollectionKey.GROUPS, group.id)


def test_accepted_group_restore_recreates_sanitized_group(store, object_id):
    person, group, act = _make_grouped_act(store, object_id)
    move_acts_to_trash(store, [act.id])
    delete_group(store, group.id)
    delete_person(store, person.id)

    (restored,) = restore_acts(store, [act.id], restore_groups=True)

    recreated = store.get(CollectionKey.GROUPS, group.id)
    assert restored.commissionGroupId == group.id
    assert recreated.name == "Основная комиссия"
    assert recreated.representatives == {}


def test_restore_into_deleted_object_fails(store, object_id):
    other = create_object(store, "Склад", select=False)
    act = save_act(store, Act(number="1", constructionObjectId=other.id))
    move_acts_to_trash(store, [act.id])
    entry = store.list(CollectionKey.DELETED_ACTS)[0]
    delete_object(store, other.id)
    store.replace(CollectionKey.DELETED_ACTS, [entry])

    with pytest.raises(ValueError):
        restore_acts(store, [act.id])


def test_purge_and_empty_trash(store, object_id):
    first = save_act(store, Act(number="1", constructionObjectId=object_id))
    second = save_act(store, Act(number="2", constructionObjectId=object_id))
    move_acts_to_trash(store, [first.id, second.id])

    permanently_delete_acts(store, [first.id])
    assert [entry.act.id for entry in store.list(CollectionKey.DELETED_ACTS)] == [second.id]

    empty_acts_trash(store, object_id)
    assert store.list(CollectionKey.DELETED_ACTS) == []


def test_certificate_trash_cycle(store, object_id):
    certificate = save_certificate(store, Certificate(number="ПК-17", constructionObjectId=object_id))

    move_certificates_to_trash(store, [certificate.id])
    assert store.list(CollectionKey.CERTIFICATES) == []

    restore_certificates(store, [certificate.id])
    assert store.list(CollectionKey.CERTIFICATES) == [certificate]

    move_certificates_to_trash(store, [certificate.id])
    empty_certificates_trash(store, object_id)
    assert store.list(CollectionKey.DELETED_CERTIFICATES) == []


def test_restore_leaves_other_active_acts_untouched(store, object_id):
    kept = save_act(store, Act(number="1", constructionObjectId=object_id))
    unresolved = kept.model_copy(update={"representatives": {"g": "p-gone"}})
    store.upsert(CollectionKey.ACTS, unresolved)
    trashed = save_act(store, Act(number="2", constructionObjectId=object_id, nextWorkActId=kept.id))
    move_acts_to_trash(store, [trashed.id])

    (restored,) = restore_acts(store, [trashed.id])

    assert store.get(CollectionKey.ACTS, kept.id) == unresolved
    assert restored.nextWorkActId == kept.id
