from __future__ import annotations

import pytest

from asbuilt.project import Project
from asbuilt.schemas import Act, CommissionGroup, ImportCategory, ImportMode, ImportSettings, Organization, Person
from asbuilt.services.relations import IntegrityConflictError
from asbuilt.services.trash import GroupRestoreRequired
from asbuilt.storage import JsonFileStorage
from asbuilt.store import CollectionKey


def test_saves_are_stamped_with_current_object(project):
    person = project.save_person(Person(name="Иванов"))

    assert person.constructionObjectId == project.current_object_id
    assert project.people == [person]


def test_views_follow_selected_object(project):
    first_id = project.current_object_id
    project.save_act(Act(number="1"))
    second = project.create_object("Школа", "Школа")

    assert project.current_object_id == second.id
    assert project.acts == []

    project.select_object(first_id)
    assert [act.number for act in project.acts] == ["1"]


def test_delete_object_cascades_and_falls_back(project):
    only = project.current_object_id
    project.save_act(Act(number="1"))
    project.move_acts_to_trash([project.acts[0].id])

    project.delete_object(only)

    (fallback,) = project.objects
    assert fallback.name == "Новый объект"
    assert project.current_object_id == fallback.id
    assert project.store.list(CollectionKey.DELETED_ACTS) == []


def test_person_delete_scenario(project):
    person = project.save_person(Person(name="Ivanov"))
    act = project.save_act(Act(number="1", representatives={"g": person.id}))

    project.delete_person(person.id)

    assert "g" not in project.store.get(CollectionKey.ACTS, act.id).representatives
    assert project.people == []


def test_organization_conflict_surfaces(project):
    org = project.save_organization(Organization(name="ООО Монолит"))
    project.save_person(Person(name="Петров", organization="ООО Монолит"))

    with pytest.raises(IntegrityConflictError):
        project.delete_organization(org.id)


def test_trash_restore_round_trip_with_history(project):
    group = project.save_group(CommissionGroup(name="Комиссия"))
    act = project.save_act(Act(number="1", commissionGroupId=group.id))
    project.move_acts_to_trash([act.id])
    project.delete_group(group.id)

    with pytest.raises(GroupRestoreRequired):
        project.restore_acts([act.id])

    (restored,) = project.restore_acts([act.id], restore_groups=False)
    assert restored.commissionGroupId is None

    assert project.undo()
    assert project.acts == []


def test_copy_people_into_current_object(project):
    source_id = project.current_object_id
    project.save_organization(Organization(name="ООО Монолит", inn="5501"))
    person = project.save_person(Person(name="Петров", organization="ООО Монолит"))
    project.create_object("Школа")

    summary = project.copy_people([person.id])

    assert summary.created == 1
    assert [org.inn for org in project.organizations] == ["5501"]
    assert project.current_object_id != source_id


def test_import_resets_history(project):
    project.save_act(Act(number="1"))
    assert project.history.can_undo

    project.import_data(
        {"people": [{"id": "p-1", "name": "Иванов"}]},
        ImportSettings(people=ImportCategory(mode=ImportMode.MERGE)),
    )

    assert not project.history.can_undo
    assert [person.id for person in project.people] == ["p-1"]


def test_project_reopens_from_json_files(tmp_path):
    project = Project.open(JsonFileStorage(tmp_path))
    act = project.save_act(Act(number="42", workName="Гидроизоляция"))

    reopened = Project.open(JsonFileStorage(tmp_path))

    assert reopened.current_object_id == project.current_object_id
    assert [item.id for item in reopened.acts] == [act.id]
    assert reopened.acts[0].objectName == "Основной объект"


def test_undo_after_object_delete_keeps_acts_owned(project):
    first_id = project.current_object_id
    warehouse = project.create_object("Склад")
    project.save_act(Act(number="1"))
    project.select_object(first_id)
    project.save_act(Act(number="2"))
    depth = len(project.history.past)

    project.delete_object(warehouse.id)
    assert len(project.history.past) == depth

    assert project.undo()

    object_ids = {obj.id for obj in project.objects}
    assert all(act.constructionObjectId in object_ids for act in project.store.list(CollectionKey.ACTS))


def test_object_creation_is_not_undoable(project):
    source_id = project.current_object_id
    project.save_act(Act(number="1"))
    project.clone_object(source_id)
    project.create_object("Школа")

    assert len(project.history.past) == 1
