from __future__ import annotations

import json

import pytest

from asbuilt.schemas import Act, ImportCategory, ImportMode, ImportSettings, Person
from asbuilt.services.imports import ImportValidationError, export_data, import_data, parse_import_data
from asbuilt.services.relations import save_act, save_person
from asbuilt.services.trash import move_acts_to_trash
from asbuilt.store import CollectionKey


def _merge(**extra) -> ImportCategory:
    return ImportCategory(mode=ImportMode.MERGE, **extra)


@pytest.mark.parametrize("payload", ["не json", "[1, 2]", json.dumps({"unrelated": []})])
def test_invalid_payload_rejected(payload):
    with pytest.raises(ImportValidationError):
        parse_import_data(payload)


def test_malformed_collection_rejected_whole():
    data = parse_import_data(
        {
            "people": [{"id": "p-1", "name": "Иванов"}],
            "acts": [{"id": "a-1", "number": "1"}, {"id": "", "number": "2"}],
        }
    )

    assert [person.id for person in data.people] == ["p-1"]
    assert data.acts is None
    assert "acts" in data.rejected


def test_legacy_certificate_files_are_folded():
    data = parse_import_data(
        {"certificates": [{"id": "c-1", "number": "ПК-1", "fileType": "pdf", "fileName": "pk.pdf", "fileData": "AAA"}]}
    )

    (certificate,) = data.certificates
    assert certificate.fileData is None
    assert [item.name for item in certificate.files] == ["pk.pdf"]


def test_replace_substitutes_collection(store, object_id):
    save_person(store, Person(name="Старый", constructionObjectId=object_id))
    data = parse_import_data({"people": [{"id": "p-1", "name": "Новый", "constructionObjectId": object_id}]})

    summary = import_data(store, data, ImportSettings(people=ImportCategory(mode=ImportMode.REPLACE)))

    assert [person.name for person in store.list(CollectionKey.PEOPLE)] == ["Новый"]
    assert summary.imported == {"people": 1}


def test_merge_with_selection_is_idempotent(store, object_id):
    existing = save_act(store, Act(number="1", constructionObjectId=object_id))
    payload = {
        "acts": [
            {"id": existing.id, "number": "1", "workName": "Обновлено", "constructionObjectId": object_id},
            {"id": "a-2", "number": "2", "constructionObjectId": object_id},
        ]
    }
    selection = ImportSettings(acts=_merge(selectedIds=[existing.id]))

    import_data(store, parse_import_data(payload), selection)
    first = [act.model_dump() for act in store.list(CollectionKey.ACTS)]
    import_data(store, parse_import_data(payload), selection)
    second = [act.model_dump() for act in store.list(CollectionKey.ACTS)]

    assert first == second
    assert [act["workName"] for act in second] == ["Обновлено"]


def test_merge_trash_uses_wrapped_identity(store, object_id):
    act = save_act(store, Act(number="5", constructionObjectId=object_id))
    move_acts_to_trash(store, [act.id])
    payload = {
        "deletedActs": [
            {
                "act": {"id": act.id, "number": "5", "workName": "Из файла", "constructionObjectId": object_id},
                "deletedOn": "2024-03-01T00:00:00+00:00",
            }
        ]
    }

    import_data(store, parse_import_data(payload), ImportSettings(deletedActs=_merge()))

    (entry,) = store.list(CollectionKey.DELETED_ACTS)
    assert entry.act.workName == "Из файла"


def test_records_without_object_join_current_object(store, object_id):
    data = parse_import_data({"people": [{"id": "p-1", "name": "Иванов"}]})

    import_data(store, data, ImportSettings(people=_merge()))

    assert store.get(CollectionKey.PEOPLE, "p-1").constructionObjectId == object_id


def test_replacing_objects_repoints_current_object(store, object_id):
    data = parse_import_data({"constructionObjects": [{"id": "o-9", "name": "Школа"}]})

    import_data(store, data, ImportSettings(constructionObjects=ImportCategory(mode=ImportMode.REPLACE)))

    assert store.current_object_id == "o-9"


def test_disabled_sections_are_skipped(store):
    data = parse_import_data({"template": "UEsDBA==", "people": [{"id": "p-1", "name": "Иванов"}]})

    summary = import_data(store, data, ImportSettings(people=ImportCategory(enabled=False)))

    assert store.list(CollectionKey.PEOPLE) == []
    assert store.template is None
    assert summary.imported == {}


def test_export_contains_every_section(store, object_id):
    save_person(store, Person(name="Иванов", constructionObjectId=object_id))
    store.set_template("UEsDBA==")

    payload = export_data(store)

    assert payload["template"] == "UEsDBA=="
    assert [person["name"] for person in payload["people"]] == ["Иванов"]
    assert payload["constructionObjects"][0]["id"] == object_id
    assert payload["deletedActs"] == []
    assert parse_import_data(payload).rejected == {}
