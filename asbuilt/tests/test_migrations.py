from __future__ import annotations

from asbuilt.migrations import run_migrations
from asbuilt.storage import MemoryStorage
from asbuilt.store import CollectionKey, EntityStore


def _load(initial) -> EntityStore:
    store = EntityStore.load(MemoryStorage(initial))
    run_migrations(store)
    return store


def test_fresh_store_gets_default_object():
    store = _load({})

    (obj,) = store.list(CollectionKey.OBJECTS)
    assert obj.name == "Основной объект"
    assert obj.shortName == "Основной"
    assert store.current_object_id == obj.id


def test_legacy_records_are_assigned_to_named_object():
    store = _load(
        {
            "people": [{"id": "p-1", "name": "Иванов"}],
            "acts": [{"id": "a-1", "number": "1"}],
            "settings": {"objectName": "ЖК Северный", "historyDepth": 10},
        }
    )

    (obj,) = store.list(CollectionKey.OBJECTS)
    assert obj.name == "ЖК Северный"
    assert store.get(CollectionKey.PEOPLE, "p-1").constructionObjectId == obj.id
    assert store.get(CollectionKey.ACTS, "a-1").constructionObjectId == obj.id
    assert "objectName" not in (store.settings.model_extra or {})
    assert store.settings.historyDepth == 10


def test_legacy_records_without_name_use_fallback():
    store = _load({"organizations": [{"id": "org-1", "name": "ООО Ромашка"}]})

    assert store.list(CollectionKey.OBJECTS)[0].name == "Мой объект"


def test_missing_current_object_selects_first():
    store = _load(
        {
            "objects": [{"id": "o-1", "name": "Дом"}, {"id": "o-2", "name": "Школа"}],
            "current-object-id": "gone",
        }
    )

    assert store.current_object_id == "o-1"


def test_single_file_certificates_are_upgraded_and_persisted():
    storage = MemoryStorage(
        {
            "objects": [{"id": "o-1", "name": "Дом"}],
            "certificates": [
                {
                    "id": "c-1",
                    "constructionObjectId": "o-1",
                    "number": "ПК-5",
                    "fileType": "image",
                    "fileName": "scan.jpg",
                    "fileData": "data:image/jpeg;base64,AAA",
                }
            ],
        }
    )
    store = EntityStore.load(storage)
    run_migrations(store)

    (certificate,) = store.list(CollectionKey.CERTIFICATES)
    assert [(item.type, item.name) for item in certificate.files] == [("image", "scan.jpg")]
    assert "fileData" not in storage.get("certificates")[0]
