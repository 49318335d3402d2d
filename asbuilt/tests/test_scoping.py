from __future__ import annotations

import pytest

from asbuilt.schemas import Act, Certificate, DeletedActEntry, DeletedCertificateEntry, Person
from asbuilt.scoping import filter_scoped, in_scope, owner_of, scoped
from asbuilt.store import CollectionKey, EntityStore


def test_filter_keeps_order_and_owner():
    records = [
        Person(name="А", constructionObjectId="o1"),
        Person(name="Б", constructionObjectId="o2"),
        Person(name="В", constructionObjectId="o1"),
    ]

    assert [person.name for person in filter_scoped(records, "o1")] == ["А", "В"]


@pytest.mark.parametrize("object_id", [None, ""])
def test_filter_without_object_is_empty(object_id):
    records = [Person(name="А", constructionObjectId="o1"), Person(name="Б")]

    assert filter_scoped(records, object_id) == []


def test_trash_entries_are_scoped_by_wrapped_record():
    act_entry = DeletedActEntry(act=Act(number="1", constructionObjectId="o1"))
    cert_entry = DeletedCertificateEntry(certificate=Certificate(number="С-1", constructionObjectId="o2"))

    assert owner_of(act_entry) == "o1"
    assert owner_of(cert_entry) == "o2"
    assert in_scope(act_entry, "o1")
    assert not in_scope(cert_entry, "o1")


def test_objects_collection_is_not_scoped():
    with pytest.raises(ValueError):
        scoped(EntityStore(), CollectionKey.OBJECTS, "o1")
