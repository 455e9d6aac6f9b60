import pytest

from formflow.errors import DefinitionError
from formflow.storages.memory import MemoryStore


def test_definitions_are_copied():
    store = MemoryStore()
    document = {"id": "f1", "sections": [{"id": "s"}]}
    store.save_form_definition(document)

    document["sections"].append({"id": "t"})
    loaded = store.get_form_definition("f1")
    assert loaded == {"id": "f1", "sections": [{"id": "s"}]}

    loaded["title"] = "changed"
    assert "title" not in store.get_form_definition("f1")


def test_missing_definition():
    assert MemoryStore().get_form_definition("nope") is None


def test_save_requires_id():
    with pytest.raises(DefinitionError):
        MemoryStore().save_form_definition({"title": "no id"})


def test_query_by_key_is_scoped_to_collection():
    store = MemoryStore()
    first = store.create_submission("forms/a/submissions", {"email": "x@y.com"})
    store.create_submission("forms/b/submissions", {"email": "x@y.com"})

    matches = store.query_by_key("forms/a/submissions", "email", "x@y.com")
    assert [m["id"] for m in matches] == [first]
    assert store.query_by_key("forms/a/submissions", "email", "other@y.com") == []
