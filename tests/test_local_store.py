"""
Tests for the SQLite local storage area.
"""
from agenda.local_store import LocalStorage


def test_set_and_get_item(storage):
    assert storage.get_item("missing") is None
    storage.set_item("k", "v1")
    storage.set_item("k", "v2")
    assert storage.get_item("k") == "v2"
    assert storage.keys() == ["k"]


def test_remove_and_clear(storage):
    storage.set_item("a", "1")
    storage.set_item("b", "2")
    storage.remove_item("a")
    assert storage.keys() == ["b"]
    storage.clear()
    assert storage.keys() == []


def test_json_helpers_keep_unicode(storage):
    storage.set_json("cats", [{"name": "Saúde"}])
    assert "Saúde" in storage.get_item("cats")
    assert storage.get_json("cats") == [{"name": "Saúde"}]


def test_corrupt_json_reads_as_default(storage):
    storage.set_item("broken", "{not json")
    assert storage.get_json("broken", default=[]) == []


def test_data_survives_new_instance(tmp_path):
    db = str(tmp_path / "nested" / "agenda.db")
    LocalStorage(db).set_json("x", {"n": 1})
    assert LocalStorage(db).get_json("x") == {"n": 1}
