"""Tests for SubDB."""

import pickle

import pytest

from propdb import (
    AccessViolation,
    DatabaseException,
    DuplicateRegistrationError,
    ManualScheduler,
    NotRegisteredError,
    PropertyDB,
    SubDB,
    custom,
)


def _read(path):
    with open(path, "rb") as fh:
        return pickle.load(fh)


@pytest.fixture
def db():
    database = PropertyDB(scheduler=ManualScheduler())
    token = database.initialize()
    yield database
    if database.token_valid(token):
        database.close(token)


@pytest.fixture
def sub(db, store_dir):
    return SubDB(db, "Sub1", store_dir)


class TestSubDB:
    def test_member_file_names(self, db, sub, store_dir):
        p = sub.initiate("object1", 1, "Object1")
        assert p.get() == "Object1"
        assert sub.name == "Sub1"
        db.unload(p)
        assert _read(store_dir / "SubDB_Sub1_object1_1.property") == "Object1"

    def test_unload_then_reload(self, sub):
        p = sub.initiate("object1", 1, "Object1")
        p.set("Loaded_set")
        sub.unload("object1")
        p.set("Unloaded_set")
        p = sub.initiate("object1", 1, "Object1")
        assert p.get() == "Loaded_set"

    def test_delete_property_then_recreate(self, sub):
        p = sub.initiate("object1", 1, "Object1")
        sub.delete_property(p)
        assert not sub.exists("object1")
        p = sub.initiate("object1", 1, "Object1_2")
        assert p.get() == "Object1_2"

    def test_delete_by_name_keeps_value_in_memory(self, sub):
        p = sub.initiate("object1", 1, "Object1_2")
        p.set("xyz")
        sub.delete("object1")
        assert p.get() == "xyz"
        assert not sub.is_loaded("object1")
        assert not sub.exists_version("object1", 1)

    def test_index_tracks_members(self, sub):
        sub.initiate("object1", 1, "Object1_3")
        assert sub.loaded_property("object1").get() == "Object1_3"
        assert sub.property_names() == ["object1"]
        sub.unload("object1")
        assert sub.property_names() == ["object1"]
        assert not sub.is_loaded("object1")
        assert sub.exists("object1")
        sub.delete("object1")
        assert not sub.is_loaded("object1")
        assert not sub.exists("object1")
        assert sub.property_names() == []

    def test_index_persists_across_instances(self, db, store_dir):
        first = SubDB(db, "inv", store_dir)
        first.initiate("sword", 2, 10)
        first.initiate("shield", 1, 5)
        first.unload("sword")
        first.unload("shield")
        db.unload(first._index)

        second = SubDB(db, "inv", store_dir)
        assert sorted(second.property_names()) == ["shield", "sword"]
        assert second.version_of("sword") == 2
        assert second.get_and_close("sword", 2, 0) == 10
        assert not second.is_loaded("sword")

    def test_get_or_initiate(self, sub):
        p = sub.get_or_initiate("hp", 1, 100)
        assert sub.get_or_initiate("hp", 1, 0) is p

    def test_duplicate_member(self, sub):
        sub.initiate("hp", 1, 100)
        with pytest.raises(DuplicateRegistrationError):
            sub.initiate("hp", 1, 100)

    def test_missing_member_errors(self, sub):
        with pytest.raises(NotRegisteredError, match="is not loaded"):
            sub.loaded_property("nope")
        with pytest.raises(NotRegisteredError, match="does not exist"):
            sub.version_of("nope")
        with pytest.raises(NotRegisteredError):
            sub.unload("nope")
        with pytest.raises(NotRegisteredError):
            sub.delete("nope")

    def test_foreign_property_rejected(self, db, sub, store_dir):
        outsider = db.initiate(store_dir, "outsider", 1, 0)
        with pytest.raises(NotRegisteredError, match="does not exist in this subdatabase"):
            sub.unload_property(outsider)
        with pytest.raises(NotRegisteredError):
            sub.delete_property(outsider)

    def test_index_is_read_only(self, sub):
        with pytest.raises(AccessViolation):
            sub._index.set({})

    def test_destroy(self, db, sub, store_dir):
        sub.initiate("a", 1, 1)
        sub.initiate("b", 1, 2)
        sub.unload("b")
        sub.destroy()
        assert not db.exists(store_dir, "SubDB_Sub1_a", 1)
        assert not db.exists(store_dir, "SubDB_Sub1_b", 1)
        assert not db.exists(store_dir, "SubDB_Sub1", 1)
        assert list(store_dir.iterdir()) == []

    def test_use_after_destroy(self, sub):
        sub.destroy()
        assert not sub.exists("a")
        assert not sub.is_loaded("a")
        with pytest.raises(DatabaseException, match="destroyed"):
            sub.initiate("a", 1, 1)
        seen = []
        sub._handler = custom(lambda exc: seen.append(exc) or True)
        assert sub.property_names() is None
        assert len(seen) == 1

    def test_swallowing_handler_returns_none(self, sub):
        sub._handler = custom(lambda exc: True)
        assert sub.loaded_property("nope") is None
        assert sub.version_of("nope") is None

    def test_repr(self, sub):
        assert "Sub1" in repr(sub)
