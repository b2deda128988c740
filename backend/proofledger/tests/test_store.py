import threading

import pytest
from sqlalchemy.exc import OperationalError

from proofledger.errors import StoreIOError, ValidationError
from proofledger.store import PathStore, generate_push_key, split_path


def test_split_path_accepts_dots_and_slashes():
    assert split_path("channels.0xabc/submittedProofs") == ["channels", "0xabc", "submittedProofs"]
    assert split_path("") == []
    assert split_path("./a//b.") == ["a", "b"]


def test_push_key_shape():
    key = generate_push_key()
    assert key[:13].isdigit()
    assert len(key) == 20
    assert key[13:].isalnum() and key[13:].lower() == key[13:]


def test_set_then_get_stamps_updated_at(store):
    store.set("channels.c1.meta", {"name": "alpha"})
    value = store.get("channels/c1/meta")
    assert value["name"] == "alpha"
    assert isinstance(value["_updatedAt"], int)


def test_scalar_values_are_stored_unstamped(store):
    store.set("settings.theme", "dark")
    assert store.get("settings.theme") == "dark"


def test_get_absent_returns_none(store):
    assert store.get("channels.missing.submittedProofs") is None
    assert store.exists("channels.missing") is False


def test_update_merges_shallowly(store):
    store.set("channels.c1.info", {"a": 1, "nested": {"x": 1}})
    store.update("channels.c1.info", {"b": 2, "nested": {"y": 2}})
    value = store.get("channels.c1.info")
    assert value["a"] == 1
    assert value["b"] == 2
    assert value["nested"] == {"y": 2}


def test_update_on_absent_path_behaves_as_set(store):
    store.update("channels.c1.info", {"b": 2})
    assert store.get("channels.c1.info")["b"] == 2


def test_push_stamps_created_at_and_returns_key(store):
    key = store.push("channels.c1.stateSnapshots", {"sequenceNumber": 1})
    record = store.get(f"channels.c1.stateSnapshots.{key}")
    assert record["sequenceNumber"] == 1
    assert isinstance(record["_createdAt"], int)


def test_delete_removes_subtree_and_is_noop_when_absent(store):
    store.set("channels.c1.submittedProofs.p1", {"a": 1})
    store.delete("channels.c1.submittedProofs.p1")
    assert store.get("channels.c1.submittedProofs.p1") is None
    store.delete("channels.c1.submittedProofs.p1")
    store.delete("channels.nowhere")


def test_root_view_assembles_channel_shards(store):
    store.set("channels.c1.status", "active")
    store.set("channels.c2.status", "closed")
    store.set("settings.theme", "dark")
    root = store.get("")
    assert root["channels"]["c1"]["status"] == "active"
    assert root["channels"]["c2"]["status"] == "closed"
    assert root["settings"]["theme"] == "dark"
    assert set(store.get("channels")) == {"c1", "c2"}


def test_writes_must_address_a_single_channel(store):
    with pytest.raises(ValidationError):
        store.set("", {"x": 1})
    with pytest.raises(ValidationError):
        store.set("channels", {"c1": {}})


def test_channel_shards_are_independent(store):
    store.set("channels.c1.submittedProofs.p1", {"a": 1})
    store.set("channels.c2.submittedProofs.p1", {"b": 2})
    store.delete("channels.c1")
    assert store.get("channels.c1") is None
    assert store.get("channels.c2.submittedProofs.p1")["b"] == 2


def test_concurrent_pushes_are_not_lost(store):
    def worker():
        for _ in range(5):
            store.push("channels.c1.events", {"n": 1})

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(store.get("channels.c1.events")) == 20


def test_backend_failure_surfaces_as_store_error():
    class BrokenSession:
        def get(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        def rollback(self):
            pass

        def close(self):
            pass

    broken = PathStore(lambda: BrokenSession())
    with pytest.raises(StoreIOError):
        broken.get("channels.c1")
    with pytest.raises(StoreIOError):
        broken.set("channels.c1.x", 1)
