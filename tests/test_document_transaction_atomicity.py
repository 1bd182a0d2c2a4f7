from __future__ import annotations

from typing import List

import pytest

from flownote.storage.base import DocumentChanges
from flownote.storage.in_memory import InMemoryDocumentStore


def _store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(
        units=[
            {"unit_id": "u1", "source": "a = 1", "metadata": {"k": 1}},
            {"unit_id": "u2", "source": "b = 2", "metadata": {}},
        ],
        metadata={"flow_edges": []},
    )


def test_writes_are_staged_until_commit() -> None:
    store = _store()
    tx = store.transaction()
    tx.set_unit_metadata("u1", "k", 2)
    tx.set_source("u2", "b = 3")
    tx.set_document_metadata("flow_number_seq", 4)

    # Staged view vs store.
    assert tx.unit_metadata("u1") == {"k": 2}
    assert store.unit("u1").metadata == {"k": 1}
    assert store.apply_count == 0

    assert tx.commit() is True
    assert store.apply_count == 1
    assert store.unit("u1").metadata == {"k": 2}
    assert store.unit("u2").source == "b = 3"
    assert store.get_document_metadata()["flow_number_seq"] == 4


def test_exception_discards_every_staged_write() -> None:
    store = _store()
    with pytest.raises(RuntimeError):
        with store.transaction() as tx:
            tx.set_unit_metadata("u1", "k", 99)
            tx.insert_unit("c = 3")
            raise RuntimeError("boom")
    assert store.apply_count == 0
    assert [u.unit_id for u in store.list_units()] == ["u1", "u2"]
    assert store.unit("u1").metadata == {"k": 1}


def test_identical_writes_are_not_staged() -> None:
    store = _store()
    with store.transaction() as tx:
        assert tx.set_unit_metadata("u1", "k", 1) is False
        assert tx.set_source("u1", "a = 1") is False
        assert tx.set_document_metadata("flow_edges", []) is False
        assert tx.set_unit_metadata("u2", "missing", None) is False
        assert tx.changes.is_empty()
    assert store.apply_count == 0


def test_writes_to_inserted_units_land_with_the_insert() -> None:
    store = _store()
    with store.transaction() as tx:
        uid = tx.insert_unit("x = 1", {"a": 1}, index=1)
        tx.set_unit_metadata(uid, "b", 2)
        tx.set_source(uid, "x = 2")
        assert [u.unit_id for u in tx.units()] == ["u1", uid, "u2"]
    units = store.list_units()
    assert [u.unit_id for u in units] == ["u1", uid, "u2"]
    assert units[1].metadata == {"a": 1, "b": 2}
    assert units[1].source == "x = 2"
    assert [u.index for u in units] == [0, 1, 2]


def test_deleting_a_pending_insert_cancels_it() -> None:
    store = _store()
    with store.transaction() as tx:
        uid = tx.insert_unit("x = 1")
        assert tx.delete_unit(uid) is True
        assert tx.delete_unit("u2") is True
        assert tx.delete_unit("nope") is False
    assert [u.unit_id for u in store.list_units()] == ["u1"]


def test_none_deletes_keys() -> None:
    store = _store()
    with store.transaction() as tx:
        tx.set_unit_metadata("u1", "k", None)
        tx.set_document_metadata("flow_edges", None)
    assert store.unit("u1").metadata == {}
    assert "flow_edges" not in store.get_document_metadata()


def test_listeners_get_one_event_per_commit() -> None:
    store = _store()
    seen: List[DocumentChanges] = []
    unsubscribe = store.subscribe(seen.append)

    with store.transaction() as tx:
        tx.set_unit_metadata("u1", "k", 5)
        tx.set_unit_metadata("u2", "k", 6)
        tx.insert_unit("new")
    assert len(seen) == 1
    assert seen[0].structural is True

    store.edit_source("u1", "changed")
    assert len(seen) == 2
    assert seen[1].structural is False

    unsubscribe()
    store.remove_unit("u2")
    assert len(seen) == 2


def test_listener_errors_do_not_break_the_store() -> None:
    store = _store()

    def broken(changes: DocumentChanges) -> None:
        raise ValueError("listener bug")

    store.subscribe(broken)
    assert store.edit_source("u1", "z = 0") is True
    assert store.unit("u1").source == "z = 0"


def test_closed_transaction_rejects_writes() -> None:
    store = _store()
    tx = store.transaction()
    tx.commit()
    with pytest.raises(RuntimeError):
        tx.set_unit_metadata("u1", "k", 3)
