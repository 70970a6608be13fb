from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from report_service.entity_store import InMemoryEntityStore
from report_service.errors import EntityNotFoundError


@dataclass
class Note:
    owner: str
    body: str = ""
    id: str = ""
    tags: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def _store() -> InMemoryEntityStore[Note]:
    return InMemoryEntityStore(kind="note", secondary_key=lambda x: x.owner)


def test_put_generates_id_and_refreshes_updated_at():
    store = _store()
    old = datetime.now(UTC) - timedelta(days=1)
    stored = store.put(Note(owner="a", created_at=old, updated_at=old))

    assert stored.id
    assert stored.updated_at > old
    assert stored.updated_at >= stored.created_at
    assert store.get(stored.id).owner == "a"


def test_put_keeps_updated_at_not_before_created_at():
    store = _store()
    future = datetime.now(UTC) + timedelta(hours=1)
    stored = store.put(Note(owner="a", created_at=future))
    assert stored.updated_at >= stored.created_at


def test_put_without_touch_keeps_callers_updated_at():
    store = _store()
    stamp = datetime.now(UTC) - timedelta(minutes=5)
    stored = store.put(Note(owner="a", created_at=stamp, updated_at=stamp), touch=False)
    assert stored.updated_at == stored.created_at == stamp

    later = store.put(Note(owner="b", created_at=stamp, updated_at=stamp - timedelta(minutes=1)), touch=False)
    assert later.updated_at == stamp


def test_put_keeps_existing_id():
    store = _store()
    stored = store.put(Note(owner="a", id="note-1"))
    assert stored.id == "note-1"


def test_returned_entities_do_not_alias_stored_state():
    store = _store()
    stored = store.put(Note(owner="a", tags={"k": "v"}))
    stored.tags["k"] = "changed"
    loaded = store.get(stored.id)
    loaded.body = "mutated"

    again = store.get(stored.id)
    assert again.tags == {"k": "v"}
    assert again.body == ""


def test_get_missing_raises_not_found():
    store = _store()
    with pytest.raises(EntityNotFoundError) as exc:
        store.get("missing")
    assert exc.value.kind == "note"
    assert exc.value.key == "missing"


def test_secondary_key_lookup_and_last_writer_wins():
    store = _store()
    first = store.put(Note(owner="a", body="first"))
    second = store.put(Note(owner="a", body="second"))

    assert store.get_by_secondary_key("a").id == second.id
    # The primary entry of the overwritten key is still reachable.
    assert store.get(first.id).body == "first"
    with pytest.raises(EntityNotFoundError):
        store.get_by_secondary_key("b")


def test_secondary_key_moves_when_entity_changes_key():
    store = _store()
    stored = store.put(Note(owner="a"))
    stored.owner = "b"
    store.put(stored)

    assert store.get_by_secondary_key("b").id == stored.id
    with pytest.raises(EntityNotFoundError):
        store.get_by_secondary_key("a")


def test_delete_removes_both_indexes():
    store = _store()
    stored = store.put(Note(owner="a"))
    removed = store.delete(stored.id)

    assert removed.id == stored.id
    with pytest.raises(EntityNotFoundError):
        store.get(stored.id)
    with pytest.raises(EntityNotFoundError):
        store.get_by_secondary_key("a")
    with pytest.raises(EntityNotFoundError):
        store.delete(stored.id)


def test_delete_of_shadowed_entity_keeps_newer_secondary_mapping():
    store = _store()
    first = store.put(Note(owner="a"))
    second = store.put(Note(owner="a"))
    store.delete(first.id)
    assert store.get_by_secondary_key("a").id == second.id


def test_scan_filters_in_insertion_order():
    store = _store()
    for owner in ("a", "b", "c", "d"):
        store.put(Note(owner=owner, body=owner * 2))

    assert [x.owner for x in store.scan()] == ["a", "b", "c", "d"]
    assert [x.owner for x in store.scan(lambda x: x.owner in {"b", "d"})] == ["b", "d"]


def test_scan_is_a_snapshot_of_the_moment_it_starts():
    store = _store()
    store.put(Note(owner="a"))
    store.put(Note(owner="b"))
    iterator = store.scan()

    store.put(Note(owner="c"))
    store.delete(store.get_by_secondary_key("a").id)

    assert [x.owner for x in iterator] == ["a", "b"]


def test_update_applies_mutation_atomically_and_aborts_on_error():
    store = _store()
    stored = store.put(Note(owner="a", body="v1"))

    def _bump(note: Note) -> None:
        note.body = "v2"

    assert store.update(stored.id, _bump).body == "v2"

    def _fail(note: Note) -> None:
        note.body = "v3"
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        store.update(stored.id, _fail)
    assert store.get(stored.id).body == "v2"


def test_update_rejects_id_change():
    store = _store()
    stored = store.put(Note(owner="a"))

    def _rename(note: Note) -> None:
        note.id = "other"

    with pytest.raises(ValueError, match="immutable"):
        store.update(stored.id, _rename)


def test_concurrent_puts_are_all_kept():
    store = _store()

    def _write(i: int) -> str:
        return store.put(Note(owner=f"owner-{i}")).id

    with ThreadPoolExecutor(max_workers=16) as pool:
        ids = list(pool.map(_write, range(400)))

    assert len(set(ids)) == 400
    assert len(store) == 400
    assert store.get_by_secondary_key("owner-0").id in set(ids)
    assert store.get_by_secondary_key("owner-399").id in set(ids)


def test_concurrent_updates_do_not_lose_writes():
    store = _store()
    stored = store.put(Note(owner="counter", body="0"))
    barrier = threading.Barrier(8)

    def _increment(_: int) -> None:
        barrier.wait()
        for _ in range(50):

            def _add(note: Note) -> None:
                note.body = str(int(note.body) + 1)

            store.update(stored.id, _add)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(_increment, range(8)))

    assert store.get(stored.id).body == "400"


def test_upsert_by_secondary_key_creates_once_under_contention():
    store = _store()
    barrier = threading.Barrier(8)

    def _upsert(i: int) -> str:
        barrier.wait()

        def _build(existing: Note | None) -> Note:
            if existing is None:
                return Note(owner="shared", body=str(i))
            existing.body = str(i)
            return existing

        return store.upsert_by_secondary_key("shared", _build).id

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(_upsert, range(8)))

    assert len(set(ids)) == 1
    assert len(store) == 1


def test_reset_clears_everything():
    store = _store()
    store.put(Note(owner="a"))
    store.reset()
    assert len(store) == 0
    assert list(store.scan()) == []
