from __future__ import annotations

import json
from threading import Thread

import pytest

from hybrid_recs.errors import InvalidInputError
from hybrid_recs.session.recently_visited import (
    MAX_RECENT_ARTICLES,
    RECENTLY_VISITED_KEY,
    InMemorySessionStorage,
    RecentlyVisitedStore,
    SessionRegistry,
)


class BrokenStorage(InMemorySessionStorage):
    def put(self, key: str, value: str) -> None:
        raise OSError("quota exceeded")


def test_empty_store_lists_nothing() -> None:
    store = RecentlyVisitedStore()
    assert store.list() == []
    assert len(store) == 0


def test_visits_are_listed_most_recent_first() -> None:
    store = RecentlyVisitedStore()
    store.record_visit("a1")
    store.record_visit("a2")
    assert store.list() == ["a2", "a1"]


def test_revisit_moves_to_front_without_duplicating() -> None:
    store = RecentlyVisitedStore()
    for article_id in ["a1", "a2", "a3"]:
        store.record_visit(article_id)

    store.record_visit("a1")

    assert store.list() == ["a1", "a3", "a2"]
    assert len(store) == 3


def test_capacity_evicts_oldest_first() -> None:
    store = RecentlyVisitedStore()
    for i in range(1, 7):
        store.record_visit(f"a{i}")

    assert MAX_RECENT_ARTICLES == 4
    assert store.list() == ["a6", "a5", "a4", "a3"]


def test_clear_empties_the_store() -> None:
    store = RecentlyVisitedStore()
    store.record_visit("a1")
    store.clear()
    assert store.list() == []
    store.clear()
    assert store.list() == []


def test_history_is_persisted_as_json_in_injected_storage() -> None:
    storage = InMemorySessionStorage()
    store = RecentlyVisitedStore(storage, capacity=2)
    store.record_visit("a1")
    store.record_visit("a2")

    assert json.loads(storage.get(RECENTLY_VISITED_KEY)) == ["a2", "a1"]
    # A second view over the same storage sees the same history.
    assert RecentlyVisitedStore(storage, capacity=2).list() == ["a2", "a1"]


@pytest.mark.parametrize("raw", ["invalid-json", '{"a": 1}', "42"])
def test_corrupt_storage_reads_as_empty(raw: str) -> None:
    storage = InMemorySessionStorage()
    storage.put(RECENTLY_VISITED_KEY, raw)
    store = RecentlyVisitedStore(storage)

    assert store.list() == []
    assert store.record_visit("a1") == ["a1"]


def test_list_repairs_duplicates_written_by_other_writers() -> None:
    storage = InMemorySessionStorage()
    storage.put(RECENTLY_VISITED_KEY, json.dumps(["a", "b", "a", "c", "d", "e"]))

    assert RecentlyVisitedStore(storage).list() == ["a", "b", "c", "d"]


def test_storage_write_errors_do_not_propagate() -> None:
    store = RecentlyVisitedStore(BrokenStorage())
    assert store.record_visit("a1") == []
    assert store.list() == []


def test_failed_write_reports_the_history_actually_stored() -> None:
    storage = InMemorySessionStorage()
    store = RecentlyVisitedStore(storage)
    store.record_visit("a1")
    store.record_visit("a2")

    storage.put = BrokenStorage().put  # type: ignore[method-assign]

    assert store.record_visit("a3") == ["a2", "a1"]
    assert store.list() == ["a2", "a1"]


@pytest.mark.parametrize("bad", ["", "   ", None, 5])
def test_rejects_invalid_ids(bad) -> None:
    with pytest.raises(InvalidInputError):
        RecentlyVisitedStore().record_visit(bad)


def test_concurrent_visits_keep_invariants() -> None:
    store = RecentlyVisitedStore(capacity=4)

    def _visit(offset: int) -> None:
        for i in range(200):
            store.record_visit(f"a{(i + offset) % 10}")

    threads = [Thread(target=_visit, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    recent = store.list()
    assert len(recent) == 4
    assert len(set(recent)) == 4


def test_registry_creates_and_discards_sessions() -> None:
    registry = SessionRegistry(capacity=2)
    assert registry.peek("s1") is None

    registry.get("s1").record_visit("a1")
    registry.get("s1").record_visit("a2")
    registry.get("s1").record_visit("a3")
    registry.get("s2").record_visit("b1")

    assert registry.get("s1").list() == ["a3", "a2"]
    assert registry.peek("s2").list() == ["b1"]
    assert len(registry) == 2

    registry.discard("s1")
    assert registry.peek("s1") is None
    assert len(registry) == 1

    with pytest.raises(InvalidInputError):
        registry.get("")


def test_registry_drops_least_recently_used_sessions_past_its_bound() -> None:
    registry = SessionRegistry(max_sessions=3)
    for i in range(3):
        registry.get(f"s{i}").record_visit("a1")

    # Touch s0 so that s1 becomes the least recently used session.
    assert registry.peek("s0") is not None
    registry.get("s3")

    assert len(registry) == 3
    assert "s1" not in registry
    assert registry.peek("s1") is None
    assert registry.peek("s0").list() == ["a1"]


def test_registry_stays_bounded_under_many_sessions() -> None:
    registry = SessionRegistry(max_sessions=50)
    for i in range(2000):
        registry.get(f"s{i}").record_visit("a1")

    assert len(registry) == 50
    assert "s1999" in registry and "s1949" not in registry


def test_registry_rejects_non_positive_bound() -> None:
    with pytest.raises(ValueError):
        SessionRegistry(max_sessions=0)
