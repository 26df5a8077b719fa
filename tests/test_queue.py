from __future__ import annotations

import pytest

from cart_replay.errors import CapacityExceeded
from cart_replay.infra import KeyValueStore
from cart_replay.queue import CART_KEY, PersistedQueue


def test_append_puts_newest_first(cart_queue, make_snapshot) -> None:
    first = cart_queue.append(make_snapshot(title="first", estimated_count=10))
    second = cart_queue.append(make_snapshot(title="second", estimated_count=5))
    assert [item.id for item in cart_queue.items()] == [second.id, first.id]
    assert cart_queue.get(first.id) == first


def test_full_queue_rejects_append_unchanged(cart_queue, make_snapshot) -> None:
    for index in range(3):
        cart_queue.append(make_snapshot(title=f"item {index}"))
    before = cart_queue.items()
    with pytest.raises(CapacityExceeded, match="max 3 items"):
        cart_queue.append(make_snapshot(title="overflow"))
    assert cart_queue.items() == before
    assert len(cart_queue) == 3


def test_capacity_of_fifty(tmp_path, make_snapshot) -> None:
    queue = PersistedQueue(KeyValueStore(tmp_path / "big.db"))
    for index in range(50):
        queue.append(make_snapshot(title=str(index)))
    with pytest.raises(CapacityExceeded):
        queue.append(make_snapshot(title="51st"))
    assert len(queue) == 50


def test_remove_clear_and_summary(cart_queue, make_snapshot) -> None:
    first = cart_queue.append(make_snapshot(estimated_count=120))
    cart_queue.append(make_snapshot(data_source="inaturalist", estimated_count=30))
    summary = cart_queue.summary()
    assert (summary.entries, summary.total_estimated) == (2, 150)

    assert cart_queue.remove(first.id)
    assert not cart_queue.remove(first.id)
    assert cart_queue.summary().total_estimated == 30

    assert cart_queue.clear() == 1
    assert cart_queue.items() == []


def test_queue_persists_across_instances(tmp_path, make_snapshot) -> None:
    path = tmp_path / "cart.db"
    snapshot = make_snapshot(
        data_source="inaturalist",
        core_filters={"days_back": 7},
        custom_filters={"iconic_taxa": ["Aves"], "months": [4]},
        preview_sample=[{"id": 1}],
    )
    PersistedQueue(KeyValueStore(path)).append(snapshot)
    restored = PersistedQueue(KeyValueStore(path)).items()
    assert restored == [snapshot]


def test_corrupt_blob_reads_as_empty(cart_queue, make_snapshot) -> None:
    cart_queue.store.set(CART_KEY, "{not json")
    assert cart_queue.items() == []
    cart_queue.append(make_snapshot())
    assert len(cart_queue) == 1
