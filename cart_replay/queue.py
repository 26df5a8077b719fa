"""The export cart: a bounded, persisted list of filter snapshots."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List

import structlog
from pydantic import TypeAdapter, ValidationError

from .errors import CapacityExceeded
from .infra import KeyValueStore
from .models import FilterSnapshot

CART_KEY = "export-cart"
DEFAULT_CAPACITY = 50

_SNAPSHOTS = TypeAdapter(List[FilterSnapshot])


@dataclass(frozen=True, slots=True)
class CartSummary:
    entries: int
    total_estimated: int


class PersistedQueue:
    """Most-recent-first queue of snapshots stored as one blob.

    Every mutation rewrites the whole blob. Two processes writing the same
    store are not coordinated; whichever writes last wins.
    """

    def __init__(
        self,
        store: KeyValueStore,
        capacity: int = DEFAULT_CAPACITY,
        *,
        key: str = CART_KEY,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.store = store
        self.capacity = capacity
        self.key = key
        self.logger = logger or structlog.get_logger("cart_replay.queue")

    # ------------------------------------------------------------------
    def _load(self) -> list[FilterSnapshot]:
        blob = self.store.get(self.key)
        if not blob:
            return []
        try:
            return _SNAPSHOTS.validate_json(blob)
        except ValidationError as exc:
            self.logger.warning("queue_blob_unreadable", key=self.key, error=str(exc))
            return []

    def _save(self, items: list[FilterSnapshot]) -> None:
        self.store.set(self.key, _SNAPSHOTS.dump_json(items).decode("utf-8"))

    # ------------------------------------------------------------------
    def items(self) -> list[FilterSnapshot]:
        return self._load()

    def __len__(self) -> int:
        return len(self._load())

    def get(self, snapshot_id: str) -> FilterSnapshot | None:
        return next((item for item in self._load() if item.id == snapshot_id), None)

    def append(self, snapshot: FilterSnapshot) -> FilterSnapshot:
        """Put ``snapshot`` at the front; a full cart rejects it untouched."""

        items = self._load()
        if len(items) >= self.capacity:
            raise CapacityExceeded(self.capacity)
        items = [snapshot, *(item for item in items if item.id != snapshot.id)]
        self._save(items)
        self.logger.info(
            "cart_item_added",
            item=snapshot.id,
            data_source=snapshot.data_source.value,
            estimated_count=snapshot.estimated_count,
        )
        return snapshot

    def remove(self, snapshot_id: str) -> bool:
        items = self._load()
        remaining = [item for item in items if item.id != snapshot_id]
        if len(remaining) == len(items):
            return False
        self._save(remaining)
        self.logger.info("cart_item_removed", item=snapshot_id)
        return True

    def clear(self) -> int:
        count = len(self._load())
        self.store.delete(self.key)
        self.logger.info("cart_cleared", removed=count)
        return count

    def summary(self) -> CartSummary:
        items = self._load()
        return CartSummary(
            entries=len(items),
            total_estimated=sum(item.estimated_count for item in items),
        )


__all__ = ["CART_KEY", "CartSummary", "DEFAULT_CAPACITY", "PersistedQueue"]
