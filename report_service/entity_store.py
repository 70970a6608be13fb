from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import Generic, TypeVar

from report_service.errors import EntityNotFoundError

EntityT = TypeVar("EntityT")


class InMemoryEntityStore(Generic[EntityT]):
    """Keyed entity storage with an optional secondary index.

    Entities are dataclass-like records exposing ``id``, ``created_at`` and
    ``updated_at``. The store keeps deep copies, so callers never alias stored
    state; every read hands back a fresh copy.

    One ``RLock`` guards both maps. Writes, point reads and the snapshot taken
    by ``scan`` all run under it.

    The secondary index maps a derived key to a primary id. Two entities with
    the same derived key collide: the last writer owns the key.
    """

    def __init__(
        self,
        *,
        kind: str,
        secondary_key: Callable[[EntityT], str | None] | None = None,
    ) -> None:
        self.kind = kind
        self._secondary_key = secondary_key
        self._lock = threading.RLock()
        self._items: dict[str, EntityT] = {}
        self._by_secondary: dict[str, str] = {}

    @staticmethod
    def _utcnow() -> datetime:
        return datetime.now(UTC)

    def _derive_key(self, entity: EntityT) -> str | None:
        if self._secondary_key is None:
            return None
        key = self._secondary_key(entity)
        return str(key) if key else None

    def _store_locked(self, entity: EntityT, *, touch: bool = True) -> EntityT:
        item = copy.deepcopy(entity)
        if not getattr(item, "id", ""):
            item.id = str(uuid.uuid4())
        stamp = self._utcnow() if touch else getattr(item, "updated_at", None) or self._utcnow()
        created_at = getattr(item, "created_at", None)
        item.updated_at = max(stamp, created_at) if isinstance(created_at, datetime) else stamp

        previous = self._items.get(item.id)
        if previous is not None:
            old_key = self._derive_key(previous)
            if old_key is not None and self._by_secondary.get(old_key) == item.id:
                del self._by_secondary[old_key]
        self._items[item.id] = item
        new_key = self._derive_key(item)
        if new_key is not None:
            self._by_secondary[new_key] = item.id
        return copy.deepcopy(item)

    def put(self, entity: EntityT, *, touch: bool = True) -> EntityT:
        """Insert or overwrite; ``touch=False`` keeps the caller's ``updated_at``."""
        with self._lock:
            return self._store_locked(entity, touch=touch)

    def get(self, entity_id: str) -> EntityT:
        with self._lock:
            item = self._items.get(entity_id)
            if item is None:
                raise EntityNotFoundError(self.kind, entity_id)
            return copy.deepcopy(item)

    def get_by_secondary_key(self, key: str) -> EntityT:
        with self._lock:
            entity_id = self._by_secondary.get(key)
            if entity_id is None:
                raise EntityNotFoundError(self.kind, key)
            return copy.deepcopy(self._items[entity_id])

    def delete(self, entity_id: str) -> EntityT:
        with self._lock:
            item = self._items.pop(entity_id, None)
            if item is None:
                raise EntityNotFoundError(self.kind, entity_id)
            key = self._derive_key(item)
            if key is not None and self._by_secondary.get(key) == entity_id:
                del self._by_secondary[key]
            return item

    def update(self, entity_id: str, mutate: Callable[[EntityT], EntityT | None]) -> EntityT:
        """Atomic read-modify-write.

        ``mutate`` gets a private copy; returning ``None`` keeps the mutated
        copy. Anything it raises aborts the write and propagates.
        """
        with self._lock:
            current = self._items.get(entity_id)
            if current is None:
                raise EntityNotFoundError(self.kind, entity_id)
            working = copy.deepcopy(current)
            result = mutate(working)
            updated = working if result is None else result
            if getattr(updated, "id", "") != entity_id:
                raise ValueError(f"{self.kind} id is immutable")
            return self._store_locked(updated)

    def upsert_by_secondary_key(self, key: str, build: Callable[[EntityT | None], EntityT]) -> EntityT:
        """Atomic lookup-then-put keyed on the secondary index."""
        with self._lock:
            entity_id = self._by_secondary.get(key)
            existing = copy.deepcopy(self._items[entity_id]) if entity_id is not None else None
            return self._store_locked(build(existing))

    def scan(self, predicate: Callable[[EntityT], bool] | None = None) -> Iterator[EntityT]:
        with self._lock:
            snapshot = [copy.deepcopy(x) for x in self._items.values()]

        def _iter() -> Iterator[EntityT]:
            for item in snapshot:
                if predicate is None or predicate(item):
                    yield item

        return _iter()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def reset(self) -> None:
        with self._lock:
            self._items.clear()
            self._by_secondary.clear()
