from __future__ import annotations

import threading
from typing import Any


class InMemoryDeadLettersRepository:
    """Deliveries that exhausted retries or failed without a retry option."""

    def __init__(self, items: dict[str, dict[str, Any]] | None = None) -> None:
        self._lock = threading.Lock()
        self._items = {} if items is None else items

    def upsert(self, *, item: dict[str, Any]) -> dict[str, Any]:
        row = dict(item)
        with self._lock:
            self._items[str(row["dead_letter_id"])] = row
        return dict(row)

    def get(self, *, dead_letter_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._items.get(dead_letter_id)
        if row is None:
            return None
        return dict(row)

    def list(self, *, report_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(x) for x in self._items.values()]
        if report_id is not None:
            rows = [x for x in rows if x.get("report_id") == report_id]
        rows.sort(key=lambda x: str(x.get("created_at", "")))
        return rows

    def reset(self) -> None:
        with self._lock:
            self._items.clear()
