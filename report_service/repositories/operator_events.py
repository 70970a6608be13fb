from __future__ import annotations

import threading
import uuid
from datetime import UTC, datetime
from typing import Any


class InMemoryOperatorEventsRepository:
    """Append-only record of degraded best-effort steps, kept for operators."""

    def __init__(self, events: list[dict[str, Any]] | None = None) -> None:
        self._lock = threading.Lock()
        self._events = [] if events is None else events

    def append(self, *, kind: str, report_id: str | None = None, detail: dict[str, Any] | None = None) -> dict[str, Any]:
        item = {
            "event_id": f"evt_{uuid.uuid4().hex[:12]}",
            "kind": kind,
            "report_id": report_id,
            "detail": dict(detail or {}),
            "occurred_at": datetime.now(UTC).isoformat(),
        }
        with self._lock:
            self._events.append(item)
        return dict(item)

    def list(self, *, kind: str | None = None, report_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            rows = [dict(x) for x in self._events]
        return [
            x
            for x in rows
            if (kind is None or x["kind"] == kind) and (report_id is None or x["report_id"] == report_id)
        ]

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
