from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class DeliveryMessage:
    report_id: str
    payload: dict[str, Any]
    attempt: int = 0
    due_at: datetime = field(default_factory=_utcnow)


class DeliveryQueue:
    """Pending department deliveries, at most one per report.

    A message is either pending (waiting for ``due_at``) or claimed by the
    worker. Offering a report that is already pending or claimed returns the
    existing message, so a report is never delivered twice concurrently.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, DeliveryMessage] = {}
        self._claimed: dict[str, DeliveryMessage] = {}

    def offer(self, *, report_id: str, payload: dict[str, Any]) -> tuple[DeliveryMessage, bool]:
        """Queue a delivery; the flag is False when the report was already queued."""
        with self._lock:
            existing = self._pending.get(report_id) or self._claimed.get(report_id)
            if existing is not None:
                return existing, False
            msg = DeliveryMessage(report_id=report_id, payload=dict(payload))
            self._pending[report_id] = msg
            return msg, True

    def claim(self) -> DeliveryMessage | None:
        now = _utcnow()
        with self._lock:
            for report_id, msg in self._pending.items():
                if msg.due_at <= now:
                    del self._pending[report_id]
                    self._claimed[report_id] = msg
                    return msg
            return None

    def complete(self, *, report_id: str) -> None:
        with self._lock:
            self._claimed.pop(report_id, None)

    def retry_later(self, *, report_id: str, delay_ms: int = 0) -> DeliveryMessage | None:
        with self._lock:
            msg = self._claimed.pop(report_id, None)
            if msg is None:
                return None
            msg.attempt += 1
            msg.due_at = _utcnow() + timedelta(milliseconds=max(0, int(delay_ms)))
            self._pending[report_id] = msg
            return msg

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def claimed_count(self) -> int:
        with self._lock:
            return len(self._claimed)

    def is_drained(self) -> bool:
        with self._lock:
            return not self._pending and not self._claimed
