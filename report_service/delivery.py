from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol
from urllib import request
from urllib.error import HTTPError, URLError

from jsonschema import ValidationError, validate

from report_service.errors import EntityNotFoundError
from report_service.models import DETAIL_FIELDS, SCORE_FIELDS, SCORE_MAX, SCORE_MIN, Department, Evaluation, Report
from report_service.delivery_queue import DeliveryMessage, DeliveryQueue

logger = logging.getLogger(__name__)

PAYLOAD_FIELDS = (
    "report_id",
    "title",
    "description",
    "project_id",
    "author_id",
    "department_id",
    "submitted_at",
    "metadata",
)

DELIVERY_PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": list(PAYLOAD_FIELDS),
    "properties": {
        "report_id": {"type": "string", "minLength": 1},
        "title": {"type": "string"},
        "description": {"type": "string"},
        "project_id": {"type": "string"},
        "author_id": {"type": "string", "minLength": 1},
        "department_id": {"type": "string", "minLength": 1},
        "submitted_at": {"type": "string", "minLength": 1},
        "metadata": {"type": ["object", "null"]},
        "evaluation": {
            "type": "object",
            "required": [*SCORE_FIELDS, *DETAIL_FIELDS],
            "properties": {
                **{name: {"type": "integer", "minimum": SCORE_MIN, "maximum": SCORE_MAX} for name in SCORE_FIELDS},
                **{name: {"type": "string"} for name in DETAIL_FIELDS},
            },
        },
    },
}


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = str(env.get(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_bool(env: Mapping[str, str], name: str, *, default: bool) -> bool:
    raw = str(env.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class DeliveryConfig:
    transport: str = "simulated"
    simulated_latency_ms: int = 500
    timeout_ms: int = 5000
    max_retries: int = 3
    retry_backoff_base_ms: int = 1000
    retry_backoff_max_ms: int = 30000
    poll_interval_ms: int = 200
    max_messages_per_iteration: int = 20
    autostart: bool = True

    @property
    def timeout_s(self) -> float:
        return max(0.001, self.timeout_ms / 1000.0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DeliveryConfig":
        env = os.environ if environ is None else environ
        transport = str(env.get("DELIVERY_TRANSPORT", "simulated")).strip().lower() or "simulated"
        if transport not in {"simulated", "http"}:
            raise RuntimeError(f"unsupported delivery transport: {transport}")
        return cls(
            transport=transport,
            simulated_latency_ms=_env_int(env, "DELIVERY_SIMULATED_LATENCY_MS", default=500),
            timeout_ms=_env_int(env, "DELIVERY_TIMEOUT_MS", default=5000, minimum=1),
            max_retries=_env_int(env, "DELIVERY_MAX_RETRIES", default=3),
            retry_backoff_base_ms=_env_int(env, "DELIVERY_RETRY_BACKOFF_BASE_MS", default=1000),
            retry_backoff_max_ms=_env_int(env, "DELIVERY_RETRY_BACKOFF_MAX_MS", default=30000),
            poll_interval_ms=_env_int(env, "DELIVERY_POLL_INTERVAL_MS", default=200, minimum=1),
            max_messages_per_iteration=_env_int(env, "DELIVERY_MAX_MESSAGES_PER_ITERATION", default=20, minimum=1),
            autostart=_env_bool(env, "DELIVERY_WORKER_AUTOSTART", default=True),
        )


class DeliveryError(RuntimeError):
    def __init__(self, *, code: str, message: str, retryable: bool) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable


def build_delivery_payload(report: Report, evaluation: Evaluation | None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "report_id": report.id,
        "title": report.title,
        "description": report.description,
        "project_id": report.project_id,
        "author_id": report.author_id,
        "department_id": report.department_id,
        "submitted_at": report.submitted_at.isoformat() if report.submitted_at else None,
        "metadata": dict(report.metadata) if report.metadata is not None else None,
    }
    if evaluation is not None:
        payload["evaluation"] = evaluation.scorecard()
    return payload


def retry_backoff_ms(*, key: str, retry_count: int, base_ms: int, max_ms: int) -> int:
    normalized_retry = max(1, int(retry_count))
    base = max(0, int(base_ms))
    if base == 0:
        return 0
    max_backoff = max(base, int(max_ms))
    exponential = base * (2 ** (normalized_retry - 1))
    digest = hashlib.sha256(f"{key}:{normalized_retry}".encode("utf-8")).digest()
    jitter = int.from_bytes(digest[:2], byteorder="big") % 301
    return min(max_backoff, exponential) + jitter


class DepartmentTransport(Protocol):
    def deliver(self, *, department: Department, payload: dict[str, Any], timeout_s: float) -> None: ...


class SimulatedDepartmentTransport:
    """Stands in for the department intake API: logs and waits out a fixed latency."""

    def __init__(self, *, latency_ms: int = 500, sleep: Callable[[float], None] = time.sleep) -> None:
        self.latency_ms = max(0, int(latency_ms))
        self._sleep = sleep

    def deliver(self, *, department: Department, payload: dict[str, Any], timeout_s: float) -> None:
        logger.info(
            "department_delivery_simulated report_id=%s department=%s",
            payload.get("report_id"),
            department.name,
        )
        latency_s = self.latency_ms / 1000.0
        if latency_s > timeout_s:
            self._sleep(timeout_s)
            raise DeliveryError(
                code="DELIVERY_TIMEOUT",
                message=f"department intake did not answer within {timeout_s:.3f}s",
                retryable=True,
            )
        if latency_s > 0:
            self._sleep(latency_s)


class HttpDepartmentTransport:
    def deliver(self, *, department: Department, payload: dict[str, Any], timeout_s: float) -> None:
        endpoint = department.intake_endpoint.strip()
        if not endpoint:
            raise DeliveryError(
                code="DEPARTMENT_ENDPOINT_MISSING",
                message=f"department {department.id} has no intake endpoint",
                retryable=False,
            )
        body = json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str).encode("utf-8")
        req = request.Request(
            endpoint,
            data=body,
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        try:
            with request.urlopen(req, timeout=timeout_s) as resp:
                resp.read()
        except HTTPError as exc:
            raise DeliveryError(
                code="DELIVERY_HTTP_ERROR",
                message=f"department intake returned {exc.code}",
                retryable=exc.code >= 500 or exc.code == 429,
            ) from None
        except (URLError, TimeoutError, OSError) as exc:
            raise DeliveryError(
                code="DELIVERY_UNREACHABLE",
                message=f"department intake unreachable: {type(exc).__name__}",
                retryable=True,
            ) from None


def create_transport(config: DeliveryConfig) -> DepartmentTransport:
    if config.transport == "http":
        return HttpDepartmentTransport()
    return SimulatedDepartmentTransport(latency_ms=config.simulated_latency_ms)


@dataclass
class DeliveryRunStats:
    processed: int = 0
    delivered: int = 0
    retrying: int = 0
    dead_lettered: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "delivered": self.delivered,
            "retrying": self.retrying,
            "dead_lettered": self.dead_lettered,
        }


class DeliveryWorker:
    """Forwards submitted reports to their departments off the request path.

    ``enqueue`` is the hand-off used by submission and returns as soon as the
    message is queued. Messages are consumed by ``run_once``, either from the
    worker's own daemon thread (``start``) or directly by tests and the internal run-once route.
    A failed delivery is retried with exponential backoff up to
    ``max_retries`` times and then dead-lettered; nothing raised while
    delivering escapes the worker.
    """

    def __init__(
        self,
        *,
        queue: DeliveryQueue,
        departments: Any,
        transport: DepartmentTransport,
        dead_letters: Any,
        events: Any,
        config: DeliveryConfig | None = None,
    ) -> None:
        self.queue = queue
        self.departments = departments
        self.transport = transport
        self.dead_letters = dead_letters
        self.events = events
        self.config = config or DeliveryConfig()
        self._settled = threading.Condition()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def enqueue(self, *, report: Report, evaluation: Evaluation | None) -> DeliveryMessage:
        msg, queued = self.queue.offer(report_id=report.id, payload=build_delivery_payload(report, evaluation))
        if queued:
            logger.info("department_delivery_enqueued report_id=%s", report.id)
        else:
            logger.info("department_delivery_already_queued report_id=%s attempt=%s", report.id, msg.attempt)
        return msg

    def _deliver(self, payload: dict[str, Any]) -> Department:
        department_id = str(payload.get("department_id") or "")
        try:
            department = self.departments.get(department_id=department_id)
        except EntityNotFoundError:
            raise DeliveryError(
                code="DEPARTMENT_NOT_FOUND",
                message=f"department not found: {department_id}",
                retryable=False,
            ) from None
        try:
            validate(instance=payload, schema=DELIVERY_PAYLOAD_SCHEMA)
        except ValidationError as exc:
            raise DeliveryError(
                code="DELIVERY_PAYLOAD_INVALID",
                message=exc.message,
                retryable=False,
            ) from None
        self.transport.deliver(department=department, payload=payload, timeout_s=self.config.timeout_s)
        return department

    def _dead_letter(self, *, msg: DeliveryMessage, error: DeliveryError) -> None:
        self.dead_letters.upsert(
            item={
                "dead_letter_id": f"dl_{uuid.uuid4().hex[:12]}",
                "report_id": msg.report_id,
                "department_id": msg.payload.get("department_id"),
                "error_code": error.code,
                "error_message": error.message,
                "retryable": error.retryable,
                "attempts": msg.attempt + 1,
                "payload": msg.payload,
                "created_at": datetime.now(UTC).isoformat(),
            }
        )

    def _handle_failure(self, *, msg: DeliveryMessage, error: DeliveryError, stats: DeliveryRunStats) -> None:
        report_id = msg.report_id
        logger.warning(
            "department_delivery_failed report_id=%s code=%s attempt=%s retryable=%s",
            report_id,
            error.code,
            msg.attempt + 1,
            error.retryable,
        )
        detail = {"error_code": error.code, "message": error.message, "attempt": msg.attempt + 1}
        if error.retryable and msg.attempt < self.config.max_retries:
            delay_ms = retry_backoff_ms(
                key=report_id,
                retry_count=msg.attempt + 1,
                base_ms=self.config.retry_backoff_base_ms,
                max_ms=self.config.retry_backoff_max_ms,
            )
            self.queue.retry_later(report_id=report_id, delay_ms=delay_ms)
            self.events.append(
                kind="delivery_retry_scheduled",
                report_id=report_id,
                detail={**detail, "retry_after_ms": delay_ms},
            )
            stats.retrying += 1
            return
        self.queue.complete(report_id=report_id)
        self._dead_letter(msg=msg, error=error)
        self.events.append(kind="delivery_dead_lettered", report_id=report_id, detail=detail)
        logger.error("department_delivery_dead_lettered report_id=%s code=%s", report_id, error.code)
        stats.dead_lettered += 1

    def _process_message(self, stats: DeliveryRunStats) -> bool:
        msg = self.queue.claim()
        if msg is None:
            return False
        stats.processed += 1
        try:
            department = self._deliver(dict(msg.payload))
        except DeliveryError as exc:
            self._handle_failure(msg=msg, error=exc, stats=stats)
        except Exception as exc:
            # Unknown transport faults are treated as transient.
            self._handle_failure(
                msg=msg,
                error=DeliveryError(
                    code="DELIVERY_UNEXPECTED_ERROR",
                    message=type(exc).__name__,
                    retryable=True,
                ),
                stats=stats,
            )
        else:
            self.queue.complete(report_id=msg.report_id)
            self.events.append(
                kind="report_delivered",
                report_id=msg.report_id,
                detail={"department": department.name, "attempt": msg.attempt + 1},
            )
            logger.info("department_delivery_succeeded report_id=%s department=%s", msg.report_id, department.name)
            stats.delivered += 1
        finally:
            with self._settled:
                self._settled.notify_all()
        return True

    def run_once(self) -> dict[str, int]:
        stats = DeliveryRunStats()
        while stats.processed < self.config.max_messages_per_iteration:
            if not self._process_message(stats):
                break
        return stats.as_dict()

    def is_idle(self) -> bool:
        return self.queue.is_drained()

    def wait_idle(self, timeout_s: float = 5.0) -> bool:
        with self._settled:
            return self._settled.wait_for(self.is_idle, timeout=timeout_s)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                processed = self.run_once()["processed"]
            except Exception:
                # Keep the worker thread alive on unexpected queue failures.
                logger.exception("delivery_worker_iteration_failed")
                processed = 0
            if processed == 0:
                self._stop_event.wait(self.config.poll_interval_ms / 1000.0)

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="department-delivery", daemon=True)
        self._thread.start()

    def stop(self, timeout_s: float = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout_s)
        self._thread = None
