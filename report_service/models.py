from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

STATUS_DRAFT = "draft"
STATUS_SUBMITTED = "submitted"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

REPORT_STATUSES = (STATUS_DRAFT, STATUS_SUBMITTED, STATUS_APPROVED, STATUS_REJECTED)

SCORE_FIELDS = (
    "security_score",
    "performance_score",
    "memory_score",
    "testing_score",
    "error_score",
    "load_score",
)
DETAIL_FIELDS = (
    "security_details",
    "performance_details",
    "memory_details",
    "testing_details",
    "error_details",
    "load_details",
)
SCORE_MIN = 0
SCORE_MAX = 10


def utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class Report:
    title: str
    description: str
    project_id: str
    author_id: str
    department_id: str
    status: str = STATUS_DRAFT
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    submitted_at: datetime | None = None
    metadata: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "project_id": self.project_id,
            "author_id": self.author_id,
            "department_id": self.department_id,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "submitted_at": _iso(self.submitted_at),
            "metadata": dict(self.metadata) if self.metadata is not None else None,
        }


@dataclass
class EvaluationInput:
    """Scores and rationales supplied by a caller, before they are attached to a report."""

    security_score: int = 0
    performance_score: int = 0
    memory_score: int = 0
    testing_score: int = 0
    error_score: int = 0
    load_score: int = 0
    security_details: str = ""
    performance_details: str = ""
    memory_details: str = ""
    testing_details: str = ""
    error_details: str = ""
    load_details: str = ""

    def validate(self) -> None:
        for name in SCORE_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")
            if value < SCORE_MIN or value > SCORE_MAX:
                raise ValueError(f"{name} must be between {SCORE_MIN} and {SCORE_MAX}")


@dataclass
class Evaluation:
    report_id: str
    evaluator_id: str
    security_score: int = 0
    performance_score: int = 0
    memory_score: int = 0
    testing_score: int = 0
    error_score: int = 0
    load_score: int = 0
    security_details: str = ""
    performance_details: str = ""
    memory_details: str = ""
    testing_details: str = ""
    error_details: str = ""
    load_details: str = ""
    id: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def apply(self, data: EvaluationInput) -> None:
        for name in (*SCORE_FIELDS, *DETAIL_FIELDS):
            setattr(self, name, getattr(data, name))

    def scorecard(self) -> dict[str, Any]:
        """Scores and details only; the shape forwarded to departments."""
        return {name: getattr(self, name) for name in (*SCORE_FIELDS, *DETAIL_FIELDS)}

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "report_id": self.report_id,
            **self.scorecard(),
            "evaluator_id": self.evaluator_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Department:
    id: str
    name: str
    intake_endpoint: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}
