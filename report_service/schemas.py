from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from report_service.models import EvaluationInput


class EvaluationPayload(BaseModel):
    security_score: int = Field(ge=0, le=10)
    performance_score: int = Field(ge=0, le=10)
    memory_score: int = Field(ge=0, le=10)
    testing_score: int = Field(ge=0, le=10)
    error_score: int = Field(ge=0, le=10)
    load_score: int = Field(ge=0, le=10)
    security_details: str = ""
    performance_details: str = ""
    memory_details: str = ""
    testing_details: str = ""
    error_details: str = ""
    load_details: str = ""

    def to_input(self) -> EvaluationInput:
        return EvaluationInput(**self.model_dump())


class CreateReportRequest(BaseModel):
    title: str = Field(min_length=5)
    description: str = Field(min_length=20)
    project_id: UUID
    department_id: UUID
    evaluation: EvaluationPayload | None = None
    metadata: dict[str, Any] | None = None


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
