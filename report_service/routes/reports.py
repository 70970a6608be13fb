from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from report_service.repositories import ReportFilter
from report_service.routes._deps import caller_id_from_request, lifecycle_from_request, trace_id_from_request
from report_service.schemas import CreateReportRequest, EvaluationPayload, success_envelope

router = APIRouter(prefix="/api", tags=["reports"])


@router.post("/reports")
def create_report(payload: CreateReportRequest, request: Request):
    joined = lifecycle_from_request(request).create_report(
        caller_id=caller_id_from_request(request),
        title=payload.title,
        description=payload.description,
        project_id=str(payload.project_id),
        department_id=str(payload.department_id),
        evaluation=payload.evaluation.to_input() if payload.evaluation is not None else None,
        metadata=payload.metadata,
    )
    message = "report saved without evaluation" if joined.is_degraded else "ok"
    return JSONResponse(
        status_code=201,
        content=success_envelope(joined.as_dict(), trace_id_from_request(request), message=message),
    )


@router.get("/reports")
def list_reports(
    request: Request,
    status: str | None = Query(default=None),
    author_id: str | None = Query(default=None),
    project_id: str | None = Query(default=None),
    limit: int | None = Query(default=None),
    offset: int | None = Query(default=None),
):
    listing = lifecycle_from_request(request).list_reports(
        caller_id=caller_id_from_request(request),
        filters=ReportFilter(status=status, author_id=author_id, project_id=project_id),
        limit=limit,
        offset=offset,
    )
    return success_envelope(
        {
            "reports": [x.as_dict() for x in listing.items],
            "total": listing.total,
            "limit": listing.limit,
            "offset": listing.offset,
        },
        trace_id_from_request(request),
    )


@router.get("/reports/{report_id}")
def get_report(report_id: UUID, request: Request):
    joined = lifecycle_from_request(request).get_report(
        caller_id=caller_id_from_request(request),
        report_id=str(report_id),
    )
    return success_envelope(joined.as_dict(), trace_id_from_request(request))


@router.post("/reports/{report_id}/submit")
def submit_report(report_id: UUID, request: Request):
    joined = lifecycle_from_request(request).submit_report(
        caller_id=caller_id_from_request(request),
        report_id=str(report_id),
    )
    return success_envelope(joined.as_dict(), trace_id_from_request(request))


@router.get("/reports/{report_id}/evaluation")
def get_evaluation(report_id: UUID, request: Request):
    evaluation = lifecycle_from_request(request).get_evaluation(
        caller_id=caller_id_from_request(request),
        report_id=str(report_id),
    )
    return success_envelope(evaluation.as_dict(), trace_id_from_request(request))


@router.put("/reports/{report_id}/evaluation")
def save_evaluation(report_id: UUID, payload: EvaluationPayload, request: Request):
    evaluation = lifecycle_from_request(request).save_evaluation(
        caller_id=caller_id_from_request(request),
        report_id=str(report_id),
        evaluation=payload.to_input(),
    )
    return success_envelope(evaluation.as_dict(), trace_id_from_request(request))
