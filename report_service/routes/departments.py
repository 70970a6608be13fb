from __future__ import annotations

from fastapi import APIRouter, Request

from report_service.routes._deps import caller_id_from_request, lifecycle_from_request, trace_id_from_request
from report_service.schemas import success_envelope

router = APIRouter(prefix="/api", tags=["departments"])


@router.get("/departments")
def list_departments(request: Request):
    departments = lifecycle_from_request(request).list_departments(caller_id=caller_id_from_request(request))
    return success_envelope(
        {"departments": [x.as_dict() for x in departments]},
        trace_id_from_request(request),
    )
