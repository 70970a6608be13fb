from __future__ import annotations

from fastapi import APIRouter, Query, Request

from report_service.errors import unauthenticated
from report_service.routes._deps import caller_id_from_request, trace_id_from_request
from report_service.schemas import success_envelope

router = APIRouter(prefix="/api/internal", tags=["internal"])


def _require_operator(request: Request) -> None:
    if not caller_id_from_request(request):
        raise unauthenticated()


@router.get("/dead-letters")
def list_dead_letters(request: Request, report_id: str | None = Query(default=None)):
    _require_operator(request)
    items = request.app.state.dead_letters.list(report_id=report_id)
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.get("/operator-events")
def list_operator_events(
    request: Request,
    kind: str | None = Query(default=None),
    report_id: str | None = Query(default=None),
):
    _require_operator(request)
    items = request.app.state.operator_events.list(kind=kind, report_id=report_id)
    return success_envelope({"items": items, "total": len(items)}, trace_id_from_request(request))


@router.post("/delivery/run-once")
def run_delivery_once(request: Request):
    _require_operator(request)
    worker = request.app.state.delivery_worker
    stats = worker.run_once()
    return success_envelope(
        {"stats": stats, "idle": worker.is_idle(), "running": worker.is_running},
        trace_id_from_request(request),
    )
