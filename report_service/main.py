from __future__ import annotations

import logging
import os
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from report_service.delivery import DeliveryConfig, DeliveryWorker, DepartmentTransport, create_transport
from report_service.errors import ApiError
from report_service.lifecycle import ReportLifecycleService
from report_service.delivery_queue import DeliveryQueue
from report_service.repositories import (
    InMemoryDeadLettersRepository,
    InMemoryDepartmentsCatalog,
    InMemoryEvaluationsRepository,
    InMemoryOperatorEventsRepository,
    InMemoryReportsRepository,
    create_evaluations_store,
    create_reports_store,
)
from report_service.routes import departments, internal, reports
from report_service.routes._deps import error_response, request_id_from_request, trace_id_from_request
from report_service.schemas import success_envelope
from report_service.security import AuthConfig, resolve_caller

logger = logging.getLogger(__name__)


@dataclass
class ServiceComponents:
    lifecycle: ReportLifecycleService
    delivery_worker: DeliveryWorker
    dead_letters: InMemoryDeadLettersRepository
    operator_events: InMemoryOperatorEventsRepository


def build_components(
    *,
    delivery_config: DeliveryConfig | None = None,
    transport: DepartmentTransport | None = None,
    departments_catalog: InMemoryDepartmentsCatalog | None = None,
) -> ServiceComponents:
    config = delivery_config or DeliveryConfig.from_env()
    catalog = departments_catalog or InMemoryDepartmentsCatalog()
    dead_letters = InMemoryDeadLettersRepository()
    events = InMemoryOperatorEventsRepository()
    worker = DeliveryWorker(
        queue=DeliveryQueue(),
        departments=catalog,
        transport=transport or create_transport(config),
        dead_letters=dead_letters,
        events=events,
        config=config,
    )
    lifecycle = ReportLifecycleService(
        reports=InMemoryReportsRepository(create_reports_store()),
        evaluations=InMemoryEvaluationsRepository(create_evaluations_store()),
        departments=catalog,
        events=events,
        delivery=worker,
    )
    return ServiceComponents(
        lifecycle=lifecycle,
        delivery_worker=worker,
        dead_letters=dead_letters,
        operator_events=events,
    )


def create_app(*, components: ServiceComponents | None = None) -> FastAPI:
    parts = components or build_components()
    security_cfg = AuthConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        worker = app.state.delivery_worker
        if worker.config.autostart:
            worker.start()
        try:
            yield
        finally:
            worker.stop()

    app = FastAPI(title="Report Submission Service", version="0.1.0", lifespan=lifespan)
    app.state.security_cfg = security_cfg
    app.state.lifecycle = parts.lifecycle
    app.state.delivery_worker = parts.delivery_worker
    app.state.dead_letters = parts.dead_letters
    app.state.operator_events = parts.operator_events

    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.caller_id = None
        try:
            if request.url.path.startswith("/api/"):
                request.state.caller_id = resolve_caller(headers=request.headers, cfg=security_cfg)
            response = await call_next(request)
        except ApiError as exc:
            logger.info("request_rejected path=%s code=%s", request.url.path, exc.code)
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("unhandled_error path=%s", request.url.path)
        return error_response(
            request,
            code="INTERNAL_ERROR",
            message="internal error",
            error_class="internal",
            retryable=True,
            status_code=500,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(reports.router)
    app.include_router(departments.router)
    app.include_router(internal.router)
    return app
