from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from report_service import errors
from report_service.delivery import DeliveryWorker
from report_service.errors import EntityNotFoundError, StaleStatusError
from report_service.models import REPORT_STATUSES, STATUS_DRAFT, STATUS_SUBMITTED, Department, Evaluation, EvaluationInput, Report
from report_service.repositories import (
    InMemoryDepartmentsCatalog,
    InMemoryEvaluationsRepository,
    InMemoryOperatorEventsRepository,
    InMemoryReportsRepository,
    ReportFilter,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"submitted"},
    "submitted": set(),
    "approved": set(),
    "rejected": set(),
}


@dataclass
class JoinedReport:
    """A report plus its evaluation, if one could be attached.

    ``degraded`` names best-effort steps that failed while the primary
    operation still succeeded, e.g. ``evaluation_save_failed``.
    """

    report: Report
    evaluation: Evaluation | None = None
    degraded: list[str] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)

    def as_dict(self) -> dict[str, Any]:
        data = self.report.as_dict()
        if self.evaluation is not None:
            data["evaluation"] = self.evaluation.as_dict()
        return data


@dataclass
class ReportListing:
    items: list[JoinedReport]
    total: int
    limit: int
    offset: int


class ReportLifecycleService:
    def __init__(
        self,
        *,
        reports: InMemoryReportsRepository,
        evaluations: InMemoryEvaluationsRepository,
        departments: InMemoryDepartmentsCatalog,
        events: InMemoryOperatorEventsRepository,
        delivery: DeliveryWorker,
    ) -> None:
        self.reports = reports
        self.evaluations = evaluations
        self.departments = departments
        self.events = events
        self.delivery = delivery

    @staticmethod
    def _require_caller(caller_id: str | None) -> str:
        caller = (caller_id or "").strip()
        if not caller:
            raise errors.unauthenticated()
        return caller

    def _load_report(self, report_id: str) -> Report:
        try:
            return self.reports.get(report_id=report_id)
        except EntityNotFoundError:
            raise errors.not_found(code="REPORT_NOT_FOUND", message="report not found") from None
        except Exception:
            logger.exception("report_load_failed report_id=%s", report_id)
            raise errors.internal("failed to get report") from None

    def _join_evaluation(self, joined: JoinedReport) -> JoinedReport:
        report_id = joined.report.id
        try:
            joined.evaluation = self.evaluations.get_by_report(report_id=report_id)
        except EntityNotFoundError:
            joined.evaluation = None
        except Exception as exc:
            logger.warning("evaluation_fetch_failed report_id=%s error=%s", report_id, type(exc).__name__)
            self.events.append(
                kind="evaluation_fetch_failed",
                report_id=report_id,
                detail={"error": type(exc).__name__},
            )
            joined.degraded.append("evaluation_fetch_failed")
        return joined

    def create_report(
        self,
        *,
        caller_id: str | None,
        title: str,
        description: str,
        project_id: str,
        department_id: str,
        evaluation: EvaluationInput | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> JoinedReport:
        caller = self._require_caller(caller_id)
        try:
            report = self.reports.create(
                title=title,
                description=description,
                project_id=project_id,
                author_id=caller,
                department_id=department_id,
                metadata=metadata,
            )
        except Exception:
            logger.exception("report_save_failed author_id=%s", caller)
            raise errors.internal("failed to save report") from None

        joined = JoinedReport(report=report)
        if evaluation is None:
            return joined
        try:
            joined.evaluation = self.evaluations.upsert_for_report(
                report_id=report.id,
                evaluation=evaluation,
                evaluator_id=caller,
            )
        except Exception as exc:
            # The report is already stored; the evaluation is best effort.
            logger.warning("evaluation_save_failed report_id=%s error=%s", report.id, type(exc).__name__)
            self.events.append(
                kind="evaluation_save_failed",
                report_id=report.id,
                detail={"error": type(exc).__name__},
            )
            joined.degraded.append("evaluation_save_failed")
        return joined

    def list_reports(
        self,
        *,
        caller_id: str | None,
        filters: ReportFilter | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> ReportListing:
        self._require_caller(caller_id)
        if filters is not None and filters.status is not None and filters.status not in REPORT_STATUSES:
            raise errors.invalid_argument(
                code="REPORT_FILTER_INVALID",
                message=f"unknown report status: {filters.status}",
            )
        try:
            page = self.reports.list(filters=filters, limit=limit, offset=offset)
        except Exception:
            logger.exception("report_list_failed")
            raise errors.internal("failed to list reports") from None
        items = [self._join_evaluation(JoinedReport(report=x)) for x in page.items]
        return ReportListing(items=items, total=page.total, limit=page.limit, offset=page.offset)

    def get_report(self, *, caller_id: str | None, report_id: str) -> JoinedReport:
        self._require_caller(caller_id)
        return self._join_evaluation(JoinedReport(report=self._load_report(report_id)))

    def submit_report(self, *, caller_id: str | None, report_id: str) -> JoinedReport:
        caller = self._require_caller(caller_id)
        report = self._load_report(report_id)
        if report.author_id != caller:
            raise errors.permission_denied("only the author can submit the report")
        if STATUS_SUBMITTED not in ALLOWED_TRANSITIONS.get(report.status, set()):
            raise errors.invalid_argument(code="REPORT_ALREADY_SUBMITTED", message="report is already submitted")

        try:
            submitted = self.reports.update_status(
                report_id=report_id,
                status=STATUS_SUBMITTED,
                submitted_at=datetime.now(UTC),
                expected_status=STATUS_DRAFT,
            )
        except StaleStatusError:
            # Another submit won the compare-and-swap.
            raise errors.invalid_argument(
                code="REPORT_ALREADY_SUBMITTED",
                message="report is already submitted",
            ) from None
        except EntityNotFoundError:
            raise errors.not_found(code="REPORT_NOT_FOUND", message="report not found") from None
        except Exception:
            logger.exception("report_submit_failed report_id=%s", report_id)
            raise errors.internal("failed to save report") from None

        joined = self._join_evaluation(JoinedReport(report=submitted))
        try:
            self.delivery.enqueue(report=submitted, evaluation=joined.evaluation)
        except Exception as exc:
            logger.error("delivery_handoff_failed report_id=%s error=%s", report_id, type(exc).__name__)
            self.events.append(
                kind="delivery_handoff_failed",
                report_id=report_id,
                detail={"error": type(exc).__name__},
            )
            joined.degraded.append("delivery_handoff_failed")
        return joined

    def get_evaluation(self, *, caller_id: str | None, report_id: str) -> Evaluation:
        self._require_caller(caller_id)
        try:
            return self.evaluations.get_by_report(report_id=report_id)
        except EntityNotFoundError:
            raise errors.not_found(code="EVALUATION_NOT_FOUND", message="evaluation not found") from None

    def save_evaluation(
        self,
        *,
        caller_id: str | None,
        report_id: str,
        evaluation: EvaluationInput,
    ) -> Evaluation:
        caller = self._require_caller(caller_id)
        report = self._load_report(report_id)
        if report.author_id != caller:
            raise errors.permission_denied("only the author can evaluate the report")
        try:
            return self.evaluations.upsert_for_report(
                report_id=report.id,
                evaluation=evaluation,
                evaluator_id=caller,
            )
        except ValueError as exc:
            raise errors.invalid_argument(code="EVALUATION_INVALID", message=str(exc)) from None

    def list_departments(self, *, caller_id: str | None) -> list[Department]:
        self._require_caller(caller_id)
        return self.departments.list()

