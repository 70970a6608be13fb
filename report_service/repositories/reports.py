from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from itertools import islice
from typing import Any

from report_service.entity_store import InMemoryEntityStore
from report_service.errors import StaleStatusError
from report_service.models import REPORT_STATUSES, STATUS_DRAFT, STATUS_SUBMITTED, Report

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 100


def normalize_page(limit: int | None, offset: int | None) -> tuple[int, int]:
    page_limit = DEFAULT_PAGE_LIMIT
    if limit is not None and 0 < int(limit) <= MAX_PAGE_LIMIT:
        page_limit = int(limit)
    page_offset = 0
    if offset is not None and int(offset) > 0:
        page_offset = int(offset)
    return page_limit, page_offset


@dataclass(frozen=True)
class ReportFilter:
    status: str | None = None
    author_id: str | None = None
    project_id: str | None = None

    def matches(self, report: Report) -> bool:
        if self.status is not None and report.status != self.status:
            return False
        if self.author_id is not None and report.author_id != self.author_id:
            return False
        if self.project_id is not None and report.project_id != self.project_id:
            return False
        return True


@dataclass
class ReportPage:
    items: list[Report] = field(default_factory=list)
    total: int = 0
    limit: int = DEFAULT_PAGE_LIMIT
    offset: int = 0


def create_reports_store() -> InMemoryEntityStore[Report]:
    return InMemoryEntityStore(kind="report")


class InMemoryReportsRepository:
    def __init__(self, store: InMemoryEntityStore[Report]) -> None:
        self._store = store

    def create(
        self,
        *,
        title: str,
        description: str,
        project_id: str,
        author_id: str,
        department_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> Report:
        now = datetime.now(UTC)
        report = Report(
            title=title,
            description=description,
            project_id=project_id,
            author_id=author_id,
            department_id=department_id,
            status=STATUS_DRAFT,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata) if metadata is not None else None,
        )
        return self._store.put(report, touch=False)

    def get(self, *, report_id: str) -> Report:
        return self._store.get(report_id)

    def list(
        self,
        *,
        filters: ReportFilter | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> ReportPage:
        page_limit, page_offset = normalize_page(limit, offset)
        criteria = filters or ReportFilter()
        matched = list(self._store.scan(criteria.matches))
        items = list(islice(matched, page_offset, page_offset + page_limit))
        return ReportPage(items=items, total=len(matched), limit=page_limit, offset=page_offset)

    def update_status(
        self,
        *,
        report_id: str,
        status: str,
        submitted_at: datetime | None = None,
        expected_status: str | None = None,
    ) -> Report:
        if status not in REPORT_STATUSES:
            raise ValueError(f"unknown report status: {status}")

        def _apply(report: Report) -> None:
            if expected_status is not None and report.status != expected_status:
                raise StaleStatusError(expected=expected_status, actual=report.status)
            now = datetime.now(UTC)
            report.status = status
            if status == STATUS_SUBMITTED:
                report.submitted_at = submitted_at or now
            else:
                report.submitted_at = None
            report.updated_at = now

        return self._store.update(report_id, _apply)

    def delete(self, *, report_id: str) -> Report:
        return self._store.delete(report_id)
