from report_service.repositories.dead_letters import InMemoryDeadLettersRepository
from report_service.repositories.departments import InMemoryDepartmentsCatalog
from report_service.repositories.evaluations import InMemoryEvaluationsRepository, create_evaluations_store
from report_service.repositories.operator_events import InMemoryOperatorEventsRepository
from report_service.repositories.reports import (
    InMemoryReportsRepository,
    ReportFilter,
    ReportPage,
    create_reports_store,
    normalize_page,
)

__all__ = [
    "InMemoryDeadLettersRepository",
    "InMemoryDepartmentsCatalog",
    "InMemoryEvaluationsRepository",
    "InMemoryOperatorEventsRepository",
    "InMemoryReportsRepository",
    "ReportFilter",
    "ReportPage",
    "create_evaluations_store",
    "create_reports_store",
    "normalize_page",
]
