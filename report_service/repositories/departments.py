from __future__ import annotations

from collections.abc import Iterable

from report_service.errors import EntityNotFoundError
from report_service.models import Department

DEFAULT_DEPARTMENTS = (
    Department(id="6f1c2a4e-9d3b-4c71-8a52-1b0e7d4f3a01", name="Security"),
    Department(id="0b7e5d2c-3a14-4f8e-9c6d-2e8a1f5b7c02", name="Backend"),
    Department(id="d4a8c6e2-7f31-4b9a-8e05-3c9b2a6d1e03", name="Frontend"),
)


class InMemoryDepartmentsCatalog:
    """Read-only department directory; contents are fixed at construction."""

    def __init__(self, departments: Iterable[Department] | None = None) -> None:
        items = DEFAULT_DEPARTMENTS if departments is None else departments
        self._departments = {d.id: Department(id=d.id, name=d.name, intake_endpoint=d.intake_endpoint) for d in items}

    def get(self, *, department_id: str) -> Department:
        dept = self._departments.get(department_id)
        if dept is None:
            raise EntityNotFoundError("department", department_id)
        return Department(id=dept.id, name=dept.name, intake_endpoint=dept.intake_endpoint)

    def list(self) -> list[Department]:
        rows = [Department(id=d.id, name=d.name, intake_endpoint=d.intake_endpoint) for d in self._departments.values()]
        rows.sort(key=lambda x: x.name)
        return rows
