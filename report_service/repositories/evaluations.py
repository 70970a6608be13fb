from __future__ import annotations

from datetime import UTC, datetime

from report_service.entity_store import InMemoryEntityStore
from report_service.models import Evaluation, EvaluationInput


def create_evaluations_store() -> InMemoryEntityStore[Evaluation]:
    return InMemoryEntityStore(kind="evaluation", secondary_key=lambda x: x.report_id)


class InMemoryEvaluationsRepository:
    """One evaluation per report, indexed by report id."""

    def __init__(self, store: InMemoryEntityStore[Evaluation]) -> None:
        self._store = store

    def upsert_for_report(
        self,
        *,
        report_id: str,
        evaluation: EvaluationInput,
        evaluator_id: str,
    ) -> Evaluation:
        if not report_id:
            raise ValueError("report_id is required")
        evaluation.validate()

        def _build(existing: Evaluation | None) -> Evaluation:
            now = datetime.now(UTC)
            if existing is None:
                item = Evaluation(
                    report_id=report_id,
                    evaluator_id=evaluator_id,
                    created_at=now,
                    updated_at=now,
                )
            else:
                item = existing
                item.evaluator_id = evaluator_id
                item.updated_at = now
            item.apply(evaluation)
            return item

        return self._store.upsert_by_secondary_key(report_id, _build)

    def get_by_report(self, *, report_id: str) -> Evaluation:
        return self._store.get_by_secondary_key(report_id)

    def get(self, *, evaluation_id: str) -> Evaluation:
        return self._store.get(evaluation_id)

    def delete(self, *, evaluation_id: str) -> Evaluation:
        return self._store.delete(evaluation_id)
