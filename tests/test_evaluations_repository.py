from __future__ import annotations

import pytest

from report_service.errors import EntityNotFoundError
from report_service.models import EvaluationInput
from report_service.repositories import (
    InMemoryEvaluationsRepository,
    InMemoryReportsRepository,
    create_evaluations_store,
    create_reports_store,
)


def _repo() -> InMemoryEvaluationsRepository:
    return InMemoryEvaluationsRepository(create_evaluations_store())


def test_upsert_creates_then_replaces_keeping_identity():
    repo = _repo()
    first = repo.upsert_for_report(
        report_id="rpt_1",
        evaluation=EvaluationInput(security_score=8, security_details="JWT"),
        evaluator_id="u1",
    )
    second = repo.upsert_for_report(
        report_id="rpt_1",
        evaluation=EvaluationInput(security_score=3, load_score=9),
        evaluator_id="u2",
    )

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at
    assert second.evaluator_id == "u2"
    assert second.security_score == 3
    assert second.security_details == ""
    assert second.load_score == 9
    assert repo.get_by_report(report_id="rpt_1").security_score == 3
    assert repo.get(evaluation_id=first.id).load_score == 9


def test_evaluations_are_one_per_report():
    repo = _repo()
    a = repo.upsert_for_report(report_id="rpt_a", evaluation=EvaluationInput(), evaluator_id="u1")
    b = repo.upsert_for_report(report_id="rpt_b", evaluation=EvaluationInput(), evaluator_id="u1")
    assert a.id != b.id
    assert repo.get_by_report(report_id="rpt_a").id == a.id


@pytest.mark.parametrize("score", [-1, 11, "7", 7.5, True])
def test_upsert_rejects_out_of_range_or_non_integer_scores(score):
    repo = _repo()
    with pytest.raises(ValueError):
        repo.upsert_for_report(
            report_id="rpt_1",
            evaluation=EvaluationInput(memory_score=score),
            evaluator_id="u1",
        )
    with pytest.raises(EntityNotFoundError):
        repo.get_by_report(report_id="rpt_1")


def test_upsert_accepts_score_bounds():
    repo = _repo()
    saved = repo.upsert_for_report(
        report_id="rpt_1",
        evaluation=EvaluationInput(security_score=0, load_score=10),
        evaluator_id="u1",
    )
    assert (saved.security_score, saved.load_score) == (0, 10)


def test_upsert_requires_report_id():
    repo = _repo()
    with pytest.raises(ValueError, match="report_id"):
        repo.upsert_for_report(report_id="", evaluation=EvaluationInput(), evaluator_id="u1")


def test_get_by_report_missing():
    with pytest.raises(EntityNotFoundError):
        _repo().get_by_report(report_id="rpt_none")


def test_evaluation_survives_report_deletion():
    reports = InMemoryReportsRepository(create_reports_store())
    evaluations = _repo()
    report = reports.create(
        title="Report",
        description="long enough description text",
        project_id="prj_1",
        author_id="u1",
        department_id="dept_1",
    )
    evaluations.upsert_for_report(report_id=report.id, evaluation=EvaluationInput(testing_score=5), evaluator_id="u1")

    reports.delete(report_id=report.id)

    assert evaluations.get_by_report(report_id=report.id).testing_score == 5


def test_delete_evaluation():
    repo = _repo()
    saved = repo.upsert_for_report(report_id="rpt_1", evaluation=EvaluationInput(), evaluator_id="u1")
    repo.delete(evaluation_id=saved.id)
    with pytest.raises(EntityNotFoundError):
        repo.get_by_report(report_id="rpt_1")
