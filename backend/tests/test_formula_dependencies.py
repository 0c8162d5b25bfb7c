from datetime import datetime, timezone

import pytest

from kpi_tracker import models
from kpi_tracker.core.db_errors import RECURSIVE_RLS_HINT, format_database_error
from kpi_tracker.models.formula_graph import reaches
from kpi_tracker.services.formula_dependencies import (
    CIRCULAR_DEPENDENCY_MESSAGE,
    SELF_REFERENCE_MESSAGE,
    close_current_formula,
    find_active_dependents,
    get_formula_code_indexes,
    replace_dependencies,
    resolve_formula_dependencies,
    upsert_current_formula,
)


def _edges(db, metric_id):
    return sorted(
        row.depends_on_metric_id
        for row in db.query(models.MetricFormulaDependency)
        .filter(models.MetricFormulaDependency.metric_id == metric_id)
        .all()
    )


def _versions(db, metric_id):
    return (
        db.query(models.MetricFormula)
        .filter(models.MetricFormula.metric_id == metric_id)
        .order_by(models.MetricFormula.version.asc())
        .all()
    )


def test_code_indexes_split_active_inactive_and_duplicates(db_session, company, make_metric):
    sold = make_metric("Sold_Items")
    make_metric("old_metric", is_active=False)
    make_metric("follow_ups_completed")
    make_metric("follow_ups_completed")
    deleted = make_metric("gone")
    deleted.deleted_at = datetime.now(timezone.utc)
    db_session.commit()

    indexes = get_formula_code_indexes(db_session, company.id)

    assert indexes.ok is True
    assert indexes.active_code_to_metric_id["sold_items"] == sold.id
    assert "old_metric" not in indexes.active_code_to_metric_id
    assert indexes.duplicate_active_codes == {"follow_ups_completed"}
    assert indexes.all_codes == {"sold_items", "old_metric", "follow_ups_completed"}


def test_code_indexes_are_scoped_to_company(db_session, company, department, make_metric):
    other = models.Company(name="Other Co")
    db_session.add(other)
    db_session.commit()
    make_metric("sold_items")

    indexes = get_formula_code_indexes(db_session, other.id)

    assert indexes.ok is True
    assert indexes.all_codes == set()


def test_resolve_maps_codes_to_active_metric_ids(db_session, company, make_metric):
    sold = make_metric("sold_items")
    quoted = make_metric("quoted_households")

    result = resolve_formula_dependencies(
        db_session, company.id, "Sold_Items / quoted_households + sold_items"
    )

    assert result.ok is True
    assert result.metric_ids == [sold.id, quoted.id]
    assert result.normalized_expression == "sold_items / quoted_households + sold_items"


def test_resolve_reports_inactive_code(db_session, company, department, make_metric):
    make_metric("x", is_active=False)
    second = models.Department(
        company_id=company.id, name="Service", type=models.DepartmentType.service
    )
    db_session.add(second)
    db_session.commit()
    make_metric("x", is_active=False, department_id=second.id)

    result = resolve_formula_dependencies(db_session, company.id, "x")

    assert result.ok is False
    assert result.message == 'Metric code "x" is inactive and cannot be used in formulas.'


def test_resolve_reports_unknown_code(db_session, company, make_metric):
    make_metric("a")

    result = resolve_formula_dependencies(db_session, company.id, "a + nope")

    assert result.ok is False
    assert result.message == 'Unknown metric code "nope" in formula.'


def test_resolve_reports_duplicate_active_code(db_session, company, make_metric):
    make_metric("follow_ups_completed")
    make_metric("follow_ups_completed")

    result = resolve_formula_dependencies(db_session, company.id, "follow_ups_completed * 100")

    assert result.ok is False
    assert result.message == (
        'Metric code "follow_ups_completed" is duplicated across active departments. '
        "Use a unique code."
    )


def test_resolve_stops_at_first_offending_code(db_session, company, make_metric):
    make_metric("dup")
    make_metric("dup")
    make_metric("inactive", is_active=False)

    result = resolve_formula_dependencies(db_session, company.id, "inactive + dup")

    assert result.message == 'Metric code "inactive" is inactive and cannot be used in formulas.'


def test_resolve_passes_through_syntax_errors(db_session, company):
    result = resolve_formula_dependencies(db_session, company.id, "a b")

    assert result.ok is False
    assert result.message == 'Missing operator before "b".'


@pytest.mark.parametrize("expression", ["close_rate * 2", "CLOSE_RATE * 2", "Close_Rate"])
def test_resolve_rejects_self_reference_regardless_of_case(db_session, company, make_metric, expression):
    metric = make_metric("close_rate")

    result = resolve_formula_dependencies(
        db_session, company.id, expression, current_metric_id=metric.id
    )

    assert result.ok is False
    assert result.message == SELF_REFERENCE_MESSAGE


def test_replace_dependencies_swaps_edge_set(db_session, make_metric):
    a = make_metric("a", input_mode=models.MetricInputMode.calculated)
    b = make_metric("b")
    c = make_metric("c")

    assert replace_dependencies(db_session, a.id, [b.id, c.id, b.id]).ok is True
    db_session.commit()
    assert _edges(db_session, a.id) == [b.id, c.id]

    assert replace_dependencies(db_session, a.id, [c.id]).ok is True
    db_session.commit()
    assert _edges(db_session, a.id) == [c.id]

    assert replace_dependencies(db_session, a.id, []).ok is True
    db_session.commit()
    assert _edges(db_session, a.id) == []


def test_cycle_is_rejected_and_no_edge_persisted(db_session, make_metric):
    a = make_metric("a", input_mode=models.MetricInputMode.calculated)
    b = make_metric("b", input_mode=models.MetricInputMode.calculated)
    c = make_metric("c", input_mode=models.MetricInputMode.calculated)
    assert replace_dependencies(db_session, a.id, [b.id]).ok is True
    assert replace_dependencies(db_session, b.id, [c.id]).ok is True
    db_session.commit()

    result = replace_dependencies(db_session, c.id, [a.id])
    db_session.rollback()

    assert result.ok is False
    assert result.message == CIRCULAR_DEPENDENCY_MESSAGE
    assert _edges(db_session, c.id) == []
    assert _edges(db_session, a.id) == [b.id]
    assert _edges(db_session, b.id) == [c.id]


def test_self_edge_is_rejected_by_storage_guard(db_session, make_metric):
    a = make_metric("a", input_mode=models.MetricInputMode.calculated)

    result = replace_dependencies(db_session, a.id, [a.id])
    db_session.rollback()

    assert result.message == CIRCULAR_DEPENDENCY_MESSAGE
    assert _edges(db_session, a.id) == []


def test_reaches_walks_transitive_edges(db_session, make_metric):
    a = make_metric("a")
    b = make_metric("b")
    c = make_metric("c")
    replace_dependencies(db_session, a.id, [b.id])
    replace_dependencies(db_session, b.id, [c.id])
    db_session.commit()

    conn = db_session.connection()
    assert reaches(conn, a.id, c.id) is True
    assert reaches(conn, c.id, a.id) is False


def test_formula_upsert_is_idempotent_for_same_text(db_session, make_metric):
    metric = make_metric("rate", input_mode=models.MetricInputMode.calculated)

    assert upsert_current_formula(db_session, metric.id, "a / b").ok is True
    db_session.commit()
    assert upsert_current_formula(db_session, metric.id, "  a / b  ").ok is True
    db_session.commit()

    versions = _versions(db_session, metric.id)
    assert [(v.version, v.is_current, v.expression) for v in versions] == [(1, True, "a / b")]


def test_formula_versions_increase_with_one_current(db_session, make_metric):
    metric = make_metric("rate", input_mode=models.MetricInputMode.calculated)

    for expression in ["a / b", "a / c", "(a + 1) / c"]:
        assert upsert_current_formula(db_session, metric.id, expression).ok is True
        db_session.commit()

    versions = _versions(db_session, metric.id)
    assert [v.version for v in versions] == [1, 2, 3]
    assert [v.is_current for v in versions] == [False, False, True]
    assert versions[0].superseded_by == versions[1].id
    assert versions[1].superseded_by == versions[2].id
    assert versions[2].superseded_by is None


def test_close_then_reopen_continues_version_sequence(db_session, make_metric):
    metric = make_metric("rate", input_mode=models.MetricInputMode.calculated)
    upsert_current_formula(db_session, metric.id, "a / b")
    db_session.commit()

    assert close_current_formula(db_session, metric.id).ok is True
    db_session.commit()
    assert all(not v.is_current for v in _versions(db_session, metric.id))

    upsert_current_formula(db_session, metric.id, "a / b")
    db_session.commit()

    versions = _versions(db_session, metric.id)
    assert [(v.version, v.is_current) for v in versions] == [(1, False), (2, True)]


def test_find_active_dependents_ignores_inactive_and_deleted(db_session, company, make_metric):
    base = make_metric("base")
    active = make_metric("active_calc", input_mode=models.MetricInputMode.calculated)
    inactive = make_metric("inactive_calc", input_mode=models.MetricInputMode.calculated)
    for dependent in (active, inactive):
        replace_dependencies(db_session, dependent.id, [base.id])
    inactive.is_active = False
    db_session.commit()

    assert find_active_dependents(db_session, company.id, base.id) == [active.id]

    active.deleted_at = datetime.now(timezone.utc)
    db_session.commit()
    assert find_active_dependents(db_session, company.id, base.id) == []


def test_format_database_error_rewrites_rls_recursion_only():
    assert format_database_error("ERROR: stack depth limit exceeded") == RECURSIVE_RLS_HINT
    assert format_database_error("duplicate key value") == "duplicate key value"
    assert format_database_error(None) == ""
