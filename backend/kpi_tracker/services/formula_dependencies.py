"""Formula dependency resolution and formula versioning.

These helpers run inside the caller's session and never commit: the metric
orchestration in ``metrics_service`` owns the transaction, so a failure at
any step (including the version swap) is rolled back as a whole. Expected
failures come back as result objects with a user-facing ``message``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kpi_tracker import models
from kpi_tracker.core.db_errors import format_database_error
from kpi_tracker.formulas.parser import validate_formula_expression

logger = logging.getLogger("kpi_tracker.formulas")

CIRCULAR_DEPENDENCY_MESSAGE = "Circular dependency detected between calculated metrics."
SELF_REFERENCE_MESSAGE = "A metric cannot reference itself in its own formula."

_CIRCULAR_RE = re.compile(r"circular dependency", re.IGNORECASE)


@dataclass(frozen=True)
class MutationResult:
    ok: bool
    message: str | None = None


@dataclass(frozen=True)
class FormulaCodeIndexes:
    ok: bool
    active_code_to_metric_id: dict[str, int] = field(default_factory=dict)
    duplicate_active_codes: set[str] = field(default_factory=set)
    all_codes: set[str] = field(default_factory=set)
    message: str | None = None


@dataclass(frozen=True)
class DependencyResolution:
    ok: bool
    metric_ids: list[int] = field(default_factory=list)
    normalized_expression: str = ""
    message: str | None = None


def _resolution_error(message: str) -> DependencyResolution:
    return DependencyResolution(ok=False, message=message)


def get_formula_code_indexes(db: Session, company_id: int) -> FormulaCodeIndexes:
    """Index the company's non-deleted metric codes (lowercased).

    Built fresh on every call; metrics can be renamed or toggled between
    requests.
    """

    try:
        rows = (
            db.query(models.Metric.id, models.Metric.code, models.Metric.is_active)
            .filter(
                models.Metric.company_id == company_id,
                models.Metric.deleted_at.is_(None),
            )
            .order_by(models.Metric.id.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        return FormulaCodeIndexes(ok=False, message=format_database_error(str(exc)))

    active_code_to_metric_id: dict[str, int] = {}
    duplicate_active_codes: set[str] = set()
    all_codes: set[str] = set()

    for metric_id, raw_code, is_active in rows:
        code = str(raw_code or "").lower()
        if not code:
            continue

        all_codes.add(code)
        if not is_active:
            continue

        if code in active_code_to_metric_id:
            duplicate_active_codes.add(code)
            continue

        active_code_to_metric_id[code] = int(metric_id)

    return FormulaCodeIndexes(
        ok=True,
        active_code_to_metric_id=active_code_to_metric_id,
        duplicate_active_codes=duplicate_active_codes,
        all_codes=all_codes,
    )


def resolve_formula_dependencies(
    db: Session,
    company_id: int,
    expression: str,
    current_metric_id: int | None = None,
) -> DependencyResolution:
    """Map the codes referenced by ``expression`` to active metric ids.

    Stops at the first offending code. ``current_metric_id`` is only known
    on update, which is when self-reference can be detected.
    """

    indexes = get_formula_code_indexes(db, company_id)
    if not indexes.ok:
        return _resolution_error(indexes.message or "Unable to load metric codes.")

    parsed = validate_formula_expression(expression)
    if not parsed.success:
        return _resolution_error(parsed.error or "Invalid formula.")

    metric_ids: list[int] = []
    for code in parsed.metric_codes:
        if code in indexes.duplicate_active_codes:
            return _resolution_error(
                f'Metric code "{code}" is duplicated across active departments. Use a unique code.'
            )

        dependency_id = indexes.active_code_to_metric_id.get(code)
        if dependency_id is None:
            if code in indexes.all_codes:
                return _resolution_error(
                    f'Metric code "{code}" is inactive and cannot be used in formulas.'
                )
            return _resolution_error(f'Unknown metric code "{code}" in formula.')

        if current_metric_id is not None and dependency_id == int(current_metric_id):
            return _resolution_error(SELF_REFERENCE_MESSAGE)

        metric_ids.append(dependency_id)

    return DependencyResolution(
        ok=True,
        metric_ids=metric_ids,
        normalized_expression=parsed.normalized_expression,
    )


def replace_dependencies(db: Session, metric_id: int, dependency_ids: list[int]) -> MutationResult:
    """Swap the metric's edge set for ``dependency_ids`` (delete all, insert new)."""

    try:
        (
            db.query(models.MetricFormulaDependency)
            .filter(models.MetricFormulaDependency.metric_id == metric_id)
            .delete(synchronize_session=False)
        )
        # Old edges must be gone before the cycle check walks the graph.
        db.flush()

        for dependency_id in dict.fromkeys(int(d) for d in dependency_ids):
            db.add(
                models.MetricFormulaDependency(
                    metric_id=metric_id,
                    depends_on_metric_id=dependency_id,
                )
            )
        db.flush()
    except (models.CircularDependencyError, SQLAlchemyError) as exc:
        if _CIRCULAR_RE.search(str(exc)):
            logger.info(
                "formula_dependency_cycle_rejected",
                extra={"metric_id": metric_id, "dependency_ids": list(dependency_ids)},
            )
            return MutationResult(ok=False, message=CIRCULAR_DEPENDENCY_MESSAGE)
        logger.warning(
            "formula_dependency_replace_failed",
            extra={"metric_id": metric_id, "error": str(exc)},
        )
        return MutationResult(ok=False, message=format_database_error(str(exc)))

    return MutationResult(ok=True)


def _current_formula(db: Session, metric_id: int) -> models.MetricFormula | None:
    return (
        db.query(models.MetricFormula)
        .filter(
            models.MetricFormula.metric_id == metric_id,
            models.MetricFormula.is_current.is_(True),
        )
        .one_or_none()
    )


def upsert_current_formula(db: Session, metric_id: int, expression: str) -> MutationResult:
    """Make ``expression`` the metric's current formula version.

    Re-saving identical (trimmed) text is a no-op. Otherwise the next version
    is inserted non-current, the old row is closed with ``superseded_by``,
    then the new row is activated; the partial unique index on current rows
    makes a racing writer fail instead of leaving two current versions.
    """

    trimmed = (expression or "").strip()

    try:
        current = _current_formula(db, metric_id)

        if current is None:
            latest_version = (
                db.query(models.MetricFormula.version)
                .filter(models.MetricFormula.metric_id == metric_id)
                .order_by(models.MetricFormula.version.desc())
                .limit(1)
                .scalar()
            )
            db.add(
                models.MetricFormula(
                    metric_id=metric_id,
                    expression=trimmed,
                    version=int(latest_version or 0) + 1,
                    is_current=True,
                )
            )
            db.flush()
            return MutationResult(ok=True)

        if (current.expression or "").strip() == trimmed:
            return MutationResult(ok=True)

        next_formula = models.MetricFormula(
            metric_id=metric_id,
            expression=trimmed,
            version=int(current.version) + 1,
            is_current=False,
        )
        db.add(next_formula)
        db.flush()

        current.is_current = False
        current.superseded_by = next_formula.id
        db.flush()

        next_formula.is_current = True
        db.flush()
    except SQLAlchemyError as exc:
        logger.warning(
            "formula_version_upsert_failed",
            extra={"metric_id": metric_id, "error": str(exc)},
        )
        return MutationResult(ok=False, message=format_database_error(str(exc)))

    logger.info(
        "formula_version_created",
        extra={"metric_id": metric_id, "version": next_formula.version},
    )
    return MutationResult(ok=True)


def close_current_formula(db: Session, metric_id: int) -> MutationResult:
    """Mark the current formula (if any) non-current; history is kept."""

    try:
        (
            db.query(models.MetricFormula)
            .filter(
                models.MetricFormula.metric_id == metric_id,
                models.MetricFormula.is_current.is_(True),
            )
            .update({"is_current": False}, synchronize_session=False)
        )
        db.flush()
    except SQLAlchemyError as exc:
        return MutationResult(ok=False, message=format_database_error(str(exc)))
    return MutationResult(ok=True)


def find_active_dependents(db: Session, company_id: int, metric_id: int) -> list[int]:
    """Ids of active, non-deleted metrics whose formula references ``metric_id``."""

    dependent_ids = {
        int(row[0])
        for row in db.query(models.MetricFormulaDependency.metric_id)
        .filter(models.MetricFormulaDependency.depends_on_metric_id == metric_id)
        .all()
    }
    dependent_ids.discard(int(metric_id))
    if not dependent_ids:
        return []

    rows = (
        db.query(models.Metric.id)
        .filter(
            models.Metric.company_id == company_id,
            models.Metric.id.in_(dependent_ids),
            models.Metric.is_active.is_(True),
            models.Metric.deleted_at.is_(None),
        )
        .order_by(models.Metric.id.asc())
        .all()
    )
    return [int(row[0]) for row in rows]
