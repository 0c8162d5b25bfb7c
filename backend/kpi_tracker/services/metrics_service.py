from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kpi_tracker import models
from kpi_tracker.core.db_errors import format_database_error
from kpi_tracker.formulas.parser import FormulaValidationResult, validate_formula_expression
from kpi_tracker.schemas.metrics import MetricCreate, MetricFilters, MetricRead, MetricUpdate
from kpi_tracker.services.formula_dependencies import (
    close_current_formula,
    find_active_dependents,
    replace_dependencies,
    resolve_formula_dependencies,
    upsert_current_formula,
)

logger = logging.getLogger("kpi_tracker.metrics")


@dataclass(frozen=True)
class MetricActionResult:
    ok: bool
    message: str
    metric_id: int | None = None
    not_found: bool = False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _error(db: Session, message: str, *, not_found: bool = False) -> MetricActionResult:
    db.rollback()
    return MetricActionResult(ok=False, message=message, not_found=not_found)


def to_metric_code(name: str) -> str:
    """Derive a formula code from a display name ("Sold Items" -> "sold_items")."""

    base = re.sub(r"[^a-z0-9]+", "_", (name or "").lower()).strip("_")
    if base:
        return base
    return f"metric_{int(time.time() * 1000)}"


def _validate_department(db: Session, company_id: int, department_id: int) -> bool:
    department = (
        db.query(models.Department)
        .filter(
            models.Department.id == department_id,
            models.Department.company_id == company_id,
            models.Department.is_active.is_(True),
            models.Department.deleted_at.is_(None),
        )
        .first()
    )
    return department is not None


def _get_live_metric(db: Session, company_id: int, metric_id: int) -> models.Metric | None:
    return (
        db.query(models.Metric)
        .filter(
            models.Metric.id == metric_id,
            models.Metric.company_id == company_id,
            models.Metric.deleted_at.is_(None),
        )
        .first()
    )


def _apply_fields(metric: models.Metric, payload: MetricCreate | MetricUpdate) -> None:
    metric.department_id = payload.department_id
    metric.name = payload.name.strip()
    metric.code = ((payload.code or "").strip() or to_metric_code(payload.name)).lower()
    metric.description = (payload.description or "").strip() or None
    metric.data_type = payload.data_type
    metric.unit = payload.unit.strip()
    metric.direction = payload.direction
    metric.input_mode = payload.input_mode
    metric.precision_scale = payload.precision_scale


def create_metric(db: Session, company_id: int, payload: MetricCreate) -> MetricActionResult:
    """Create a metric and, for calculated ones, formula version 1 plus its edges."""

    if not _validate_department(db, company_id, payload.department_id):
        return _error(db, "Department not found.", not_found=True)

    calculated = payload.input_mode == models.MetricInputMode.calculated
    dependency_ids: list[int] = []
    normalized_expression = ""
    if calculated:
        resolution = resolve_formula_dependencies(db, company_id, payload.expression or "")
        if not resolution.ok:
            return _error(db, resolution.message or "Invalid formula.")
        dependency_ids = resolution.metric_ids
        normalized_expression = resolution.normalized_expression

    metric = models.Metric(company_id=company_id, is_active=True)
    _apply_fields(metric, payload)

    try:
        db.add(metric)
        db.flush()
    except SQLAlchemyError as exc:
        return _error(db, format_database_error(str(exc) or "Failed to create metric."))

    if calculated:
        formula_result = upsert_current_formula(db, metric.id, normalized_expression)
        if not formula_result.ok:
            return _error(db, formula_result.message or "Unable to save formula.")

        dependency_result = replace_dependencies(db, metric.id, dependency_ids)
        if not dependency_result.ok:
            return _error(db, dependency_result.message or "Unable to save dependencies.")

    try:
        db.commit()
    except SQLAlchemyError as exc:
        return _error(db, format_database_error(str(exc)))

    logger.info(
        "metric_created",
        extra={"company_id": company_id, "metric_id": metric.id, "input_mode": metric.input_mode.value},
    )
    return MetricActionResult(
        ok=True,
        metric_id=metric.id,
        message="Calculated metric and formula created." if calculated else "Manual metric created.",
    )


def update_metric(
    db: Session, company_id: int, metric_id: int, payload: MetricUpdate
) -> MetricActionResult:
    """Update a metric; calculated metrics get a new formula version when the text changed.

    Switching to manual closes the current formula and disconnects the metric
    from the dependency graph without touching formula history.
    """

    metric = _get_live_metric(db, company_id, metric_id)
    if metric is None:
        return _error(db, "Metric not found.", not_found=True)

    if not _validate_department(db, company_id, payload.department_id):
        return _error(db, "Department not found.", not_found=True)

    calculated = payload.input_mode == models.MetricInputMode.calculated
    dependency_ids: list[int] = []
    normalized_expression = ""
    if calculated:
        resolution = resolve_formula_dependencies(
            db, company_id, payload.expression or "", current_metric_id=metric.id
        )
        if not resolution.ok:
            return _error(db, resolution.message or "Invalid formula.")
        dependency_ids = resolution.metric_ids
        normalized_expression = resolution.normalized_expression

    try:
        _apply_fields(metric, payload)
        metric.updated_at = _utc_now()
        db.flush()
    except SQLAlchemyError as exc:
        return _error(db, format_database_error(str(exc)))

    if calculated:
        formula_result = upsert_current_formula(db, metric.id, normalized_expression)
        if not formula_result.ok:
            return _error(db, formula_result.message or "Unable to save formula.")
    else:
        close_result = close_current_formula(db, metric.id)
        if not close_result.ok:
            return _error(db, close_result.message or "Unable to close formula.")

    dependency_result = replace_dependencies(db, metric.id, dependency_ids)
    if not dependency_result.ok:
        return _error(db, dependency_result.message or "Unable to save dependencies.")

    try:
        db.commit()
    except SQLAlchemyError as exc:
        return _error(db, format_database_error(str(exc)))

    logger.info("metric_updated", extra={"company_id": company_id, "metric_id": metric_id})
    return MetricActionResult(ok=True, metric_id=metric_id, message="Metric updated.")


def toggle_metric_status(db: Session, company_id: int, metric_id: int, next_status: str) -> bool:
    """Activate/deactivate a metric. Fire-and-forget: failures are logged, not raised."""

    metric = _get_live_metric(db, company_id, metric_id)
    if metric is None:
        logger.info(
            "metric_status_skipped",
            extra={"company_id": company_id, "metric_id": metric_id, "reason": "not_found"},
        )
        return False

    next_active = next_status == "active"
    if bool(metric.is_active) == next_active:
        return False

    try:
        metric.is_active = next_active
        metric.deleted_at = None
        metric.updated_at = _utc_now()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "metric_status_failed",
            extra={"company_id": company_id, "metric_id": metric_id, "error": str(exc)},
        )
        return False

    logger.info(
        "metric_status_changed",
        extra={"company_id": company_id, "metric_id": metric_id, "is_active": next_active},
    )
    return True


def delete_metric(db: Session, company_id: int, metric_id: int) -> bool:
    """Soft-delete a metric unless an active metric still depends on it.

    Fire-and-forget: a refusal returns False and is logged. A successful
    delete also deactivates the metric's targets.
    """

    metric = _get_live_metric(db, company_id, metric_id)
    if metric is None:
        logger.info(
            "metric_delete_skipped",
            extra={"company_id": company_id, "metric_id": metric_id, "reason": "not_found"},
        )
        return False

    try:
        dependents = find_active_dependents(db, company_id, metric_id)
        if dependents:
            logger.info(
                "metric_delete_refused",
                extra={
                    "company_id": company_id,
                    "metric_id": metric_id,
                    "active_dependents": dependents,
                },
            )
            return False

        now = _utc_now()
        (
            db.query(models.Target)
            .filter(
                models.Target.company_id == company_id,
                models.Target.metric_id == metric_id,
                models.Target.deleted_at.is_(None),
            )
            .update({"is_active": False, "updated_at": now}, synchronize_session=False)
        )
        metric.is_active = False
        metric.deleted_at = now
        metric.updated_at = now
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "metric_delete_failed",
            extra={"company_id": company_id, "metric_id": metric_id, "error": str(exc)},
        )
        return False

    logger.info("metric_deleted", extra={"company_id": company_id, "metric_id": metric_id})
    return True


def list_metrics(db: Session, company_id: int, filters: MetricFilters) -> list[MetricRead]:
    q = db.query(models.Metric).filter(
        models.Metric.company_id == company_id,
        models.Metric.deleted_at.is_(None),
    )

    if filters.q and filters.q.strip():
        pattern = f"%{filters.q.strip()}%"
        q = q.filter(or_(models.Metric.name.ilike(pattern), models.Metric.code.ilike(pattern)))
    if filters.department_id is not None:
        q = q.filter(models.Metric.department_id == filters.department_id)
    if filters.mode != "all":
        q = q.filter(models.Metric.input_mode == models.MetricInputMode(filters.mode))
    if filters.status == "active":
        q = q.filter(models.Metric.is_active.is_(True))
    elif filters.status == "inactive":
        q = q.filter(models.Metric.is_active.is_(False))

    metrics = q.order_by(models.Metric.name.asc(), models.Metric.id.asc()).all()
    if not metrics:
        return []

    metric_ids = [m.id for m in metrics]
    current_formulas = {
        f.metric_id: f
        for f in db.query(models.MetricFormula)
        .filter(
            models.MetricFormula.metric_id.in_(metric_ids),
            models.MetricFormula.is_current.is_(True),
        )
        .all()
    }
    dependencies: dict[int, list[int]] = {}
    for edge in (
        db.query(models.MetricFormulaDependency)
        .filter(models.MetricFormulaDependency.metric_id.in_(metric_ids))
        .order_by(models.MetricFormulaDependency.id.asc())
        .all()
    ):
        dependencies.setdefault(edge.metric_id, []).append(edge.depends_on_metric_id)

    out: list[MetricRead] = []
    for m in metrics:
        formula = current_formulas.get(m.id)
        out.append(
            MetricRead(
                id=m.id,
                company_id=m.company_id,
                department_id=m.department_id,
                name=m.name,
                code=m.code,
                description=m.description,
                data_type=m.data_type,
                unit=m.unit,
                direction=m.direction,
                input_mode=m.input_mode,
                precision_scale=m.precision_scale,
                is_active=m.is_active,
                formula_expression=formula.expression if formula else None,
                formula_version=formula.version if formula else None,
                depends_on_metric_ids=dependencies.get(m.id, []),
                created_at=m.created_at,
                updated_at=m.updated_at,
            )
        )
    return out


def list_formula_versions(
    db: Session, company_id: int, metric_id: int
) -> list[models.MetricFormula] | None:
    """Full formula history of a metric, oldest first; None when the metric is unknown."""

    metric = (
        db.query(models.Metric.id)
        .filter(models.Metric.id == metric_id, models.Metric.company_id == company_id)
        .first()
    )
    if metric is None:
        return None

    return (
        db.query(models.MetricFormula)
        .filter(models.MetricFormula.metric_id == metric_id)
        .order_by(models.MetricFormula.version.asc())
        .all()
    )


def preview_formula(
    db: Session, company_id: int, expression: str, metric_id: int | None = None
) -> FormulaValidationResult:
    """Validate a formula draft against the company's active codes (formula builder)."""

    rows = (
        db.query(models.Metric.id, models.Metric.code)
        .filter(
            models.Metric.company_id == company_id,
            models.Metric.is_active.is_(True),
            models.Metric.deleted_at.is_(None),
        )
        .all()
    )
    known_codes = {str(code).lower() for _, code in rows if code}

    disallow: list[str] = []
    if metric_id is not None:
        own = _get_live_metric(db, company_id, metric_id)
        if own is not None and own.code:
            disallow.append(own.code.lower())

    return validate_formula_expression(
        expression,
        known_metric_codes=known_codes,
        disallow_metric_codes=disallow,
    )
