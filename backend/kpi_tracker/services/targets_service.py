from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kpi_tracker import models
from kpi_tracker.schemas.targets import DailyDepartmentTargetUpsert, TargetFilters

logger = logging.getLogger("kpi_tracker.targets")


def _daily_department_targets(db: Session, company_id: int, department_id: int, metric_id: int):
    return db.query(models.Target).filter(
        models.Target.company_id == company_id,
        models.Target.department_id == department_id,
        models.Target.metric_id == metric_id,
        models.Target.scope == models.TargetScope.department,
        models.Target.period == models.TargetPeriod.daily,
        models.Target.deleted_at.is_(None),
        models.Target.is_active.is_(True),
    )


def _validate_department_and_metric(
    db: Session, company_id: int, department_id: int, metric_id: int
) -> str | None:
    department = (
        db.query(models.Department.id)
        .filter(
            models.Department.id == department_id,
            models.Department.company_id == company_id,
            models.Department.is_active.is_(True),
            models.Department.deleted_at.is_(None),
        )
        .first()
    )
    if department is None:
        return "Department not found."

    metric = (
        db.query(models.Metric.id)
        .filter(
            models.Metric.id == metric_id,
            models.Metric.department_id == department_id,
            models.Metric.company_id == company_id,
            models.Metric.is_active.is_(True),
            models.Metric.deleted_at.is_(None),
        )
        .first()
    )
    if metric is None:
        return "Metric not found or inactive for this department."
    return None


def upsert_daily_department_target(
    db: Session, company_id: int, payload: DailyDepartmentTargetUpsert
) -> bool:
    """Set (or, with no value, deactivate) a department's daily target for a metric.

    Fire-and-forget like the status toggles: refusals are logged and False is returned.
    """

    log_extra = {
        "company_id": company_id,
        "department_id": payload.department_id,
        "metric_id": payload.metric_id,
    }
    refusal = _validate_department_and_metric(db, company_id, payload.department_id, payload.metric_id)
    if refusal:
        logger.info("daily_target_skipped", extra={**log_extra, "reason": refusal})
        return False

    now = datetime.now(timezone.utc)
    targets = _daily_department_targets(db, company_id, payload.department_id, payload.metric_id)
    try:
        if payload.value is None:
            targets.update({"is_active": False, "updated_at": now}, synchronize_session=False)
        else:
            existing = targets.order_by(models.Target.updated_at.desc(), models.Target.id.desc()).first()
            if existing is not None:
                existing.value = payload.value
                existing.is_active = True
                existing.updated_at = now
            else:
                db.add(
                    models.Target(
                        company_id=company_id,
                        department_id=payload.department_id,
                        metric_id=payload.metric_id,
                        scope=models.TargetScope.department,
                        period=models.TargetPeriod.daily,
                        value=payload.value,
                        is_active=True,
                    )
                )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("daily_target_failed", extra={**log_extra, "error": str(exc)})
        return False

    logger.info("daily_target_saved", extra={**log_extra, "value": payload.value})
    return True


def list_targets(db: Session, company_id: int, filters: TargetFilters) -> list[models.Target]:
    q = (
        db.query(models.Target)
        .join(models.Metric, models.Metric.id == models.Target.metric_id)
        .filter(
            models.Target.company_id == company_id,
            models.Target.deleted_at.is_(None),
        )
    )
    if filters.q and filters.q.strip():
        q = q.filter(models.Metric.name.ilike(f"%{filters.q.strip()}%"))
    if filters.department_id is not None:
        q = q.filter(models.Target.department_id == filters.department_id)
    if filters.status == "active":
        q = q.filter(models.Target.is_active.is_(True))
    elif filters.status == "inactive":
        q = q.filter(models.Target.is_active.is_(False))
    return q.order_by(models.Target.id.asc()).all()
