from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kpi_tracker import models
from kpi_tracker.core.db_errors import format_database_error
from kpi_tracker.schemas.departments import DepartmentCreate, DepartmentFilters, DepartmentUpdate

logger = logging.getLogger("kpi_tracker.departments")

# Every new department starts with this manual metric, so the same code is
# active in several departments of one company.
DEFAULT_METRIC = {
    "name": "Follow-Ups Completed",
    "code": "follow_ups_completed",
    "description": "Daily follow-up completion flag",
    "data_type": models.MetricDataType.boolean,
    "unit": "bool",
    "direction": models.MetricDirection.higher_is_better,
    "input_mode": models.MetricInputMode.manual,
    "precision_scale": 0,
}


@dataclass(frozen=True)
class DepartmentActionResult:
    ok: bool
    message: str
    department_id: int | None = None
    not_found: bool = False


def create_department(db: Session, company_id: int, payload: DepartmentCreate) -> DepartmentActionResult:
    try:
        department = models.Department(
            company_id=company_id,
            name=payload.name.strip(),
            type=payload.type,
            is_active=True,
        )
        db.add(department)
        db.flush()

        db.add(
            models.Metric(
                company_id=company_id,
                department_id=department.id,
                is_active=True,
                **DEFAULT_METRIC,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        return DepartmentActionResult(
            ok=False, message=format_database_error(str(exc) or "Failed to create department.")
        )

    logger.info("department_created", extra={"company_id": company_id, "department_id": department.id})
    return DepartmentActionResult(ok=True, message="Department created.", department_id=department.id)


def _get_department(db: Session, company_id: int, department_id: int) -> models.Department | None:
    return (
        db.query(models.Department)
        .filter(
            models.Department.id == department_id,
            models.Department.company_id == company_id,
        )
        .first()
    )


def update_department(
    db: Session, company_id: int, department_id: int, payload: DepartmentUpdate
) -> DepartmentActionResult:
    department = _get_department(db, company_id, department_id)
    if department is None:
        return DepartmentActionResult(ok=False, message="Department not found.", not_found=True)

    try:
        department.name = payload.name.strip()
        department.type = payload.type
        department.updated_at = datetime.now(timezone.utc)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        return DepartmentActionResult(ok=False, message=format_database_error(str(exc)))

    return DepartmentActionResult(ok=True, message="Department updated.", department_id=department_id)


def toggle_department_status(db: Session, company_id: int, department_id: int, next_status: str) -> bool:
    department = _get_department(db, company_id, department_id)
    if department is None:
        logger.info(
            "department_status_skipped",
            extra={"company_id": company_id, "department_id": department_id, "reason": "not_found"},
        )
        return False

    try:
        department.is_active = next_status == "active"
        department.deleted_at = None
        department.updated_at = datetime.now(timezone.utc)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "department_status_failed",
            extra={"company_id": company_id, "department_id": department_id, "error": str(exc)},
        )
        return False
    return True


def list_departments(db: Session, company_id: int, filters: DepartmentFilters) -> list[models.Department]:
    q = db.query(models.Department).filter(
        models.Department.company_id == company_id,
        models.Department.deleted_at.is_(None),
    )
    if filters.q and filters.q.strip():
        q = q.filter(models.Department.name.ilike(f"%{filters.q.strip()}%"))
    if filters.status == "active":
        q = q.filter(models.Department.is_active.is_(True))
    elif filters.status == "inactive":
        q = q.filter(models.Department.is_active.is_(False))
    if filters.type is not None:
        q = q.filter(models.Department.type == filters.type)
    return q.order_by(models.Department.name.asc()).all()
