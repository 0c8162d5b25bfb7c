from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from kpi_tracker import models
from kpi_tracker.api.deps import require_role
from kpi_tracker.database import get_db
from kpi_tracker.schemas import (
    FormulaValidateRequest,
    FormulaValidateResponse,
    FormulaVersionRead,
    MetricActionRead,
    MetricCreate,
    MetricFilters,
    MetricRead,
    MetricStatusUpdate,
    MetricUpdate,
)
from kpi_tracker.services import metrics_service
from kpi_tracker.services.metrics_service import MetricActionResult

router = APIRouter(prefix="/metrics", tags=["metrics"])


def _raise_for_result(result: MetricActionResult) -> None:
    if result.ok:
        return
    code = status.HTTP_404_NOT_FOUND if result.not_found else status.HTTP_400_BAD_REQUEST
    raise HTTPException(status_code=code, detail=result.message)


@router.get("", response_model=List[MetricRead])
def list_metrics(
    filters: MetricFilters = Depends(),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.member)),
):
    return metrics_service.list_metrics(db, current_user.company_id, filters)


@router.post("", response_model=MetricActionRead, status_code=status.HTTP_201_CREATED)
def create_metric(
    payload: MetricCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.manager)),
):
    result = metrics_service.create_metric(db, current_user.company_id, payload)
    _raise_for_result(result)
    return MetricActionRead(metric_id=result.metric_id, message=result.message)


@router.post("/formula/validate", response_model=FormulaValidateResponse)
def validate_formula(
    payload: FormulaValidateRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.member)),
):
    result = metrics_service.preview_formula(
        db, current_user.company_id, payload.expression, metric_id=payload.metric_id
    )
    return FormulaValidateResponse(
        success=result.success,
        tokens=[{"type": t.type, "value": t.value} for t in result.tokens],
        metric_codes=list(result.metric_codes),
        normalized_expression=result.normalized_expression,
        error=result.error,
    )


@router.put("/{metric_id}", response_model=MetricActionRead)
def update_metric(
    metric_id: int,
    payload: MetricUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.manager)),
):
    result = metrics_service.update_metric(db, current_user.company_id, metric_id, payload)
    _raise_for_result(result)
    return MetricActionRead(metric_id=metric_id, message=result.message)


@router.post("/{metric_id}/status", status_code=status.HTTP_204_NO_CONTENT)
def toggle_metric_status(
    metric_id: int,
    payload: MetricStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.manager)),
):
    metrics_service.toggle_metric_status(
        db, current_user.company_id, metric_id, payload.next_status
    )
    return None


@router.delete("/{metric_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_metric(
    metric_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.manager)),
):
    metrics_service.delete_metric(db, current_user.company_id, metric_id)
    return None


@router.get("/{metric_id}/formulas", response_model=List[FormulaVersionRead])
def list_formula_versions(
    metric_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.member)),
):
    versions = metrics_service.list_formula_versions(db, current_user.company_id, metric_id)
    if versions is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metric not found.")
    return versions
