from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from kpi_tracker import models
from kpi_tracker.api.deps import require_role
from kpi_tracker.database import get_db
from kpi_tracker.schemas import DailyDepartmentTargetUpsert, TargetFilters, TargetRead
from kpi_tracker.services import targets_service

router = APIRouter(prefix="/targets", tags=["targets"])


@router.get("", response_model=List[TargetRead])
def list_targets(
    filters: TargetFilters = Depends(),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.member)),
):
    return targets_service.list_targets(db, current_user.company_id, filters)


@router.put("/daily", status_code=status.HTTP_204_NO_CONTENT)
def upsert_daily_department_target(
    payload: DailyDepartmentTargetUpsert,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.manager)),
):
    targets_service.upsert_daily_department_target(db, current_user.company_id, payload)
    return None
