from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from kpi_tracker import models
from kpi_tracker.api.deps import require_role
from kpi_tracker.database import get_db
from kpi_tracker.schemas import (
    DepartmentCreate,
    DepartmentFilters,
    DepartmentRead,
    DepartmentStatusUpdate,
    DepartmentUpdate,
)
from kpi_tracker.services import departments_service

router = APIRouter(prefix="/departments", tags=["departments"])


@router.get("", response_model=List[DepartmentRead])
def list_departments(
    filters: DepartmentFilters = Depends(),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.member)),
):
    return departments_service.list_departments(db, current_user.company_id, filters)


@router.post("", response_model=DepartmentRead, status_code=status.HTTP_201_CREATED)
def create_department(
    payload: DepartmentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.manager)),
):
    result = departments_service.create_department(db, current_user.company_id, payload)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
    return db.get(models.Department, result.department_id)


@router.put("/{department_id}", response_model=DepartmentRead)
def update_department(
    department_id: int,
    payload: DepartmentUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.manager)),
):
    result = departments_service.update_department(
        db, current_user.company_id, department_id, payload
    )
    if not result.ok:
        code = status.HTTP_404_NOT_FOUND if result.not_found else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=result.message)
    return db.get(models.Department, department_id)


@router.post("/{department_id}/status", status_code=status.HTTP_204_NO_CONTENT)
def toggle_department_status(
    department_id: int,
    payload: DepartmentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_role(models.RoleName.manager)),
):
    departments_service.toggle_department_status(
        db, current_user.company_id, department_id, payload.next_status
    )
    return None
