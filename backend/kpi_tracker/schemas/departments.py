from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from kpi_tracker import models


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=2)
    type: models.DepartmentType


class DepartmentUpdate(BaseModel):
    name: str = Field(..., min_length=2)
    type: models.DepartmentType


class DepartmentStatusUpdate(BaseModel):
    next_status: Literal["active", "inactive"]


class DepartmentFilters(BaseModel):
    q: Optional[str] = None
    status: Literal["all", "active", "inactive"] = "all"
    type: Optional[models.DepartmentType] = None


class DepartmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    name: str
    type: models.DepartmentType
    is_active: bool
    created_at: Optional[datetime] = None
