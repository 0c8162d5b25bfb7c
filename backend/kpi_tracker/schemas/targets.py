from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from kpi_tracker import models


class DailyDepartmentTargetUpsert(BaseModel):
    metric_id: int
    department_id: int
    # Omitted value deactivates the daily target.
    value: Optional[float] = Field(default=None, gt=0)


class TargetFilters(BaseModel):
    q: Optional[str] = None
    department_id: Optional[int] = None
    status: Literal["all", "active", "inactive"] = "active"


class TargetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    department_id: int
    metric_id: int
    scope: models.TargetScope
    period: models.TargetPeriod
    value: float
    is_active: bool
    created_at: Optional[datetime] = None
