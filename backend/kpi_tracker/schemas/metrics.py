from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from kpi_tracker import models


def _blank_to_none(value):
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


class MetricBase(BaseModel):
    department_id: int
    name: str = Field(..., min_length=2)
    code: Optional[str] = None
    description: Optional[str] = None
    data_type: models.MetricDataType = models.MetricDataType.number
    unit: str = Field(..., min_length=1)
    direction: models.MetricDirection = models.MetricDirection.higher_is_better
    input_mode: models.MetricInputMode = models.MetricInputMode.manual
    precision_scale: int = Field(default=0, ge=0, le=6)
    expression: Optional[str] = None

    @field_validator("code", "description", "expression", mode="before")
    @classmethod
    def _optional_text(cls, value):
        return _blank_to_none(value)

    @model_validator(mode="after")
    def _calculated_requires_expression(self):
        if self.input_mode == models.MetricInputMode.calculated and not (
            self.expression or ""
        ).strip():
            raise ValueError("Formula expression is required for calculated metrics.")
        return self


class MetricCreate(MetricBase):
    pass


class MetricUpdate(MetricBase):
    pass


class MetricStatusUpdate(BaseModel):
    next_status: Literal["active", "inactive"]


class MetricFilters(BaseModel):
    q: Optional[str] = None
    department_id: Optional[int] = None
    mode: Literal["all", "manual", "calculated"] = "all"
    status: Literal["all", "active", "inactive"] = "active"


class MetricRead(BaseModel):
    id: int
    company_id: int
    department_id: int
    name: str
    code: str
    description: Optional[str] = None
    data_type: models.MetricDataType
    unit: str
    direction: models.MetricDirection
    input_mode: models.MetricInputMode
    precision_scale: int
    is_active: bool
    # Current formula for calculated metrics; None for manual ones.
    formula_expression: Optional[str] = None
    formula_version: Optional[int] = None
    depends_on_metric_ids: list[int] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MetricActionRead(BaseModel):
    metric_id: int
    message: str


class FormulaVersionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    metric_id: int
    expression: str
    version: int
    is_current: bool
    superseded_by: Optional[int] = None
    created_at: Optional[datetime] = None


class FormulaTokenRead(BaseModel):
    type: Literal["metric", "operator", "paren", "number"]
    value: str


class FormulaValidateRequest(BaseModel):
    expression: str = ""
    # When editing, the metric's own code may not appear in its formula.
    metric_id: Optional[int] = None


class FormulaValidateResponse(BaseModel):
    success: bool
    tokens: list[FormulaTokenRead] = Field(default_factory=list)
    metric_codes: list[str] = Field(default_factory=list)
    normalized_expression: str = ""
    error: Optional[str] = None
