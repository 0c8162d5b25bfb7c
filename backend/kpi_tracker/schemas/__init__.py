from kpi_tracker.schemas.departments import (
    DepartmentCreate,
    DepartmentFilters,
    DepartmentRead,
    DepartmentStatusUpdate,
    DepartmentUpdate,
)
from kpi_tracker.schemas.metrics import (
    FormulaTokenRead,
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
from kpi_tracker.schemas.targets import DailyDepartmentTargetUpsert, TargetFilters, TargetRead

__all__ = [
    "DailyDepartmentTargetUpsert",
    "DepartmentCreate",
    "DepartmentFilters",
    "DepartmentRead",
    "DepartmentStatusUpdate",
    "DepartmentUpdate",
    "FormulaTokenRead",
    "FormulaValidateRequest",
    "FormulaValidateResponse",
    "FormulaVersionRead",
    "MetricActionRead",
    "MetricCreate",
    "MetricFilters",
    "MetricRead",
    "MetricStatusUpdate",
    "MetricUpdate",
    "TargetFilters",
    "TargetRead",
]
