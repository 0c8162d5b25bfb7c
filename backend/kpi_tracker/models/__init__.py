from kpi_tracker.models.domain import (
    ROLE_HIERARCHY,
    Company,
    Department,
    DepartmentType,
    Metric,
    MetricDataType,
    MetricDirection,
    MetricFormula,
    MetricFormulaDependency,
    MetricInputMode,
    Role,
    RoleName,
    Target,
    TargetPeriod,
    TargetScope,
    User,
)
from kpi_tracker.models.formula_graph import CircularDependencyError

__all__ = [
    "ROLE_HIERARCHY",
    "CircularDependencyError",
    "Company",
    "Department",
    "DepartmentType",
    "Metric",
    "MetricDataType",
    "MetricDirection",
    "MetricFormula",
    "MetricFormulaDependency",
    "MetricInputMode",
    "Role",
    "RoleName",
    "Target",
    "TargetPeriod",
    "TargetScope",
    "User",
]
