from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kpi_tracker.database import Base


class RoleName(PyEnum):
    owner = "owner"
    manager = "manager"
    member = "member"


# Total order used by require_role(): a role satisfies every role ranked at or below it.
ROLE_HIERARCHY: dict[RoleName, int] = {
    RoleName.owner: 3,
    RoleName.manager: 2,
    RoleName.member: 1,
}


class DepartmentType(PyEnum):
    sales = "sales"
    service = "service"
    life = "life"
    marketing = "marketing"
    custom = "custom"


class MetricDataType(PyEnum):
    number = "number"
    currency = "currency"
    percent = "percent"
    boolean = "boolean"
    duration = "duration"


class MetricDirection(PyEnum):
    higher_is_better = "higher_is_better"
    lower_is_better = "lower_is_better"


class MetricInputMode(PyEnum):
    manual = "manual"
    calculated = "calculated"


class TargetScope(PyEnum):
    department = "department"
    member = "member"


class TargetPeriod(PyEnum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[RoleName] = mapped_column(
        Enum(RoleName, native_enum=False), unique=True, nullable=False
    )
    description: Mapped[str | None] = mapped_column(String(255))

    users = relationship("User", back_populates="role")


class User(Base):
    """Company profile of an authenticated person."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id"), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    role = relationship("Role", back_populates="users", lazy="joined")
    company = relationship("Company")


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[DepartmentType] = mapped_column(
        Enum(DepartmentType, native_enum=False), nullable=False, default=DepartmentType.custom
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Metric(Base):
    __tablename__ = "metrics"
    # Codes are meant to be unique among a company's active metrics, but no
    # constraint enforces it; resolution detects duplicates instead.
    __table_args__ = (Index("ix_metrics_company_code", "company_id", "code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)
    department_id: Mapped[int] = mapped_column(
        ForeignKey("departments.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_type: Mapped[MetricDataType] = mapped_column(
        Enum(MetricDataType, native_enum=False), nullable=False, default=MetricDataType.number
    )
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    direction: Mapped[MetricDirection] = mapped_column(
        Enum(MetricDirection, native_enum=False),
        nullable=False,
        default=MetricDirection.higher_is_better,
    )
    input_mode: Mapped[MetricInputMode] = mapped_column(
        Enum(MetricInputMode, native_enum=False), nullable=False, default=MetricInputMode.manual
    )
    precision_scale: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    department = relationship("Department")


class MetricFormula(Base):
    """One version of a calculated metric's expression (append-only)."""

    __tablename__ = "metric_formulas"
    __table_args__ = (
        UniqueConstraint("metric_id", "version", name="uq_metric_formulas_metric_version"),
        Index(
            "uq_metric_formulas_current",
            "metric_id",
            unique=True,
            sqlite_where=text("is_current = 1"),
            postgresql_where=text("is_current"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    metric_id: Mapped[int] = mapped_column(ForeignKey("metrics.id"), nullable=False, index=True)
    expression: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    superseded_by: Mapped[int | None] = mapped_column(
        ForeignKey("metric_formulas.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class MetricFormulaDependency(Base):
    __tablename__ = "metric_formula_dependencies"
    __table_args__ = (
        UniqueConstraint(
            "metric_id",
            "depends_on_metric_id",
            name="uq_metric_formula_dependencies_pair",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    metric_id: Mapped[int] = mapped_column(ForeignKey("metrics.id"), nullable=False, index=True)
    depends_on_metric_id: Mapped[int] = mapped_column(
        ForeignKey("metrics.id"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Target(Base):
    __tablename__ = "targets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)
    department_id: Mapped[int] = mapped_column(
        ForeignKey("departments.id"), nullable=False, index=True
    )
    metric_id: Mapped[int] = mapped_column(ForeignKey("metrics.id"), nullable=False, index=True)
    scope: Mapped[TargetScope] = mapped_column(
        Enum(TargetScope, native_enum=False), nullable=False, default=TargetScope.department
    )
    period: Mapped[TargetPeriod] = mapped_column(
        Enum(TargetPeriod, native_enum=False), nullable=False, default=TargetPeriod.daily
    )
    value: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    metric = relationship("Metric")
