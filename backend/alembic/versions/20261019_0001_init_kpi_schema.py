"""init kpi schema

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001_init_kpi_schema"
down_revision = None
branch_labels = None
depends_on = None


_CYCLE_GUARD_FUNCTION = """
CREATE OR REPLACE FUNCTION prevent_metric_formula_cycles() RETURNS trigger AS $$
BEGIN
    IF NEW.metric_id = NEW.depends_on_metric_id THEN
        RAISE EXCEPTION 'circular dependency detected: metric % -> metric %',
            NEW.metric_id, NEW.depends_on_metric_id;
    END IF;

    IF EXISTS (
        WITH RECURSIVE reachable(metric_id) AS (
            SELECT d.depends_on_metric_id
            FROM metric_formula_dependencies d
            WHERE d.metric_id = NEW.depends_on_metric_id
            UNION
            SELECT d.depends_on_metric_id
            FROM metric_formula_dependencies d
            JOIN reachable r ON d.metric_id = r.metric_id
        )
        SELECT 1 FROM reachable WHERE metric_id = NEW.metric_id
    ) THEN
        RAISE EXCEPTION 'circular dependency detected: metric % -> metric %',
            NEW.metric_id, NEW.depends_on_metric_id;
    END IF;

    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""


def _enum(*values: str, name: str) -> sa.Enum:
    # Stored as VARCHAR so new members never need ALTER TYPE.
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=False)


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    true_default = sa.text("true") if is_postgres else sa.text("1")
    false_default = sa.text("false") if is_postgres else sa.text("0")

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", _enum("owner", "manager", "member", name="rolename"), nullable=False, unique=True),
        sa.Column("description", sa.String(length=255)),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=true_default),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_company_id", "users", ["company_id"])
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "type",
            _enum("sales", "service", "life", "marketing", "custom", name="departmenttype"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=true_default),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_departments_company_id", "departments", ["company_id"])

    op.create_table(
        "metrics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "data_type",
            _enum("number", "currency", "percent", "boolean", "duration", name="metricdatatype"),
            nullable=False,
        ),
        sa.Column("unit", sa.String(length=32), nullable=False),
        sa.Column(
            "direction",
            _enum("higher_is_better", "lower_is_better", name="metricdirection"),
            nullable=False,
        ),
        sa.Column(
            "input_mode",
            _enum("manual", "calculated", name="metricinputmode"),
            nullable=False,
        ),
        sa.Column("precision_scale", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=true_default),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_metrics_company_id", "metrics", ["company_id"])
    op.create_index("ix_metrics_department_id", "metrics", ["department_id"])
    op.create_index("ix_metrics_is_active", "metrics", ["is_active"])
    op.create_index("ix_metrics_company_code", "metrics", ["company_id", "code"])

    op.create_table(
        "metric_formulas",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("metric_id", sa.Integer(), sa.ForeignKey("metrics.id"), nullable=False),
        sa.Column("expression", sa.Text(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=false_default),
        sa.Column(
            "superseded_by",
            sa.Integer(),
            sa.ForeignKey("metric_formulas.id"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("metric_id", "version", name="uq_metric_formulas_metric_version"),
    )
    op.create_index("ix_metric_formulas_metric_id", "metric_formulas", ["metric_id"])
    op.create_index(
        "uq_metric_formulas_current",
        "metric_formulas",
        ["metric_id"],
        unique=True,
        postgresql_where=sa.text("is_current"),
        sqlite_where=sa.text("is_current = 1"),
    )

    op.create_table(
        "metric_formula_dependencies",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("metric_id", sa.Integer(), sa.ForeignKey("metrics.id"), nullable=False),
        sa.Column(
            "depends_on_metric_id", sa.Integer(), sa.ForeignKey("metrics.id"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "metric_id",
            "depends_on_metric_id",
            name="uq_metric_formula_dependencies_pair",
        ),
    )
    op.create_index(
        "ix_metric_formula_dependencies_metric_id",
        "metric_formula_dependencies",
        ["metric_id"],
    )
    op.create_index(
        "ix_metric_formula_dependencies_depends_on_metric_id",
        "metric_formula_dependencies",
        ["depends_on_metric_id"],
    )

    op.create_table(
        "targets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("metric_id", sa.Integer(), sa.ForeignKey("metrics.id"), nullable=False),
        sa.Column("scope", _enum("department", "member", name="targetscope"), nullable=False),
        sa.Column(
            "period",
            _enum("daily", "weekly", "monthly", "quarterly", "yearly", name="targetperiod"),
            nullable=False,
        ),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=true_default),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_targets_company_id", "targets", ["company_id"])
    op.create_index("ix_targets_department_id", "targets", ["department_id"])
    op.create_index("ix_targets_metric_id", "targets", ["metric_id"])

    roles_table = sa.table(
        "roles",
        sa.column("id", sa.Integer()),
        sa.column("name", sa.String()),
        sa.column("description", sa.String()),
    )
    op.bulk_insert(
        roles_table,
        [
            {"id": 1, "name": "owner", "description": "Company owner"},
            {"id": 2, "name": "manager", "description": "Department manager"},
            {"id": 3, "name": "member", "description": "Team member"},
        ],
    )

    # SQLite relies on the ORM before_insert guard instead.
    if is_postgres:
        op.execute(_CYCLE_GUARD_FUNCTION)
        op.execute(
            """
            CREATE TRIGGER metric_formula_dependencies_no_cycles
            BEFORE INSERT OR UPDATE ON metric_formula_dependencies
            FOR EACH ROW EXECUTE FUNCTION prevent_metric_formula_cycles();
            """
        )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute(
            "DROP TRIGGER IF EXISTS metric_formula_dependencies_no_cycles "
            "ON metric_formula_dependencies"
        )
        op.execute("DROP FUNCTION IF EXISTS prevent_metric_formula_cycles()")

    op.drop_table("targets")
    op.drop_table("metric_formula_dependencies")
    op.drop_index("uq_metric_formulas_current", table_name="metric_formulas")
    op.drop_table("metric_formulas")
    op.drop_table("metrics")
    op.drop_table("departments")
    op.drop_table("users")
    op.drop_table("roles")
    op.drop_table("companies")
