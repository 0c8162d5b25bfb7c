import os
import tempfile

# Environment must be set before kpi_tracker.config is imported.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), "test_kpi_tracker.db")
os.environ["SECRET_KEY"] = "test-secret-key-1234567890"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from kpi_tracker import models
from kpi_tracker.database import Base, get_db, engine as app_engine
from kpi_tracker.main import app

TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True
)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """Fresh schema per test; test-specific dependency overrides are dropped afterwards."""
    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def company(db_session):
    row = models.Company(name="Acme Insurance")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def department(db_session, company):
    row = models.Department(
        company_id=company.id,
        name="Sales",
        type=models.DepartmentType.sales,
        is_active=True,
    )
    db_session.add(row)
    db_session.commit()
    return row


def stub_user(role_name: models.RoleName, company_id: int):
    """Create a stub user with the given role for dependency overrides."""

    class StubUser:
        def __init__(self):
            self.id = 1
            self.company_id = company_id
            self.email = f"{role_name.value}@test.com"
            self.active = True
            self.role = type("Role", (), {"name": role_name})()

    return StubUser()


@pytest.fixture
def as_role(company):
    """Authenticate subsequent requests as a user of ``company`` with the given role."""
    from kpi_tracker.api import deps

    company_id = company.id

    def _apply(role_name: models.RoleName):
        app.dependency_overrides[deps.get_current_user] = lambda: stub_user(role_name, company_id)

    return _apply


def add_metric(
    db,
    company_id: int,
    department_id: int,
    code: str,
    *,
    name: str | None = None,
    is_active: bool = True,
    input_mode: models.MetricInputMode = models.MetricInputMode.manual,
) -> models.Metric:
    row = models.Metric(
        company_id=company_id,
        department_id=department_id,
        name=name or code.replace("_", " ").title(),
        code=code,
        data_type=models.MetricDataType.number,
        unit="count",
        direction=models.MetricDirection.higher_is_better,
        input_mode=input_mode,
        precision_scale=0,
        is_active=is_active,
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def make_metric(db_session, company, department):
    def _make(code: str, **kwargs) -> models.Metric:
        department_id = kwargs.pop("department_id", department.id)
        return add_metric(db_session, company.id, department_id, code, **kwargs)

    return _make
