import pytest

from kpi_tracker import models


@pytest.fixture
def manager(as_role):
    as_role(models.RoleName.manager)


def _create_department(client, name, type_="sales"):
    r = client.post("/api/departments", json={"name": name, "type": type_})
    assert r.status_code == 201, r.text
    return r.json()


def test_create_department_bootstraps_follow_up_metric(client, db_session, company, manager):
    body = _create_department(client, "Sales Team")

    assert body["name"] == "Sales Team"
    assert body["is_active"] is True

    metrics = (
        db_session.query(models.Metric)
        .filter(models.Metric.department_id == body["id"])
        .all()
    )
    assert [(m.code, m.name, m.data_type, m.unit) for m in metrics] == [
        ("follow_ups_completed", "Follow-Ups Completed", models.MetricDataType.boolean, "bool")
    ]
    assert metrics[0].input_mode == models.MetricInputMode.manual
    assert metrics[0].company_id == company.id


def test_bootstrapped_codes_collide_across_departments(client, manager):
    first = _create_department(client, "Sales Team")
    _create_department(client, "Service Team", "service")

    r = client.post(
        "/api/metrics",
        json={
            "department_id": first["id"],
            "name": "Follow Up Rate",
            "unit": "%",
            "input_mode": "calculated",
            "expression": "follow_ups_completed * 100",
        },
    )

    assert r.status_code == 400
    assert r.json()["detail"] == (
        'Metric code "follow_ups_completed" is duplicated across active departments. '
        "Use a unique code."
    )


def test_update_department(client, manager):
    dept = _create_department(client, "Sales Team")

    r = client.put(f"/api/departments/{dept['id']}", json={"name": " Life Team ", "type": "life"})

    assert r.status_code == 200
    assert r.json()["name"] == "Life Team"
    assert r.json()["type"] == "life"


def test_update_unknown_department_is_404(client, manager):
    r = client.put("/api/departments/999", json={"name": "Nope", "type": "custom"})

    assert r.status_code == 404
    assert r.json()["detail"] == "Department not found."


def test_department_name_is_validated(client, manager):
    r = client.post("/api/departments", json={"name": "x", "type": "sales"})
    assert r.status_code == 422


def test_toggle_and_filter_departments(client, manager):
    sales = _create_department(client, "Sales Team")
    life = _create_department(client, "Life Team", "life")

    r = client.post(f"/api/departments/{sales['id']}/status", json={"next_status": "inactive"})
    assert r.status_code == 204

    active = client.get("/api/departments", params={"status": "active"}).json()
    assert [d["id"] for d in active] == [life["id"]]

    everything = client.get("/api/departments").json()
    assert {d["id"] for d in everything} == {sales["id"], life["id"]}

    by_type = client.get("/api/departments", params={"type": "life"}).json()
    assert [d["id"] for d in by_type] == [life["id"]]

    by_name = client.get("/api/departments", params={"q": "sales"}).json()
    assert [d["id"] for d in by_name] == [sales["id"]]


def test_metric_in_inactive_department_cannot_be_created(client, manager):
    dept = _create_department(client, "Sales Team")
    client.post(f"/api/departments/{dept['id']}/status", json={"next_status": "inactive"})

    r = client.post(
        "/api/metrics",
        json={"department_id": dept["id"], "name": "Sold Items", "unit": "count"},
    )
    assert r.status_code == 404


def test_member_cannot_create_department(client, as_role):
    as_role(models.RoleName.member)

    r = client.post("/api/departments", json={"name": "Sales Team", "type": "sales"})
    assert r.status_code == 403
    assert r.json()["detail"] == "Insufficient permissions."
