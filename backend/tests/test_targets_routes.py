import pytest

from kpi_tracker import models


@pytest.fixture
def manager(as_role):
    as_role(models.RoleName.manager)


def _targets(db, metric_id):
    db.expire_all()
    return (
        db.query(models.Target)
        .filter(models.Target.metric_id == metric_id)
        .order_by(models.Target.id.asc())
        .all()
    )


def test_daily_target_is_created_then_updated_in_place(client, db_session, department, make_metric, manager):
    metric = make_metric("sold_items")
    payload = {"metric_id": metric.id, "department_id": department.id, "value": 5}

    assert client.put("/api/targets/daily", json=payload).status_code == 204
    assert client.put("/api/targets/daily", json={**payload, "value": 8}).status_code == 204

    rows = _targets(db_session, metric.id)
    assert [(r.value, r.is_active, r.scope, r.period) for r in rows] == [
        (8, True, models.TargetScope.department, models.TargetPeriod.daily)
    ]


def test_daily_target_without_value_deactivates(client, db_session, department, make_metric, manager):
    metric = make_metric("sold_items")
    client.put(
        "/api/targets/daily",
        json={"metric_id": metric.id, "department_id": department.id, "value": 5},
    )

    r = client.put("/api/targets/daily", json={"metric_id": metric.id, "department_id": department.id})

    assert r.status_code == 204
    assert [t.is_active for t in _targets(db_session, metric.id)] == [False]

    listed = client.get("/api/targets").json()
    assert listed == []
    listed = client.get("/api/targets", params={"status": "inactive"}).json()
    assert [t["metric_id"] for t in listed] == [metric.id]


def test_daily_target_for_inactive_metric_is_skipped(client, db_session, department, make_metric, manager):
    metric = make_metric("sold_items", is_active=False)

    r = client.put(
        "/api/targets/daily",
        json={"metric_id": metric.id, "department_id": department.id, "value": 5},
    )

    assert r.status_code == 204
    assert _targets(db_session, metric.id) == []


def test_daily_target_value_must_be_positive(client, department, make_metric, manager):
    metric = make_metric("sold_items")

    r = client.put(
        "/api/targets/daily",
        json={"metric_id": metric.id, "department_id": department.id, "value": 0},
    )
    assert r.status_code == 422


def test_list_targets_filters_by_metric_name(client, department, make_metric, manager):
    sold = make_metric("sold_items", name="Sold Items")
    quotes = make_metric("quotes", name="Quotes")
    for metric in (sold, quotes):
        client.put(
            "/api/targets/daily",
            json={"metric_id": metric.id, "department_id": department.id, "value": 3},
        )

    listed = client.get("/api/targets", params={"q": "quot"}).json()
    assert [t["metric_id"] for t in listed] == [quotes.id]
