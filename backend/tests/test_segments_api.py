from datetime import date, timedelta

import pytest

from segment_engine.services.recompute_task_manager import TaskStatus, task_manager
from segment_engine.services.segment_repository import SegmentRepository

ENGAGED_CRITERIA = {
    "ltv_min": 1000,
    "health_score_min": 70,
    "churn_risk_max": 0.5,
    "days_since_created_max": 365,
}


@pytest.fixture
async def customers(add_customer):
    # все 4 границы -> 1.0; 3 из 4 -> 0.9 (штраф health); 2 из 4 -> не подходит
    await add_customer("cus_a", ltv=2000, health=90, churn=0.2)
    await add_customer("cus_b", ltv=1500, health=60, churn=0.2)
    await add_customer("cus_c", ltv=500, health=50, churn=0.2)


async def create_system_segment(session_factory, name="High Value"):
    async with session_factory() as session:
        return await SegmentRepository(session).create(
            name=name, criteria={"ltv_min": 1000}, is_system=True, created_by="system"
        )


async def test_create_segment_assigns_customers(client, customers):
    response = await client.post(
        "/api/segments",
        json={"name": "Engaged", "criteria": ENGAGED_CRITERIA, "color": "#ff0000"},
        headers={"X-User-Email": "marketer@example.com"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["assigned_customers"] == 2
    assert data["segment"]["name"] == "Engaged"
    assert data["segment"]["color"] == "#ff0000"
    assert data["segment"]["created_by"] == "marketer@example.com"
    assert data["segment"]["is_system"] is False


@pytest.mark.parametrize(
    "payload",
    [
        {"criteria": {"ltv_min": 1000}},
        {"name": "No criteria"},
        {"name": "   ", "criteria": {}},
        {"name": "Bad key", "criteria": {"revenue_min": 10}},
        {"name": "Bad status", "criteria": {"status": "archived"}},
    ],
)
async def test_create_segment_validation_errors(client, payload):
    response = await client.post("/api/segments", json=payload)

    assert response.status_code == 400


async def test_list_segments_with_counts(client, customers, session_factory):
    await create_system_segment(session_factory)
    await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})

    response = await client.get("/api/segments")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    names = [segment["name"] for segment in data["segments"]]
    assert names == ["High Value", "Engaged"]
    engaged = data["segments"][1]
    assert engaged["customer_count"] == 2
    assert engaged["avg_assignment_score"] == pytest.approx(0.95)

    system_only = await client.get("/api/segments", params={"is_system": "true"})
    assert [segment["name"] for segment in system_only.json()["segments"]] == ["High Value"]


async def test_segment_detail_includes_members_and_analytics(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.get(f"/api/segments/{segment_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["customer_count"] == 2
    assert [member["customer_id"] for member in data["members"]] == ["cus_a", "cus_b"]
    assert len(data["analytics"]) == 1
    assert data["analytics"][0]["customer_count"] == 2
    assert data["analytics"][0]["avg_ltv"] == 1750.0


async def test_members_pagination(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    first = (await client.get(f"/api/segments/{segment_id}/members", params={"page": 1, "limit": 1})).json()
    second = (await client.get(f"/api/segments/{segment_id}/members", params={"page": 2, "limit": 1})).json()

    assert [member["customer_id"] for member in first["members"]] == ["cus_a"]
    assert first["members"][0]["assignment_score"] == 1.0
    assert first["pagination"] == {
        "page": 1,
        "limit": 1,
        "total": 2,
        "total_pages": 2,
        "has_next": True,
        "has_prev": False,
    }
    assert [member["customer_id"] for member in second["members"]] == ["cus_b"]
    assert second["members"][0]["assignment_score"] == pytest.approx(0.9)
    assert second["pagination"]["has_next"] is False
    assert second["pagination"]["has_prev"] is True


async def test_members_limit_is_clamped(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.get(f"/api/segments/{segment_id}/members", params={"limit": 500})

    assert response.json()["pagination"]["limit"] == 100


async def test_analytics_date_range(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]
    today = date.today()

    response = await client.get(
        f"/api/segments/{segment_id}/analytics",
        params={"date_from": (today - timedelta(days=7)).isoformat(), "date_to": today.isoformat()},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["date_range"] == {"from": (today - timedelta(days=7)).isoformat(), "to": today.isoformat()}
    assert [row["metric_date"] for row in data["analytics"]] == [today.isoformat()]

    reversed_range = await client.get(
        f"/api/segments/{segment_id}/analytics",
        params={"date_from": today.isoformat(), "date_to": (today - timedelta(days=7)).isoformat()},
    )
    assert reversed_range.status_code == 400


async def test_update_criteria_recomputes(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.put(f"/api/segments/{segment_id}", json={"criteria": {"ltv_min": 100}})

    assert response.status_code == 200
    data = response.json()
    assert data["recomputed"] is True
    assert data["assigned_customers"] == 3


async def test_update_description_does_not_recompute(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.put(f"/api/segments/{segment_id}", json={"description": "Updated"})

    data = response.json()
    assert data["recomputed"] is False
    assert data["segment"]["description"] == "Updated"
    assert data["segment"]["criteria"] == ENGAGED_CRITERIA


async def test_system_segment_criteria_cannot_change(client, session_factory):
    segment = await create_system_segment(session_factory)

    response = await client.put(f"/api/segments/{segment.id}", json={"criteria": {"ltv_min": 1}})
    renamed = await client.put(f"/api/segments/{segment.id}", json={"description": "Top spenders"})

    assert response.status_code == 409
    assert renamed.status_code == 200


async def test_system_segment_cannot_be_deleted(client, session_factory):
    segment = await create_system_segment(session_factory)

    response = await client.delete(f"/api/segments/{segment.id}")

    assert response.status_code == 409
    assert (await client.get(f"/api/segments/{segment.id}")).status_code == 200


async def test_delete_segment(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.delete(f"/api/segments/{segment_id}")

    assert response.status_code == 200
    assert (await client.get(f"/api/segments/{segment_id}")).status_code == 404


@pytest.mark.parametrize(
    "method, path",
    [
        ("GET", "/api/segments/missing"),
        ("GET", "/api/segments/missing/members"),
        ("GET", "/api/segments/missing/analytics"),
        ("PUT", "/api/segments/missing"),
        ("DELETE", "/api/segments/missing"),
        ("POST", "/api/segments/missing/refresh"),
        ("POST", "/api/segments/missing/refresh?background=true"),
    ],
)
async def test_missing_segment_returns_404(client, method, path):
    kwargs = {"json": {"description": "x"}} if method == "PUT" else {}

    response = await client.request(method, path, **kwargs)

    assert response.status_code == 404


async def test_refresh_picks_up_new_customers(client, customers, add_customer):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]
    await add_customer("cus_d", ltv=5000, health=99, churn=0.01)

    response = await client.post(f"/api/segments/{segment_id}/refresh")

    assert response.status_code == 200
    assert response.json()["assigned_customers"] == 3


async def test_refresh_all(client, customers, session_factory):
    await create_system_segment(session_factory)
    await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})

    response = await client.post("/api/segments/refresh-all")

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 2
    assert data["total_segments"] == 2
    assert data["failed_segments"] == {}


async def test_background_refresh_task_status(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.post(f"/api/segments/{segment_id}/refresh", params={"background": "true"})

    assert response.status_code == 200
    task_id = response.json()["task_id"]
    assert response.json()["status_url"] == f"/api/segments/tasks/{task_id}"
    await task_manager.wait(task_id)

    status_response = await client.get(f"/api/segments/tasks/{task_id}")
    task = status_response.json()
    assert task["status"] == TaskStatus.COMPLETED.value
    assert task["progress"] == 100
    assert task["result"] == {"segment_id": segment_id, "assigned_customers": 2}


async def test_background_refresh_all(client, customers, session_factory):
    await create_system_segment(session_factory)

    response = await client.post("/api/segments/refresh-all", params={"background": "true"})
    task_id = response.json()["task_id"]
    await task_manager.wait(task_id)

    task = (await client.get(f"/api/segments/tasks/{task_id}")).json()
    assert task["status"] == TaskStatus.COMPLETED.value
    assert task["result"]["refreshed_segments"] == 1


async def test_unknown_task_returns_404(client):
    assert (await client.get("/api/segments/tasks/unknown")).status_code == 404
    assert (await client.delete("/api/segments/tasks/unknown")).status_code == 404


async def test_cancel_finished_task_is_conflict(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]
    response = await client.post(f"/api/segments/{segment_id}/refresh", params={"background": "true"})
    task_id = response.json()["task_id"]
    await task_manager.wait(task_id)

    cancel = await client.delete(f"/api/segments/tasks/{task_id}")

    assert cancel.status_code == 409


async def test_deactivate_segment_recomputes(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.put(f"/api/segments/{segment_id}", json={"is_active": False})

    assert response.status_code == 200
    data = response.json()
    assert data["recomputed"] is True
    assert data["segment"]["is_active"] is False
    # назначения неактивного сегмента сохраняются
    assert data["assigned_customers"] == 2


async def test_same_is_active_does_not_recompute(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.put(f"/api/segments/{segment_id}", json={"is_active": True})

    assert response.status_code == 200
    assert response.json()["recomputed"] is False


async def test_system_segment_allows_activity_name_and_color(client, session_factory):
    segment = await create_system_segment(session_factory)

    response = await client.put(
        f"/api/segments/{segment.id}",
        json={"is_active": False, "name": "Top Spenders", "color": "#00ff00"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["recomputed"] is True
    assert data["segment"]["name"] == "Top Spenders"
    assert data["segment"]["color"] == "#00ff00"
    assert data["segment"]["is_active"] is False
    assert data["segment"]["criteria"] == {"ltv_min": 1000}


async def test_update_strips_name(client, customers):
    created = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    segment_id = created.json()["segment"]["id"]

    response = await client.put(f"/api/segments/{segment_id}", json={"name": "  Loyal  "})
    blank = await client.put(f"/api/segments/{segment_id}", json={"name": "   "})

    assert response.json()["segment"]["name"] == "Loyal"
    assert blank.status_code == 400


async def test_list_segments_include_inactive(client, customers):
    active = await client.post("/api/segments", json={"name": "Engaged", "criteria": ENGAGED_CRITERIA})
    dormant = await client.post("/api/segments", json={"name": "Dormant", "criteria": {"ltv_min": 100}})
    await client.put(f"/api/segments/{dormant.json()['segment']['id']}", json={"is_active": False})

    default = (await client.get("/api/segments")).json()
    inactive = (await client.get("/api/segments", params={"is_active": "false"})).json()
    everything = (await client.get("/api/segments", params={"include_inactive": "true"})).json()

    assert [segment["name"] for segment in default["segments"]] == ["Engaged"]
    assert [segment["name"] for segment in inactive["segments"]] == ["Dormant"]
    assert everything["total"] == 2
    assert {segment["id"] for segment in everything["segments"]} == {
        active.json()["segment"]["id"],
        dormant.json()["segment"]["id"],
    }
