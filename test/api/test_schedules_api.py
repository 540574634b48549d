import pytest

from container_scheduler.models.schedule_execution import TriggerType
from container_scheduler.scheduler.dispatcher import ActionResult

API = "/api/schedules"


def _body(**overrides):
    body = {
        "container_name": "web-api",
        "name": "Nightly restart",
        "action": "restart",
        "cron_expression": "0 0 * * *",
        "timezone": "UTC",
    }
    body.update(overrides)
    return body


async def _create(async_client, **overrides):
    resp = await async_client.post(API, json=_body(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_create_and_get_schedule(async_client):
    created = await _create(async_client, action_params={"grace_seconds": 10})

    assert created["status"] == "active"
    assert created["enabled"] is True
    assert created["run_count"] == 0
    assert created["next_run_at"] == "2024-01-02T00:00:00.000Z"
    assert created["cron_description"] == "Daily at midnight"
    assert created["action_params"] == {"grace_seconds": 10}

    resp = await async_client.get(f"{API}/{created['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_create_defaults_timezone(async_client):
    body = _body()
    body.pop("timezone")
    resp = await async_client.post(API, json=body)
    assert resp.status_code == 201
    assert resp.json()["timezone"] == "UTC"


@pytest.mark.asyncio
async def test_create_invalid_cron_returns_400(async_client):
    resp = await async_client.post(API, json=_body(cron_expression="0 0 32 * *"))

    assert resp.status_code == 400
    data = resp.json()
    assert data["success"] is False
    assert data["error"]["type"] == "invalid_cron_expression"
    assert "day-of-month" in data["error"]["message"]

    listing = await async_client.get(API)
    assert listing.json()["total"] == 0


@pytest.mark.asyncio
async def test_create_invalid_timezone_returns_400(async_client):
    resp = await async_client.post(API, json=_body(timezone="Mars/Base"))
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "invalid_timezone"


@pytest.mark.asyncio
async def test_create_rejects_unknown_action_and_fields(async_client):
    resp = await async_client.post(API, json=_body(action="explode"))
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "validation_error"
    assert resp.json()["validation_errors"]

    resp = await async_client.post(API, json=_body(run_count=5))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_list_schedules_with_filters(async_client):
    first = await _create(async_client, container_name="web-api")
    second = await _create(async_client, container_name="worker", enabled=False)

    resp = await async_client.get(API)
    assert resp.status_code == 200
    assert resp.json()["total"] == 2

    resp = await async_client.get(API, params={"container": "worker"})
    assert [s["id"] for s in resp.json()["schedules"]] == [second["id"]]

    resp = await async_client.get(API, params={"status": "active"})
    assert [s["id"] for s in resp.json()["schedules"]] == [first["id"]]


@pytest.mark.asyncio
async def test_update_schedule_recomputes_next_run(async_client):
    created = await _create(async_client)

    resp = await async_client.put(f"{API}/{created['id']}", json={"cron_expression": "*/15 * * * *", "name": "Quarter"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Quarter"
    assert data["next_run_at"] == "2024-01-01T08:15:00.000Z"


@pytest.mark.asyncio
async def test_update_rejects_scheduler_owned_fields(async_client):
    created = await _create(async_client)
    resp = await async_client.put(f"{API}/{created['id']}", json={"status": "completed"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unknown_schedule_returns_404(async_client):
    for method, path in [
        ("get", f"{API}/missing"),
        ("delete", f"{API}/missing"),
        ("post", f"{API}/missing/trigger"),
        ("post", f"{API}/missing/complete"),
    ]:
        resp = await getattr(async_client, method)(path)
        assert resp.status_code == 404, path
        assert resp.json()["error"]["type"] == "not_found"

    resp = await async_client.put(f"{API}/missing", json={"name": "x"})
    assert resp.status_code == 404
    resp = await async_client.post(f"{API}/missing/toggle", json={"enabled": True})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_schedule_keeps_history(async_client):
    created = await _create(async_client)
    await async_client.post(f"{API}/{created['id']}/trigger")

    resp = await async_client.delete(f"{API}/{created['id']}")
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "message": "Schedule 'Nightly restart' deleted",
        "deleted_id": created["id"],
    }

    assert (await async_client.get(f"{API}/{created['id']}")).status_code == 404
    history = await async_client.get(f"{API}/{created['id']}/history")
    assert history.status_code == 200
    assert history.json()["total"] == 1


@pytest.mark.asyncio
async def test_toggle_schedule(async_client):
    created = await _create(async_client)

    resp = await async_client.post(f"{API}/{created['id']}/toggle", json={"enabled": False})
    assert resp.status_code == 200
    assert resp.json()["status"] == "paused"
    assert resp.json()["next_run_at"] is None

    resp = await async_client.post(f"{API}/{created['id']}/toggle", json={"enabled": True})
    assert resp.json()["status"] == "active"
    assert resp.json()["next_run_at"] == "2024-01-02T00:00:00.000Z"


@pytest.mark.asyncio
async def test_trigger_schedule(async_client, dispatcher):
    created = await _create(async_client, action="scale_up", action_params={"count": 2})

    resp = await async_client.post(f"{API}/{created['id']}/trigger")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["execution"]["trigger_type"] == "manual"
    assert data["execution"]["status"] == "success"
    assert dispatcher.calls == [("web-api", "scale_up", {"count": 2})]

    schedule = (await async_client.get(f"{API}/{created['id']}")).json()
    assert schedule["run_count"] == 1
    assert schedule["next_run_at"] == created["next_run_at"]


@pytest.mark.asyncio
async def test_trigger_failure_is_reported(async_client, dispatcher):
    created = await _create(async_client)
    dispatcher.result = ActionResult(success=False, error="container not found")

    resp = await async_client.post(f"{API}/{created['id']}/trigger")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is False
    assert data["execution"]["error"] == "container not found"


@pytest.mark.asyncio
async def test_trigger_while_running_returns_409(async_client, loop):
    created = await _create(async_client)
    loop.log.append(loop.store.get(created["id"]), TriggerType.SCHEDULED)

    resp = await async_client.post(f"{API}/{created['id']}/trigger")
    assert resp.status_code == 409
    assert resp.json()["error"]["type"] == "concurrent_claim_lost"


@pytest.mark.asyncio
async def test_complete_schedule(async_client):
    created = await _create(async_client)

    resp = await async_client.post(f"{API}/{created['id']}/complete")
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["next_run_at"] is None

    resp = await async_client.post(f"{API}/{created['id']}/complete")
    assert resp.status_code == 409
    assert resp.json()["error"]["type"] == "invalid_transition"


@pytest.mark.asyncio
async def test_history_paginates_with_cursor(async_client, clock):
    created = await _create(async_client)
    for _ in range(3):
        clock.advance(minutes=1)
        resp = await async_client.post(f"{API}/{created['id']}/trigger")
        assert resp.status_code == 200

    first = await async_client.get(f"{API}/{created['id']}/history", params={"limit": 2})
    assert first.status_code == 200
    page = first.json()
    assert page["schedule_id"] == created["id"]
    assert page["total"] == 3
    assert len(page["executions"]) == 2
    assert page["next_cursor"]
    assert page["executions"][0]["started_at"] > page["executions"][1]["started_at"]

    second = await async_client.get(
        f"{API}/{created['id']}/history", params={"limit": 2, "cursor": page["next_cursor"]}
    )
    rest = second.json()
    assert len(rest["executions"]) == 1
    assert rest["next_cursor"] is None

    execution_id = rest["executions"][0]["id"]
    one = await async_client.get(f"{API}/{created['id']}/history/{execution_id}")
    assert one.status_code == 200
    assert one.json()["id"] == execution_id


@pytest.mark.asyncio
async def test_history_rejects_bad_limit_and_cursor(async_client):
    created = await _create(async_client)

    resp = await async_client.get(f"{API}/{created['id']}/history", params={"limit": 500})
    assert resp.status_code == 400

    resp = await async_client.get(f"{API}/{created['id']}/history", params={"cursor": "garbage"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_execution_from_another_schedule_is_404(async_client):
    first = await _create(async_client)
    second = await _create(async_client, name="Other")
    execution = (await async_client.post(f"{API}/{first['id']}/trigger")).json()["execution"]

    resp = await async_client.get(f"{API}/{second['id']}/history/{execution['id']}")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_validate_cron(async_client):
    resp = await async_client.post(f"{API}/validate-cron", json={"cron_expression": "*/5 * * * *"})
    assert resp.status_code == 200
    assert resp.json()["valid"] is True
    assert resp.json()["description"] == "Every 5 minutes"

    resp = await async_client.post(f"{API}/validate-cron", json={"cron_expression": "* * *"})
    assert resp.status_code == 200
    assert resp.json()["valid"] is False
    assert resp.json()["error"]


@pytest.mark.asyncio
async def test_cron_preview(async_client):
    resp = await async_client.post(f"{API}/cron-preview", json={"cron_expression": "0 * * * *", "count": 3})
    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 3
    assert data["timezone"] == "UTC"
    assert data["description"] == "Every hour"
    assert data["next_runs"] == sorted(data["next_runs"])
    assert all(run.endswith(":00:00.000Z") for run in data["next_runs"])


@pytest.mark.asyncio
async def test_cron_preview_invalid_expression(async_client):
    resp = await async_client.post(f"{API}/cron-preview", json={"cron_expression": "nope"})
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "invalid_cron_expression"

    resp = await async_client.post(f"{API}/cron-preview", json={"cron_expression": "* * * * *", "count": 51})
    assert resp.status_code == 400
