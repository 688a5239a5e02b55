import asyncio
import time

import httpx
import pytest
from conftest import NOW, RecordingSink

from reminderpay.admin.app import create_app
from reminderpay.admin.schemas import RuntimeControl
from reminderpay.clock import ClockService
from reminderpay.core.context import AppContext

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}

REMINDER = {
    "title": "Rent",
    "due_date": "2026-03-20",
    "due_time": "09:00:00",
    "category": "payment",
    "notify_days_before": 3,
}


@pytest.fixture
async def context():
    context = await AppContext.create(
        ":memory:",
        clock=ClockService(fixed_now=NOW),
        sink=RecordingSink(),
        recovery_delay=0,
    )
    yield context
    await context.close()


@pytest.fixture
def control():
    return RuntimeControl(shutdown_event=asyncio.Event(), started_at=time.time())


@pytest.fixture
async def client(context, control):
    app = create_app(context, control, auth_token=TOKEN)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_health_is_public(client):
    assert (await client.get("/healthz")).text == "ok"
    body = (await client.get("/api/v1/health")).json()
    assert body["status"] == "ok"
    assert body["domain_now_utc"].startswith("2026-03-02T01:00")


async def test_requires_token(client):
    assert (await client.get("/api/v1/reminders")).status_code == 401
    wrong = {"X-ReminderPay-Token": "nope"}
    assert (await client.get("/api/v1/reminders", headers=wrong)).status_code == 401
    ok = {"X-ReminderPay-Token": TOKEN}
    assert (await client.get("/api/v1/reminders", headers=ok)).status_code == 200


async def test_unconfigured_token_disables_api(context, control):
    app = create_app(context, control, auth_token="")
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        assert (await client.get("/api/v1/reminders", headers=AUTH)).status_code == 503


async def test_create_schedules_jobs(client):
    created = await client.post("/api/v1/reminders", json=REMINDER, headers=AUTH)
    assert created.status_code == 200
    body = created.json()
    assert body["priority"] == "upcoming"
    assert body["overdue"] is False

    jobs = (await client.get("/api/v1/jobs", headers=AUTH)).json()["items"]
    reminder_id = body["reminder_id"]
    assert sorted(job["job_key"] for job in jobs) == [f"reminder_{reminder_id}_early", f"reminder_{reminder_id}_ontime"]

    listed = (await client.get("/api/v1/reminders", headers=AUTH)).json()
    assert listed["total"] == 1


async def test_invalid_payload_rejected(client):
    bad = dict(REMINDER, notify_days_before=-1)
    assert (await client.post("/api/v1/reminders", json=bad, headers=AUTH)).status_code == 422
    blank = dict(REMINDER, title="   ")
    assert (await client.post("/api/v1/reminders", json=blank, headers=AUTH)).status_code == 422


async def test_complete_moves_reminder_to_history(client):
    reminder_id = (await client.post("/api/v1/reminders", json=REMINDER, headers=AUTH)).json()["reminder_id"]

    done = await client.post(f"/api/v1/reminders/{reminder_id}/complete", headers=AUTH)

    assert done.status_code == 200
    assert (await client.get("/api/v1/jobs", headers=AUTH)).json()["total"] == 0
    history = (await client.get("/api/v1/reminders/history", headers=AUTH)).json()
    assert [item["reminder_id"] for item in history["items"]] == [reminder_id]


async def test_update_and_delete(client):
    reminder_id = (await client.post("/api/v1/reminders", json=REMINDER, headers=AUTH)).json()["reminder_id"]

    updated = await client.put(
        f"/api/v1/reminders/{reminder_id}",
        json=dict(REMINDER, title="Rent (March)", notify_days_before=0),
        headers=AUTH,
    )
    assert updated.status_code == 200
    assert updated.json()["title"] == "Rent (March)"
    jobs = (await client.get("/api/v1/jobs", headers=AUTH)).json()["items"]
    assert [job["job_key"] for job in jobs] == [f"reminder_{reminder_id}_ontime"]

    assert (await client.delete(f"/api/v1/reminders/{reminder_id}", headers=AUTH)).status_code == 200
    assert (await client.get(f"/api/v1/reminders/{reminder_id}", headers=AUTH)).status_code == 404
    assert (await client.delete(f"/api/v1/reminders/{reminder_id}", headers=AUTH)).status_code == 404


async def test_reconcile_endpoint_rebuilds_queue(client, context):
    reminder_id = (await client.post("/api/v1/reminders", json=REMINDER, headers=AUTH)).json()["reminder_id"]
    for job in await context.queue.list_jobs():
        await context.queue.remove_job(job.job_id)

    response = await client.post("/api/v1/system/reconcile", headers=AUTH)

    assert response.json()["report"]["jobs_enqueued"] == 2
    assert {job.reminder_id for job in await context.queue.list_jobs()} == {reminder_id}


async def test_boot_signal_triggers_reconcile(client, context):
    response = await client.post("/api/v1/system/signal", json={"kind": "boot"}, headers=AUTH)
    assert response.status_code == 200
    await context.coordinator.wait_pending()
    assert context.metrics.reconcile_count == 1


async def test_metrics_and_shutdown(client, control):
    metrics = (await client.get("/api/v1/metrics", headers=AUTH)).json()
    assert metrics["active_reminders"] == 0
    assert "reconcile_count" in metrics["runtime"]

    response = await client.post("/api/v1/admin/shutdown", json={"reason": "test"}, headers=AUTH)
    assert response.json()["ok"] is True
    assert control.shutdown_event.is_set()
