import asyncio
from datetime import timedelta
from zoneinfo import ZoneInfo

import pytest
from conftest import NOW, FlakyQueue, job_fire_times, make_reminder

from reminderpay.datamodel import JobKind, ReminderPriority, ReminderStatus
from reminderpay.errors import InvalidReminderState, QueueUnavailable
from reminderpay.events import E
from reminderpay.scheduling.priority import classify
from reminderpay.scheduling.scheduler import ReminderScheduler


async def test_past_due_enqueues_nothing(scheduler, queue):
    reminder = make_reminder(NOW - timedelta(minutes=1), notify_days_before=2)

    jobs = await scheduler.schedule_reminder(reminder)

    assert jobs == []
    assert await queue.list_jobs() == []


async def test_due_exactly_now_is_not_retroactive(scheduler, queue):
    await scheduler.schedule_reminder(make_reminder(NOW))
    assert await queue.list_jobs() == []


async def test_early_alert_in_past_is_suppressed(scheduler, queue):
    due = NOW + timedelta(days=2)
    await scheduler.schedule_reminder(make_reminder(due, notify_days_before=5))

    assert await job_fire_times(queue) == {"reminder_1_ontime": due}


async def test_schedule_twice_does_not_duplicate(scheduler, queue):
    reminder = make_reminder(NOW + timedelta(days=10), notify_days_before=3)

    first = await scheduler.schedule_reminder(reminder)
    second = await scheduler.schedule_reminder(reminder)

    jobs = await queue.list_jobs()
    assert sorted(job.job_key for job in jobs) == ["reminder_1_early", "reminder_1_ontime"]
    assert {job.job_id for job in jobs} == {job.job_id for job in second}
    assert not {job.job_id for job in first} & {job.job_id for job in second}


async def test_cancel_without_jobs_is_noop(scheduler, queue):
    other = make_reminder(NOW + timedelta(days=1), reminder_id=2)
    await scheduler.schedule_reminder(other)
    before = await job_fire_times(queue)

    assert await scheduler.cancel_reminder(99) == 0
    assert await job_fire_times(queue) == before


async def test_reschedule_repins_timing(scheduler, queue):
    due = NOW + timedelta(days=1)
    await scheduler.schedule_reminder(make_reminder(due))

    await scheduler.reschedule(make_reminder(due + timedelta(hours=10)))

    fire_times = await job_fire_times(queue)
    assert fire_times == {"reminder_1_ontime": due + timedelta(hours=10)}
    assert due not in fire_times.values()


async def test_reschedule_drops_stale_early_job(scheduler, queue):
    due = NOW + timedelta(days=10)
    await scheduler.schedule_reminder(make_reminder(due, notify_days_before=3))

    await scheduler.reschedule(make_reminder(due, notify_days_before=0))

    assert list(await job_fire_times(queue)) == ["reminder_1_ontime"]


async def test_one_job_for_reminder_due_tomorrow(scheduler, queue, clock):
    due = NOW + timedelta(hours=30)
    jobs = await scheduler.schedule_reminder(make_reminder(due))

    assert [(job.kind, job.fire_at) for job in jobs] == [(JobKind.ONTIME, due)]
    assert classify(due, clock.now()) is ReminderPriority.SOON

    clock.advance(timedelta(hours=5, minutes=59))
    assert classify(due, clock.now()) is ReminderPriority.SOON
    clock.advance(timedelta(minutes=1))
    assert classify(due, clock.now()) is ReminderPriority.URGENT


async def test_on_time_and_early_jobs(scheduler, queue):
    due = NOW + timedelta(days=10)
    await scheduler.schedule_reminder(make_reminder(due, notify_days_before=3))

    assert await job_fire_times(queue) == {
        "reminder_1_early": NOW + timedelta(days=7),
        "reminder_1_ontime": due,
    }
    assert classify(due, NOW) is ReminderPriority.UPCOMING


async def test_payload_text(scheduler, queue):
    await scheduler.schedule_reminder(make_reminder(NOW + timedelta(days=10), title="Rent", notify_days_before=3))

    ontime = await queue.get_job("reminder_1_ontime")
    early = await queue.get_job("reminder_1_early")
    assert ontime.title == "Rent" and "Rent" in ontime.body
    assert "Rent" in early.body and "3" in early.body
    assert early.title != "Rent"


@pytest.mark.parametrize("status", [ReminderStatus.COMPLETED, ReminderStatus.CANCELLED])
async def test_inactive_reminder_has_no_jobs(scheduler, queue, status):
    reminder = make_reminder(NOW + timedelta(days=10), notify_days_before=1)
    await scheduler.schedule_reminder(reminder)

    reminder.status = status
    assert await scheduler.reschedule(reminder) == []
    assert await queue.list_jobs() == []


async def test_early_fire_is_absolute_hours_across_dst(queue, clock):
    scheduler = ReminderScheduler(queue, clock, tz_name="America/New_York")
    # 2026-03-10 09:00 EDT = 13:00 UTC；72 小时前是 03-07 13:00 UTC (08:00 EST)
    due = NOW.replace(month=3, day=10, hour=13)
    plans = scheduler.plan_jobs(make_reminder(due, notify_days_before=3), NOW)

    early = next(plan for plan in plans if plan.payload.kind is JobKind.EARLY)
    assert early.fire_at == due - timedelta(hours=72)
    assert early.fire_at.astimezone(ZoneInfo("America/New_York")).hour == 8


@pytest.mark.parametrize(
    "kwargs",
    [
        {"reminder_id": 0},
        {"notify_days_before": -1},
    ],
)
async def test_invalid_reminder_rejected(scheduler, queue, kwargs):
    with pytest.raises(InvalidReminderState):
        await scheduler.schedule_reminder(make_reminder(NOW + timedelta(days=1), **kwargs))
    assert await queue.list_jobs() == []


async def test_missing_due_time_rejected(scheduler):
    reminder = make_reminder(NOW + timedelta(days=1))
    reminder.due_time = None
    with pytest.raises(InvalidReminderState):
        await scheduler.schedule_reminder(reminder)


async def test_queue_errors_propagate(queue, clock):
    scheduler = ReminderScheduler(FlakyQueue(queue), clock)
    with pytest.raises(QueueUnavailable):
        await scheduler.schedule_reminder(make_reminder(NOW + timedelta(days=1)))


async def test_concurrent_reschedules_apply_in_call_order(scheduler, queue):
    due = NOW + timedelta(days=2)
    await asyncio.gather(
        scheduler.reschedule(make_reminder(due)),
        scheduler.reschedule(make_reminder(due + timedelta(hours=1))),
        scheduler.reschedule(make_reminder(due + timedelta(hours=2))),
    )

    assert await job_fire_times(queue) == {"reminder_1_ontime": due + timedelta(hours=2)}
    assert len(scheduler._locks) == 0


async def test_events_and_metrics(queue, clock, bus, metrics):
    scheduler = ReminderScheduler(queue, clock, bus=bus, metrics=metrics)
    enqueued, cancelled = [], []
    bus.on(E.JOB_ENQUEUED, enqueued.append)
    bus.on(E.JOB_CANCELLED, cancelled.append)

    reminder = make_reminder(NOW + timedelta(days=10), notify_days_before=3)
    await scheduler.schedule_reminder(reminder)
    await scheduler.cancel_reminder(reminder.reminder_id)

    assert len(enqueued) == 2
    assert sorted(cancelled) == ["reminder_1_early", "reminder_1_ontime"]
    snapshot = metrics.snapshot()
    assert snapshot["jobs_enqueued_count"] == 2
    assert snapshot["jobs_cancelled_count"] == 2
