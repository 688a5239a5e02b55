from datetime import datetime, timedelta, timezone

import pytest

from reminderpay.clock import ClockService
from reminderpay.datamodel import Reminder, ReminderStatus
from reminderpay.errors import DeliveryPermissionDenied, QueueUnavailable
from reminderpay.events import Bus
from reminderpay.metrics import RuntimeMetrics
from reminderpay.scheduling.recovery import RecoveryCoordinator
from reminderpay.scheduling.scheduler import ReminderScheduler
from reminderpay.storage.db_config import open_db
from reminderpay.storage.job_queue import SqliteJobQueue
from reminderpay.storage.reminder import ReminderStore

# 整分钟，便于与秒被清零后的到期时刻直接比较
NOW = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)


def make_reminder(due: datetime, reminder_id: int = 1, **kwargs) -> Reminder:
    kwargs.setdefault("title", f"Reminder {reminder_id}")
    return Reminder(reminder_id=reminder_id, due_date=due, due_time=due, **kwargs)


class RecordingSink:
    def __init__(self, failures: int = 0, denied: bool = False) -> None:
        self.failures = failures
        self.denied = denied
        self.calls: list[tuple[int, str, str]] = []

    async def deliver(self, notification_id: int, title: str, body: str) -> None:
        self.calls.append((notification_id, title, body))
        if self.denied:
            raise DeliveryPermissionDenied("denied")
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("sink offline")


class FlakyQueue:
    """包装真实队列，对指定提醒的入队/取消抛出 QueueUnavailable"""

    def __init__(self, inner: SqliteJobQueue, broken_ids: set[int] | None = None) -> None:
        self.inner = inner
        self.broken_ids = broken_ids

    def _check(self, reminder_id: int) -> None:
        if self.broken_ids is None or reminder_id in self.broken_ids:
            raise QueueUnavailable(f"queue down for {reminder_id}")

    async def enqueue_unique(self, key, fire_at, payload):
        self._check(payload.reminder_id)
        return await self.inner.enqueue_unique(key, fire_at, payload)

    async def cancel_unique(self, key):
        self._check(int(key.split("_")[1]))
        return await self.inner.cancel_unique(key)

    async def get_job(self, key):
        return await self.inner.get_job(key)

    async def list_jobs(self):
        return await self.inner.list_jobs()

    async def list_due_jobs(self, now, limit=100):
        return await self.inner.list_due_jobs(now, limit)

    async def remove_job(self, job_id):
        return await self.inner.remove_job(job_id)


@pytest.fixture
async def conn():
    conn = await open_db(":memory:")
    yield conn
    await conn.close()


@pytest.fixture
def clock() -> ClockService:
    return ClockService(fixed_now=NOW)


@pytest.fixture
def metrics() -> RuntimeMetrics:
    return RuntimeMetrics()


@pytest.fixture
def bus() -> Bus:
    return Bus()


@pytest.fixture
def queue(conn) -> SqliteJobQueue:
    return SqliteJobQueue(conn)


@pytest.fixture
def store(conn) -> ReminderStore:
    return ReminderStore(conn)


@pytest.fixture
def scheduler(queue, clock, metrics) -> ReminderScheduler:
    return ReminderScheduler(queue, clock, metrics=metrics)


@pytest.fixture
def coordinator(store, scheduler, clock, metrics) -> RecoveryCoordinator:
    return RecoveryCoordinator(store, scheduler, clock, metrics=metrics, delay_seconds=0)


async def job_fire_times(queue: SqliteJobQueue) -> dict[str, datetime]:
    return {job.job_key: job.fire_at for job in await queue.list_jobs()}
