"""提醒调度器

把一条提醒翻译成 0~2 个通知任务：
1. 准时任务(ontime)：在有效到期时刻触发；到期时刻已过则跳过，不补发；
2. 提前任务(early)：仅当 notify_days_before > 0，在到期前 N*24 小时触发；触发时刻已过同样跳过。

任务 key 为 `reminder_{id}_{kind}`，入队依赖队列的同 key 替换语义，因此重复调度是幂等的。
调度器本身不做重试，队列错误(QueueUnavailable)原样抛给调用方，由下一次对账修复。
同一提醒的“取消 -> 重新调度”在按提醒 id 加锁的临界区内顺序执行。
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from reminderpay.clock import ClockService
from reminderpay.config.settings import EARLY_BODY_TEMPLATE, EARLY_TITLE, ONTIME_BODY_TEMPLATE, USER_TIMEZONE
from reminderpay.datamodel import *
from reminderpay.errors import InvalidReminderState
from reminderpay.events import Bus, E
from reminderpay.logger import logger
from reminderpay.metrics import RuntimeMetrics
from reminderpay.scheduling.locks import KeyedLock
from reminderpay.storage.job_queue import JobQueue
from reminderpay.utils import effective_due, epoch_plus_days, to_utc

__all__ = ["JobPlan", "ReminderScheduler"]


@dataclass(frozen=True)
class JobPlan:
    key: str
    fire_at: datetime  # UTC
    payload: JobPayload


def _ontime_payload(reminder: Reminder) -> JobPayload:
    return JobPayload(
        reminder_id=reminder.reminder_id,
        kind=JobKind.ONTIME,
        title=reminder.title,
        body=ONTIME_BODY_TEMPLATE.format(title=reminder.title),
    )


def _early_payload(reminder: Reminder) -> JobPayload:
    return JobPayload(
        reminder_id=reminder.reminder_id,
        kind=JobKind.EARLY,
        title=EARLY_TITLE,
        body=EARLY_BODY_TEMPLATE.format(title=reminder.title, days=reminder.notify_days_before),
    )


class ReminderScheduler:
    def __init__(
        self,
        queue: JobQueue,
        clock: ClockService,
        bus: Optional[Bus] = None,
        metrics: Optional[RuntimeMetrics] = None,
        tz_name: str = USER_TIMEZONE,
    ) -> None:
        self.queue = queue
        self.clock = clock
        self.bus = bus
        self.metrics = metrics
        self.tz_name = tz_name
        self._locks = KeyedLock()

    def plan_jobs(self, reminder: Reminder, now: datetime) -> list[JobPlan]:
        """计算 schedule_reminder 会入队的任务，不触碰队列"""
        if reminder.reminder_id <= 0:
            raise InvalidReminderState(f"提醒尚未入库，无法调度: title={reminder.title}")
        if reminder.notify_days_before < 0:
            raise InvalidReminderState(
                f"notify_days_before 不能为负数: reminder_id={reminder.reminder_id}, value={reminder.notify_days_before}"
            )

        due = to_utc(effective_due(reminder, self.tz_name))
        now = to_utc(now)
        if not reminder.is_active:
            return []

        plans: list[JobPlan] = []
        if due > now:
            plans.append(JobPlan(
                key=job_key_for(reminder.reminder_id, JobKind.ONTIME),
                fire_at=due,
                payload=_ontime_payload(reminder),
            ))

        if reminder.notify_days_before > 0:
            early_fire = epoch_plus_days(due, -reminder.notify_days_before)
            if early_fire > now:
                plans.append(JobPlan(
                    key=job_key_for(reminder.reminder_id, JobKind.EARLY),
                    fire_at=early_fire,
                    payload=_early_payload(reminder),
                ))
        return plans

    async def schedule_reminder(self, reminder: Reminder, now: Optional[datetime] = None) -> list[ScheduledJob]:
        async with self._locks.hold(reminder.reminder_id):
            return await self._schedule_unlocked(reminder, now or self.clock.now())

    async def cancel_reminder(self, reminder_id: int) -> int:
        """取消该提醒的两个任务 key，返回实际删除的任务数；没有任务时为空操作"""
        async with self._locks.hold(reminder_id):
            return await self._cancel_unlocked(reminder_id)

    async def reschedule(self, reminder: Reminder, now: Optional[datetime] = None) -> list[ScheduledJob]:
        """更新协议：先取消再按最新状态调度，两步在同一把锁内完成"""
        now = now or self.clock.now()
        async with self._locks.hold(reminder.reminder_id):
            plans = self.plan_jobs(reminder, now)
            await self._cancel_unlocked(reminder.reminder_id)
            return await self._enqueue_plans(reminder, plans)

    async def resync(
        self,
        reminder_id: int,
        load: Callable[[int], Awaitable[Optional[Reminder]]],
        now: Optional[datetime] = None,
    ) -> list[ScheduledJob]:
        """在锁内重新读取提醒再调度；记录已删除或不再 active 时只取消"""
        now = now or self.clock.now()
        async with self._locks.hold(reminder_id):
            reminder = await load(reminder_id)
            if reminder is None or not reminder.is_active:
                await self._cancel_unlocked(reminder_id)
                return []
            plans = self.plan_jobs(reminder, now)
            await self._cancel_unlocked(reminder_id)
            return await self._enqueue_plans(reminder, plans)

    async def _schedule_unlocked(self, reminder: Reminder, now: datetime) -> list[ScheduledJob]:
        plans = self.plan_jobs(reminder, now)
        return await self._enqueue_plans(reminder, plans)

    async def _enqueue_plans(self, reminder: Reminder, plans: list[JobPlan]) -> list[ScheduledJob]:
        if not reminder.is_active:
            logger.debug(f"提醒非 active 状态，不创建任务: reminder_id={reminder.reminder_id}, status={reminder.status.value}")
            return []
        if not plans:
            logger.debug(f"提醒的所有触发时刻均已过去，跳过调度: reminder_id={reminder.reminder_id}")
            return []

        jobs: list[ScheduledJob] = []
        for plan in plans:
            job = await self.queue.enqueue_unique(plan.key, plan.fire_at, plan.payload)
            jobs.append(job)
            if self.metrics is not None:
                self.metrics.record_job_enqueued()
            if self.bus is not None:
                self.bus.emit(E.JOB_ENQUEUED, job)

        logger.info(
            f"提醒已调度: reminder_id={reminder.reminder_id}, "
            + ", ".join(f"{job.kind.value}@{job.fire_at.isoformat()}" for job in jobs)
        )
        return jobs

    async def _cancel_unlocked(self, reminder_id: int) -> int:
        removed = 0
        for kind in JobKind:
            key = job_key_for(reminder_id, kind)
            if await self.queue.cancel_unique(key):
                removed += 1
                if self.metrics is not None:
                    self.metrics.record_job_cancelled()
                if self.bus is not None:
                    self.bus.emit(E.JOB_CANCELLED, key)
        if removed:
            logger.debug(f"已取消提醒任务: reminder_id={reminder_id}, removed={removed}")
        return removed
