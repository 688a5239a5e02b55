"""重启后的调度对账

进程被杀、设备重启或应用更新后，认为队列中的任务已全部丢失：
1. 读取所有 active 提醒(不论是否已过期)；
2. 对每条提醒在其锁内重新读取最新记录，先取消再重新调度(ReminderScheduler.resync)，
   列表读取之后发生的编辑、完成、删除都以存储中的最新状态为准；
3. completed/cancelled 的提醒不处理，但队列里残留的、对应提醒已不再 active 的任务会被清掉。

触发源是 system.boot / system.app_updated 事件，都延迟若干秒后执行，并且新的请求替换尚未执行的旧请求。
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from reminderpay.clock import ClockService
from reminderpay.config.settings import RECOVERY_DELAY_SECONDS
from reminderpay.datamodel import Reminder
from reminderpay.events import Bus, E
from reminderpay.logger import logger
from reminderpay.metrics import RuntimeMetrics
from reminderpay.scheduling.scheduler import ReminderScheduler
from reminderpay.storage.reminder import ReminderStore

__all__ = ["ReconcileReport", "RecoveryCoordinator"]


@dataclass
class ReconcileReport:
    reminders_seen: int = 0
    jobs_enqueued: int = 0
    orphans_purged: int = 0
    failed_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "reminders_seen": self.reminders_seen,
            "jobs_enqueued": self.jobs_enqueued,
            "orphans_purged": self.orphans_purged,
            "failed_ids": list(self.failed_ids),
        }


class RecoveryCoordinator:
    def __init__(
        self,
        store: ReminderStore,
        scheduler: ReminderScheduler,
        clock: ClockService,
        bus: Optional[Bus] = None,
        metrics: Optional[RuntimeMetrics] = None,
        delay_seconds: float = RECOVERY_DELAY_SECONDS,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.clock = clock
        self.metrics = metrics
        self.delay_seconds = delay_seconds
        self.last_report: ReconcileReport | None = None
        self._pending: asyncio.Task | None = None

        if bus is not None:
            bus.on(E.SYSTEM_BOOT, self._on_system_signal)
            bus.on(E.SYSTEM_APP_UPDATED, self._on_system_signal)

    def get_status(self) -> dict[str, object]:
        return {
            "pending": self._pending is not None and not self._pending.done(),
            "delay_seconds": self.delay_seconds,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }

    async def reconcile(self, now: Optional[datetime] = None) -> ReconcileReport:
        now = now or self.clock.now()
        report = ReconcileReport()

        active = await self.store.list_active_reminders()
        report.reminders_seen = len(active)
        logger.info(f"开始对账: active 提醒 {len(active)} 条")

        # 不同提醒之间没有顺序要求，可以并发
        load = self.store.get_reminder_by_id
        results = await asyncio.gather(
            *(self.scheduler.resync(reminder.reminder_id, load, now) for reminder in active),
            return_exceptions=True,
        )
        for reminder, result in zip(active, results):
            if isinstance(result, Exception):
                report.failed_ids.append(reminder.reminder_id)
                logger.opt(exception=result).error(f"对账时调度提醒失败: reminder_id={reminder.reminder_id}, error={result}")
            else:
                report.jobs_enqueued += len(result)

        report.orphans_purged = await self._purge_orphans(active)

        if self.metrics is not None:
            self.metrics.record_reconcile(failed=len(report.failed_ids))
        self.last_report = report
        logger.info(
            f"对账完成: reminders={report.reminders_seen}, jobs={report.jobs_enqueued}, "
            f"orphans={report.orphans_purged}, failed={report.failed_ids}"
        )
        return report

    async def _purge_orphans(self, active: list[Reminder]) -> int:
        active_ids = {r.reminder_id for r in active}
        try:
            jobs = await self.scheduler.queue.list_jobs()
        except Exception as e:
            logger.warning(f"读取任务队列失败，跳过残留任务清理: {e}")
            return 0

        purged = 0
        for reminder_id in sorted({job.reminder_id for job in jobs} - active_ids):
            # 对账期间可能有新提醒刚入库并调度，删除前再确认一次
            reminder = await self.store.get_reminder_by_id(reminder_id)
            if reminder is not None and reminder.is_active:
                continue
            purged += await self.scheduler.cancel_reminder(reminder_id)
            logger.debug(f"清理残留任务: reminder_id={reminder_id}")
        return purged

    def request_reconcile(self, delay: Optional[float] = None) -> asyncio.Task:
        """延迟执行一次对账，替换尚未完成的旧请求"""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            logger.debug("已有待执行的对账请求，替换为新的请求")

        delay = self.delay_seconds if delay is None else delay
        self._pending = asyncio.create_task(self._delayed_reconcile(delay), name="reminderpay-reconcile")
        return self._pending

    async def _delayed_reconcile(self, delay: float) -> Optional[ReconcileReport]:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            return await self.reconcile()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.opt(exception=e).error(f"对账失败，等待下一次触发: {e}")
            return None

    async def wait_pending(self) -> Optional[ReconcileReport]:
        task = self._pending
        if task is None:
            return None
        try:
            return await task
        except asyncio.CancelledError:
            return None

    async def close(self) -> None:
        task = self._pending
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._pending = None

    def _on_system_signal(self, *args, **kwargs) -> None:
        logger.info(f"收到系统启动/更新信号，{self.delay_seconds} 秒后对账")
        self.request_reconcile()
