"""启动时构造的作用域上下文

持有数据库连接以及由它派生的存储、队列、调度器、对账器和执行器，显式传递给需要它们的地方，
不使用进程级的全局单例。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import aiosqlite

from reminderpay import __version__
from reminderpay.clock import ClockService
from reminderpay.config.settings import DB_PATH, RECOVERY_DELAY_SECONDS
from reminderpay.core.reminders import ReminderService
from reminderpay.events import Bus, E
from reminderpay.logger import logger
from reminderpay.metrics import RuntimeMetrics
from reminderpay.notifications.sink import DeliverySink, LoggingDeliverySink
from reminderpay.scheduling.recovery import RecoveryCoordinator
from reminderpay.scheduling.scheduler import ReminderScheduler
from reminderpay.storage.db_config import open_db
from reminderpay.storage.job_queue import SqliteJobQueue
from reminderpay.storage.meta import get_meta, set_meta
from reminderpay.storage.reminder import ReminderStore
from reminderpay.world.job_runner import JobRunner

__all__ = ["AppContext"]

_APP_VERSION_KEY = "app_version"


@dataclass
class AppContext:
    conn: aiosqlite.Connection
    bus: Bus
    clock: ClockService
    metrics: RuntimeMetrics
    store: ReminderStore
    queue: SqliteJobQueue
    sink: DeliverySink
    scheduler: ReminderScheduler
    coordinator: RecoveryCoordinator
    runner: JobRunner
    service: ReminderService

    @classmethod
    async def create(
        cls,
        db_path: str = DB_PATH,
        clock: Optional[ClockService] = None,
        sink: Optional[DeliverySink] = None,
        recovery_delay: float = RECOVERY_DELAY_SECONDS,
    ) -> AppContext:
        conn = await open_db(db_path)
        bus = Bus()
        clock = clock or ClockService()
        metrics = RuntimeMetrics()
        sink = sink or LoggingDeliverySink()

        store = ReminderStore(conn)
        queue = SqliteJobQueue(conn)
        scheduler = ReminderScheduler(queue, clock, bus=bus, metrics=metrics)
        coordinator = RecoveryCoordinator(store, scheduler, clock, bus=bus, metrics=metrics, delay_seconds=recovery_delay)
        runner = JobRunner(queue, sink, clock, bus=bus, metrics=metrics)
        service = ReminderService(store, scheduler, bus=bus)

        return cls(
            conn=conn,
            bus=bus,
            clock=clock,
            metrics=metrics,
            store=store,
            queue=queue,
            sink=sink,
            scheduler=scheduler,
            coordinator=coordinator,
            runner=runner,
            service=service,
        )

    async def emit_startup_signal(self) -> str:
        """与上次运行的版本比较：版本变化视为应用更新，否则视为重启"""
        previous = await get_meta(self.conn, _APP_VERSION_KEY)
        event = E.SYSTEM_BOOT if previous == __version__ else E.SYSTEM_APP_UPDATED
        if previous != __version__:
            await set_meta(self.conn, _APP_VERSION_KEY, __version__)
            logger.info(f"检测到应用版本变化: {previous} -> {__version__}")
        self.bus.emit(event)
        return event

    async def close(self) -> None:
        await self.coordinator.close()
        self.bus.remove_all_listeners()
        await self.conn.close()
        logger.info("数据库连接已关闭")
