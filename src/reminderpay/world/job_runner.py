"""任务执行器

定期从任务队列取出到期的任务并交给 DeliverySink 投递：
- DeliveryPermissionDenied 属于预期情况，直接丢弃，不计入失败/重试；
- 其他投递异常按 1s、2s... 退避重试，超过次数后记录错误并丢弃；
- 无论结果如何，任务都按 job_id 从队列移除，单个任务失败不会让主循环退出；
- 同一批到期任务并发投递，某个任务的退避等待不会拖慢其它任务，关闭信号可以打断等待。

投递语义是至少一次：投递成功后若移除任务失败，任务留在队列中，下一轮轮询会再次投递。
"""

import asyncio
import time
from typing import Optional

from reminderpay.clock import ClockService
from reminderpay.config.settings import DELIVERY_MAX_ATTEMPTS, JOB_POLL_BATCH_SIZE, JOB_POLL_INTERVAL_SECONDS
from reminderpay.datamodel import ScheduledJob
from reminderpay.errors import DeliveryPermissionDenied, QueueUnavailable
from reminderpay.events import Bus, E
from reminderpay.logger import logger
from reminderpay.metrics import RuntimeMetrics
from reminderpay.notifications.sink import DeliverySink
from reminderpay.storage.job_queue import JobQueue

__all__ = ["JobRunner"]


class JobRunner:
    def __init__(
        self,
        queue: JobQueue,
        sink: DeliverySink,
        clock: ClockService,
        bus: Optional[Bus] = None,
        metrics: Optional[RuntimeMetrics] = None,
        poll_interval: float = JOB_POLL_INTERVAL_SECONDS,
        max_attempts: int = DELIVERY_MAX_ATTEMPTS,
        batch_size: int = JOB_POLL_BATCH_SIZE,
        retry_base_delay: float = 1.0,
    ) -> None:
        self.queue = queue
        self.sink = sink
        self.clock = clock
        self.bus = bus
        self.metrics = metrics
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.batch_size = batch_size
        self.retry_base_delay = retry_base_delay
        self._running = False
        self._last_check_at_epoch: float | None = None
        self._shutdown_event: asyncio.Event | None = None

    def get_status(self) -> dict[str, object]:
        return {
            "running": self._running,
            "last_check_at_epoch": self._last_check_at_epoch,
            "poll_interval": self.poll_interval,
        }

    async def main_loop(self, shutdown_event: asyncio.Event) -> None:
        self._running = True
        self._shutdown_event = shutdown_event
        logger.info("任务执行器主循环已启动")
        try:
            while not shutdown_event.is_set():
                try:
                    await self.run_once()
                except QueueUnavailable as e:
                    logger.error(f"读取任务队列失败，稍后重试: {e}")

                try:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            self._shutdown_event = None
            logger.info("任务执行器主循环已关闭")

    async def run_once(self) -> int:
        """处理一批到期任务，返回处理的任务数"""
        self._last_check_at_epoch = time.time()
        due_jobs = await self.queue.list_due_jobs(self.clock.now(), limit=self.batch_size)
        await asyncio.gather(*(self._fire(job) for job in due_jobs))
        return len(due_jobs)

    async def _fire(self, job: ScheduledJob) -> None:
        logger.debug(f"任务到期: key={job.job_key}, job_id={job.job_id}, fire_at={job.fire_at.isoformat()}")
        if self.metrics is not None:
            self.metrics.record_job_fired()
        if self.bus is not None:
            self.bus.emit(E.JOB_FIRED, job)

        try:
            await self._deliver_with_retry(job)
        finally:
            # 按 job_id 删除：投递期间若被同 key 的新任务替换，新任务保留
            try:
                await self.queue.remove_job(job.job_id)
            except QueueUnavailable as e:
                logger.error(f"移除已触发任务失败，下一轮将再次投递: key={job.job_key}, job_id={job.job_id}, error={e}")

    async def _deliver_with_retry(self, job: ScheduledJob) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.sink.deliver(job.reminder_id, job.title, job.body)
            except DeliveryPermissionDenied as e:
                logger.debug(f"通知权限被拒绝，丢弃任务: key={job.job_key}, reason={e}")
                if self.metrics is not None:
                    self.metrics.record_delivery(denied=True)
                if self.bus is not None:
                    self.bus.emit(E.NOTIFICATION_DENIED, job)
                return
            except Exception as e:
                if attempt >= self.max_attempts:
                    logger.opt(exception=e).error(f"通知投递失败且超过重试次数: key={job.job_key}")
                    if self.metrics is not None:
                        self.metrics.record_delivery(error=True)
                    return

                delay_seconds = self.retry_base_delay * 2 ** (attempt - 1)
                logger.warning(
                    f"通知投递失败，准备重试: key={job.job_key}, "
                    f"attempt={attempt}/{self.max_attempts}, sleep={delay_seconds}s, error={e}"
                )
                if not await self._backoff(delay_seconds):
                    logger.warning(f"收到关闭信号，放弃重试: key={job.job_key}")
                    return
            else:
                if self.metrics is not None:
                    self.metrics.record_delivery()
                if self.bus is not None:
                    self.bus.emit(E.NOTIFICATION_DELIVERED, job)
                return

    async def _backoff(self, delay_seconds: float) -> bool:
        """等待重试间隔，期间收到关闭信号返回 False"""
        if self._shutdown_event is None:
            await asyncio.sleep(delay_seconds)
            return True
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay_seconds)
        except asyncio.TimeoutError:
            return True
        return False
