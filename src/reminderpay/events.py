"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

每个 AppContext 持有自己的 Bus 实例，不使用进程级单例。
处理器可以是普通函数(在 emit 时同步执行)或协程函数(由事件循环调度)。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Any, Awaitable, Callable, Union

from reminderpay.logger import logger

Handler = Callable[..., Union[Awaitable[None], None]]


# 事件名集中定义
class E:
    REMINDER_CREATED = "reminder.created"
    REMINDER_UPDATED = "reminder.updated"
    REMINDER_DELETED = "reminder.deleted"
    REMINDER_COMPLETED = "reminder.completed"
    JOB_ENQUEUED = "job.enqueued"
    JOB_CANCELLED = "job.cancelled"
    JOB_FIRED = "job.fired"
    NOTIFICATION_DELIVERED = "notification.delivered"
    NOTIFICATION_DENIED = "notification.denied"
    SYSTEM_BOOT = "system.boot"
    SYSTEM_APP_UPDATED = "system.app_updated"


class Bus(AsyncIOEventEmitter):
    def __init__(self) -> None:
        super().__init__()
        super().on("error", self._log_handler_error)

    @staticmethod
    def _log_handler_error(error: Exception) -> None:
        logger.opt(exception=error).error(f"事件处理器执行失败: {error}")

    def on(self, event: str, f: Any = None) -> Any:
        """注册事件处理器，可作为装饰器 `@bus.on(E.X)` 或直接 `bus.on(E.X, handler)` 使用"""
        def decorator(handler: Handler) -> Handler:
            logger.debug(f"注册事件处理器: {event} -> {getattr(handler, '__name__', handler)}")
            super(Bus, self).on(event, handler)
            return handler

        if f is None:
            return decorator
        return decorator(f)


__all__ = ["Bus", "E"]
