"""调度核心的异常分类

- InvalidReminderState: 无法计算到期时间等调用方造成的错误，直接失败而不猜测
- QueueUnavailable: 任务队列后端不可用，原样抛给调用方，不做内部重试
- DeliveryPermissionDenied: 仅在投递阶段出现，必须在投递边界被捕获并丢弃
"""

from __future__ import annotations

__all__ = [
    "ReminderPayError",
    "InvalidReminderState",
    "QueueUnavailable",
    "DeliveryPermissionDenied",
    "ReminderNotFound",
]


class ReminderPayError(Exception):
    pass


class InvalidReminderState(ReminderPayError, ValueError):
    pass


class QueueUnavailable(ReminderPayError):
    pass


class DeliveryPermissionDenied(ReminderPayError):
    pass


class ReminderNotFound(ReminderPayError, LookupError):
    def __init__(self, reminder_id: int) -> None:
        super().__init__(f"提醒不存在: reminder_id={reminder_id}")
        self.reminder_id = reminder_id
