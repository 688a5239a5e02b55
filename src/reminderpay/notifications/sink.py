"""通知投递

DeliverySink 是“在指定时刻向用户展示一条通知”的能力。用户未授予通知权限时，
实现应抛出 DeliveryPermissionDenied，由任务执行器在投递边界捕获并丢弃。
"""

from typing import Protocol

from reminderpay.config.settings import DEFAULT_NOTIFICATION_BODY, DEFAULT_NOTIFICATION_TITLE, NOTIFICATIONS_ENABLED
from reminderpay.errors import DeliveryPermissionDenied
from reminderpay.logger import logger

__all__ = ["DeliverySink", "LoggingDeliverySink", "resolve_notification_text"]


class DeliverySink(Protocol):
    async def deliver(self, notification_id: int, title: str, body: str) -> None: ...


def resolve_notification_text(title: str | None, body: str | None) -> tuple[str, str]:
    """空标题/空正文回退到默认文案"""
    return (title or DEFAULT_NOTIFICATION_TITLE, body or DEFAULT_NOTIFICATION_BODY)


class LoggingDeliverySink:
    """把通知写入日志并保留最近的投递记录；permission_granted=False 时模拟用户未授权"""

    def __init__(self, permission_granted: bool = NOTIFICATIONS_ENABLED, history_limit: int = 200) -> None:
        self.permission_granted = permission_granted
        self.history_limit = history_limit
        self.delivered: list[tuple[int, str, str]] = []

    async def deliver(self, notification_id: int, title: str, body: str) -> None:
        if not self.permission_granted:
            raise DeliveryPermissionDenied(f"未授予通知权限: notification_id={notification_id}")

        title, body = resolve_notification_text(title, body)
        logger.info(f"[通知] id={notification_id} | {title} | {body}")
        self.delivered.append((notification_id, title, body))
        if len(self.delivered) > self.history_limit:
            del self.delivered[: len(self.delivered) - self.history_limit]
