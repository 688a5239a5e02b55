"""提醒的增删改与调度联动

所有对提醒的修改都从这里进入：先写存储，再调用调度器(取消 -> 重新调度)。
队列不可用时只记录警告并正常返回，提醒记录保持完整，由下一次对账补齐任务。
同一提醒的“写存储 + 调度”按提醒 id 串行，避免两次快速编辑的调度顺序颠倒。
"""

from dataclasses import replace
from typing import Awaitable, Optional

from reminderpay.datamodel import *
from reminderpay.errors import InvalidReminderState, QueueUnavailable, ReminderNotFound
from reminderpay.events import Bus, E
from reminderpay.logger import logger
from reminderpay.scheduling.locks import KeyedLock
from reminderpay.scheduling.scheduler import ReminderScheduler
from reminderpay.storage.reminder import ReminderStore

__all__ = ["ReminderService"]


class ReminderService:
    def __init__(self, store: ReminderStore, scheduler: ReminderScheduler, bus: Optional[Bus] = None) -> None:
        self.store = store
        self.scheduler = scheduler
        self.bus = bus
        self._locks = KeyedLock()

    def _emit(self, event: str, *args) -> None:
        if self.bus is not None:
            self.bus.emit(event, *args)

    async def _best_effort(self, reminder_id: int, action: Awaitable) -> None:
        try:
            await action
        except QueueUnavailable as e:
            logger.warning(f"任务队列不可用，提醒已保存但暂无有效任务，等待对账: reminder_id={reminder_id}, error={e}")

    @staticmethod
    def _normalized(reminder: Reminder) -> Reminder:
        title = reminder.title.strip()
        if not title:
            raise InvalidReminderState("提醒标题不能为空")
        return replace(reminder, title=title, description=reminder.description.strip())

    async def get_reminder(self, reminder_id: int) -> Reminder:
        reminder = await self.store.get_reminder_by_id(reminder_id)
        if reminder is None:
            raise ReminderNotFound(reminder_id)
        return reminder

    async def list_active(self) -> list[Reminder]:
        return await self.store.list_active_reminders()

    async def list_completed(self) -> list[Reminder]:
        return await self.store.list_completed_reminders()

    async def add_reminder(self, reminder: Reminder) -> Reminder:
        reminder = self._normalized(reminder)
        reminder_id = await self.store.insert_reminder(replace(reminder, reminder_id=0))
        saved = replace(reminder, reminder_id=reminder_id)
        async with self._locks.hold(reminder_id):
            await self._best_effort(reminder_id, self.scheduler.schedule_reminder(saved))
        logger.info(f"新增提醒: reminder_id={reminder_id}, title={saved.title}")
        self._emit(E.REMINDER_CREATED, saved)
        return saved

    async def update_reminder(self, reminder: Reminder) -> Reminder:
        reminder = self._normalized(reminder)
        async with self._locks.hold(reminder.reminder_id):
            if not await self.store.update_reminder(reminder):
                raise ReminderNotFound(reminder.reminder_id)
            await self._best_effort(reminder.reminder_id, self.scheduler.reschedule(reminder))
        logger.info(f"更新提醒: reminder_id={reminder.reminder_id}, status={reminder.status.value}")
        self._emit(E.REMINDER_UPDATED, reminder)
        return reminder

    async def delete_reminder(self, reminder_id: int) -> None:
        async with self._locks.hold(reminder_id):
            deleted = await self.store.delete_reminder(reminder_id)
            await self._best_effort(reminder_id, self.scheduler.cancel_reminder(reminder_id))
        if not deleted:
            raise ReminderNotFound(reminder_id)
        logger.info(f"删除提醒: reminder_id={reminder_id}")
        self._emit(E.REMINDER_DELETED, reminder_id)

    async def mark_completed(self, reminder_id: int) -> None:
        async with self._locks.hold(reminder_id):
            updated = await self.store.mark_completed(reminder_id)
            await self._best_effort(reminder_id, self.scheduler.cancel_reminder(reminder_id))
        if not updated:
            raise ReminderNotFound(reminder_id)
        logger.info(f"提醒已完成: reminder_id={reminder_id}")
        self._emit(E.REMINDER_COMPLETED, reminder_id)
