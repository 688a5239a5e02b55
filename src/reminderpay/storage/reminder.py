from datetime import date, datetime, time
from typing import Optional

import aiosqlite

from reminderpay.datamodel import *
from reminderpay.errors import InvalidReminderState
from reminderpay.logger import logger
from reminderpay.utils import effective_due, to_epoch_ms

__all__ = ["ReminderStore"]

_COLUMNS = (
    "reminder_id, title, description, due_date, due_time, category, reminder_type, "
    "repeat_type, notify_days_before, status, created_at_utc"
)


def _dump_date(value) -> str:
    # datetime 与 date 都用 isoformat，读取时靠 "T" 区分
    return value.isoformat()


def _load_date(raw: str):
    if "T" in raw:
        return datetime.fromisoformat(raw)
    return date.fromisoformat(raw)


def _load_time(raw: str):
    if "T" in raw:
        return datetime.fromisoformat(raw)
    return time.fromisoformat(raw)


def _row_to_reminder(row) -> Reminder:
    return Reminder(
        reminder_id=row[0],
        title=row[1],
        description=row[2],
        due_date=_load_date(row[3]),
        due_time=_load_time(row[4]),
        category=ReminderCategory(row[5]),
        reminder_type=row[6],
        repeat_type=RepeatType(row[7]),
        notify_days_before=row[8],
        status=ReminderStatus(row[9]),
        created_at=datetime.fromisoformat(row[10]),
    )


def _validate(reminder: Reminder) -> int:
    """校验并返回有效到期时刻的毫秒时间戳"""
    if reminder.notify_days_before < 0:
        raise InvalidReminderState(f"notify_days_before 不能为负数: {reminder.notify_days_before}")
    return to_epoch_ms(effective_due(reminder))


class ReminderStore:
    """提醒的持久化存储，调度器只拿到副本，不持有长期引用"""

    def __init__(self, conn: aiosqlite.Connection | None) -> None:
        self.conn = conn

    def _ensure_conn(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise RuntimeError("数据库未初始化，请先调用 open_db()")
        return self.conn

    async def _fetch_reminders(self, sql: str, params: tuple = ()) -> list[Reminder]:
        conn = self._ensure_conn()
        async with conn.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_reminder(row) for row in rows]

    async def insert_reminder(self, reminder: Reminder) -> int:
        """插入提醒，返回生成的 reminder_id；已有 id 时覆盖同 id 的记录"""
        conn = self._ensure_conn()
        due_at_ms = _validate(reminder)
        values = (
            reminder.title,
            reminder.description,
            _dump_date(reminder.due_date),
            _dump_date(reminder.due_time),
            due_at_ms,
            reminder.category.value,
            reminder.reminder_type,
            reminder.repeat_type.value,
            reminder.notify_days_before,
            reminder.status.value,
            reminder.created_at.isoformat(),
        )
        if reminder.reminder_id:
            sql = (
                "INSERT OR REPLACE INTO reminders (reminder_id, title, description, due_date, due_time, due_at_ms, "
                "category, reminder_type, repeat_type, notify_days_before, status, created_at_utc) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
            )
            values = (reminder.reminder_id, *values)
        else:
            sql = (
                "INSERT INTO reminders (title, description, due_date, due_time, due_at_ms, "
                "category, reminder_type, repeat_type, notify_days_before, status, created_at_utc) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
            )
        async with conn.execute(sql, values) as cursor:
            reminder_id = reminder.reminder_id or cursor.lastrowid
        await conn.commit()
        logger.trace(f"创建提醒: reminder_id={reminder_id}, title={reminder.title}, due_at_ms={due_at_ms}")
        return reminder_id

    async def update_reminder(self, reminder: Reminder) -> bool:
        """覆盖已有提醒，返回是否命中记录"""
        conn = self._ensure_conn()
        due_at_ms = _validate(reminder)
        async with conn.execute(
            "UPDATE reminders SET title = ?, description = ?, due_date = ?, due_time = ?, due_at_ms = ?, "
            "category = ?, reminder_type = ?, repeat_type = ?, notify_days_before = ?, status = ?, "
            "updated_at_utc = CURRENT_TIMESTAMP WHERE reminder_id = ?",
            (
                reminder.title,
                reminder.description,
                _dump_date(reminder.due_date),
                _dump_date(reminder.due_time),
                due_at_ms,
                reminder.category.value,
                reminder.reminder_type,
                reminder.repeat_type.value,
                reminder.notify_days_before,
                reminder.status.value,
                reminder.reminder_id,
            ),
        ) as cursor:
            updated = cursor.rowcount > 0
        await conn.commit()
        logger.trace(f"更新提醒: reminder_id={reminder.reminder_id}, status={reminder.status.value}, updated={updated}")
        return updated

    async def delete_reminder(self, reminder_id: int) -> bool:
        conn = self._ensure_conn()
        async with conn.execute("DELETE FROM reminders WHERE reminder_id = ?", (reminder_id,)) as cursor:
            deleted = cursor.rowcount > 0
        await conn.commit()
        logger.trace(f"删除提醒: reminder_id={reminder_id}, deleted={deleted}")
        return deleted

    async def get_reminder_by_id(self, reminder_id: int) -> Optional[Reminder]:
        reminders = await self._fetch_reminders(
            f"SELECT {_COLUMNS} FROM reminders WHERE reminder_id = ?",
            (reminder_id,),
        )
        return reminders[0] if reminders else None

    async def list_active_reminders(self) -> list[Reminder]:
        """所有 active 提醒，按有效到期时刻升序"""
        return await self._fetch_reminders(
            f"SELECT {_COLUMNS} FROM reminders WHERE status = ? ORDER BY due_at_ms ASC, reminder_id ASC",
            (ReminderStatus.ACTIVE.value,),
        )

    async def list_completed_reminders(self) -> list[Reminder]:
        """已完成的提醒(历史)，按到期时刻降序"""
        return await self._fetch_reminders(
            f"SELECT {_COLUMNS} FROM reminders WHERE status = ? ORDER BY due_at_ms DESC, reminder_id DESC",
            (ReminderStatus.COMPLETED.value,),
        )

    async def list_reminders_by_category(self, category: ReminderCategory) -> list[Reminder]:
        return await self._fetch_reminders(
            f"SELECT {_COLUMNS} FROM reminders WHERE status = ? AND category = ? ORDER BY due_at_ms ASC",
            (ReminderStatus.ACTIVE.value, category.value),
        )

    async def list_urgent_reminders(self, now: datetime, until: datetime) -> list[Reminder]:
        """到期时刻落在 [now, until] 内的 active 提醒"""
        return await self._fetch_reminders(
            f"SELECT {_COLUMNS} FROM reminders WHERE status = ? AND due_at_ms BETWEEN ? AND ? ORDER BY due_at_ms ASC",
            (ReminderStatus.ACTIVE.value, to_epoch_ms(now), to_epoch_ms(until)),
        )

    async def count_active_reminders(self) -> int:
        conn = self._ensure_conn()
        async with conn.execute(
            "SELECT COUNT(*) FROM reminders WHERE status = ?",
            (ReminderStatus.ACTIVE.value,),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def mark_completed(self, reminder_id: int) -> bool:
        conn = self._ensure_conn()
        async with conn.execute(
            "UPDATE reminders SET status = ?, updated_at_utc = CURRENT_TIMESTAMP WHERE reminder_id = ?",
            (ReminderStatus.COMPLETED.value, reminder_id),
        ) as cursor:
            updated = cursor.rowcount > 0
        await conn.commit()
        logger.trace(f"标记提醒完成: reminder_id={reminder_id}, updated={updated}")
        return updated
