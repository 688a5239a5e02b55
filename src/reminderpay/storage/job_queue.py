"""可持久化的延时任务队列

每个任务由 key(`reminder_{id}_{kind}`) 唯一标识：
1. 同 key 入队是原子替换(upsert)，旧任务被新任务覆盖，不会重复投递；
2. 取消不存在的 key 是空操作；
3. 执行器按 job_id 而不是 key 删除已触发的任务，避免误删投递期间被替换进来的新任务。
"""

from datetime import datetime
from functools import wraps
from typing import Optional, Protocol

import aiosqlite
from ulid import ULID

from reminderpay.datamodel import *
from reminderpay.errors import QueueUnavailable
from reminderpay.logger import logger
from reminderpay.utils import from_epoch_ms, now_utc, to_epoch_ms

__all__ = ["JobQueue", "SqliteJobQueue"]

_COLUMNS = "job_id, job_key, reminder_id, kind, fire_at_ms, title, body, created_at_utc"


class JobQueue(Protocol):
    async def enqueue_unique(self, key: str, fire_at: datetime, payload: JobPayload) -> ScheduledJob: ...

    async def cancel_unique(self, key: str) -> bool: ...

    async def get_job(self, key: str) -> Optional[ScheduledJob]: ...

    async def list_jobs(self) -> list[ScheduledJob]: ...

    async def list_due_jobs(self, now: datetime, limit: int = 100) -> list[ScheduledJob]: ...

    async def remove_job(self, job_id: str) -> bool: ...


def _row_to_job(row) -> ScheduledJob:
    return ScheduledJob(
        job_id=row[0],
        job_key=row[1],
        reminder_id=row[2],
        kind=JobKind(row[3]),
        fire_at=from_epoch_ms(row[4]),
        title=row[5],
        body=row[6],
        created_at=datetime.fromisoformat(row[7]),
    )


def _queue_call(func):
    """把数据库层错误统一转换为 QueueUnavailable"""
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        if self.conn is None:
            raise QueueUnavailable("任务队列未连接数据库")
        try:
            return await func(self, *args, **kwargs)
        except aiosqlite.Error as e:
            raise QueueUnavailable(f"任务队列操作失败: {func.__name__}: {e}") from e
    return wrapper


class SqliteJobQueue:
    def __init__(self, conn: aiosqlite.Connection | None) -> None:
        self.conn = conn

    @_queue_call
    async def enqueue_unique(self, key: str, fire_at: datetime, payload: JobPayload) -> ScheduledJob:
        job = ScheduledJob(
            job_id=str(ULID()),
            job_key=key,
            reminder_id=payload.reminder_id,
            kind=payload.kind,
            fire_at=from_epoch_ms(to_epoch_ms(fire_at)),
            title=payload.title,
            body=payload.body,
            created_at=now_utc(),
        )
        await self.conn.execute(
            f"INSERT INTO jobs ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(job_key) DO UPDATE SET "
            "job_id = excluded.job_id, reminder_id = excluded.reminder_id, kind = excluded.kind, "
            "fire_at_ms = excluded.fire_at_ms, title = excluded.title, body = excluded.body, "
            "created_at_utc = excluded.created_at_utc",
            (
                job.job_id,
                job.job_key,
                job.reminder_id,
                job.kind.value,
                to_epoch_ms(job.fire_at),
                job.title,
                job.body,
                job.created_at.isoformat(),
            ),
        )
        await self.conn.commit()
        logger.trace(f"任务入队: key={key}, job_id={job.job_id}, fire_at={job.fire_at.isoformat()}")
        return job

    @_queue_call
    async def cancel_unique(self, key: str) -> bool:
        """返回是否真的删除了任务"""
        async with self.conn.execute("DELETE FROM jobs WHERE job_key = ?", (key,)) as cursor:
            removed = cursor.rowcount > 0
        await self.conn.commit()
        if removed:
            logger.trace(f"任务已取消: key={key}")
        return removed

    @_queue_call
    async def get_job(self, key: str) -> Optional[ScheduledJob]:
        async with self.conn.execute(f"SELECT {_COLUMNS} FROM jobs WHERE job_key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_job(row) if row else None

    @_queue_call
    async def list_jobs(self) -> list[ScheduledJob]:
        async with self.conn.execute(f"SELECT {_COLUMNS} FROM jobs ORDER BY fire_at_ms ASC, job_key ASC") as cursor:
            rows = await cursor.fetchall()
        return [_row_to_job(row) for row in rows]

    @_queue_call
    async def list_due_jobs(self, now: datetime, limit: int = 100) -> list[ScheduledJob]:
        async with self.conn.execute(
            f"SELECT {_COLUMNS} FROM jobs WHERE fire_at_ms <= ? ORDER BY fire_at_ms ASC LIMIT ?",
            (to_epoch_ms(now), limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_job(row) for row in rows]

    @_queue_call
    async def remove_job(self, job_id: str) -> bool:
        async with self.conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,)) as cursor:
            removed = cursor.rowcount > 0
        await self.conn.commit()
        return removed
