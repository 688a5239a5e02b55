"""
应用内时钟服务

system 时间直接取 OS 时间；domain 时间 = system 时间(或固定基准) + 可前进的偏移量，
用于在不真正等待的情况下验证提醒的触发、优先级变化等行为。
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

from reminderpay.utils import now_utc, to_utc


class ClockService:
    def __init__(self, fixed_now: datetime | None = None) -> None:
        self._lock = threading.Lock()
        self._offset = timedelta(0)
        self._fixed_now = to_utc(fixed_now) if fixed_now is not None else None

    def _base(self) -> datetime:
        if self._fixed_now is not None:
            return self._fixed_now
        return now_utc()

    def now(self) -> datetime:
        """domain 时间(UTC)"""
        with self._lock:
            offset = self._offset
        return self._base() + offset

    def advance(self, delta: timedelta) -> timedelta:
        """前进 domain 时间，返回变更后的偏移量"""
        if delta <= timedelta(0):
            raise ValueError("delta 必须为正")
        with self._lock:
            self._offset += delta
            return self._offset


__all__ = ["ClockService"]
