from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, time

from pydantic import BaseModel, Field

from reminderpay.datamodel import Reminder, ReminderCategory, ReminderStatus, RepeatType


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class ReminderIn(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    due_date: date
    due_time: time
    category: ReminderCategory = ReminderCategory.OTHER
    reminder_type: str = "Task"
    repeat_type: RepeatType = RepeatType.NONE
    notify_days_before: int = Field(default=0, ge=0)
    status: ReminderStatus = ReminderStatus.ACTIVE

    def to_reminder(self, reminder_id: int = 0) -> Reminder:
        return Reminder(
            reminder_id=reminder_id,
            title=self.title,
            description=self.description,
            due_date=self.due_date,
            due_time=self.due_time,
            category=self.category,
            reminder_type=self.reminder_type,
            repeat_type=self.repeat_type,
            notify_days_before=self.notify_days_before,
            status=self.status,
        )


class BootSignalRequest(BaseModel):
    kind: str = Field(default="boot", pattern="^(boot|app_updated)$")
    delay_seconds: float | None = Field(default=None, ge=0)
