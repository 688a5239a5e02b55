from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional, Union

__all__ = [
    "ReminderCategory", "RepeatType", "ReminderStatus", "ReminderPriority",
    "Reminder",
    "JobKind", "JobPayload", "ScheduledJob", "job_key_for",
]

DueDate = Union[datetime, date]
DueTime = Union[datetime, time]


# ----------------- Reminder 数据模型 ----------------
class ReminderCategory(str, Enum):
    PAYMENT = "payment"
    PERSONAL = "personal"
    WORK = "work"
    STUDY = "study"
    OTHER = "other"


class RepeatType(str, Enum):
    # 仅作为元数据保存，调度器不会据此生成循环任务
    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ReminderStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReminderPriority(str, Enum):
    URGENT = "urgent"      # <= 24 小时(含已过期)
    SOON = "soon"          # <= 72 小时
    UPCOMING = "upcoming"  # > 72 小时


@dataclass
class Reminder:
    title: str
    due_date: Optional[DueDate]  # 只取日期部分
    due_time: Optional[DueTime]  # 只取时、分
    reminder_id: int = 0  # 0 表示尚未入库
    description: str = ""
    category: ReminderCategory = ReminderCategory.OTHER
    reminder_type: str = "Task"
    repeat_type: RepeatType = RepeatType.NONE
    notify_days_before: int = 0
    status: ReminderStatus = ReminderStatus.ACTIVE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.status is ReminderStatus.ACTIVE


# ----------------- Job 数据模型 ----------------
class JobKind(str, Enum):
    ONTIME = "ontime"
    EARLY = "early"


def job_key_for(reminder_id: int, kind: JobKind) -> str:
    return f"reminder_{reminder_id}_{kind.value}"


@dataclass(frozen=True)
class JobPayload:
    reminder_id: int
    kind: JobKind
    title: str
    body: str


@dataclass(frozen=True)
class ScheduledJob:
    job_id: str  # 每次替换都会生成新的 ULID
    job_key: str
    reminder_id: int
    kind: JobKind
    fire_at: datetime  # UTC
    title: str
    body: str
    created_at: datetime
