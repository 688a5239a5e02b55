"""提醒优先级分级

diff = 到期时刻 - 当前时刻(按绝对时间，可能为负)
- diff <= 24h          -> URGENT (包括已过期)
- 24h < diff <= 72h    -> SOON
- diff > 72h           -> UPCOMING
边界值归入较低的一档。
"""

from datetime import datetime, timedelta

from reminderpay.datamodel import Reminder, ReminderPriority
from reminderpay.utils import DAYS_3, HOURS_24, effective_due, to_utc

__all__ = ["classify", "priority_of", "is_overdue", "time_until_due"]


def time_until_due(due: datetime, now: datetime) -> timedelta:
    return to_utc(due) - to_utc(now)


def classify(due: datetime, now: datetime) -> ReminderPriority:
    diff = time_until_due(due, now)
    if diff <= HOURS_24:
        return ReminderPriority.URGENT
    if diff <= DAYS_3:
        return ReminderPriority.SOON
    return ReminderPriority.UPCOMING


def priority_of(reminder: Reminder, now: datetime) -> ReminderPriority:
    return classify(effective_due(reminder), now)


def is_overdue(due: datetime, now: datetime) -> bool:
    return time_until_due(due, now) < timedelta(0)
