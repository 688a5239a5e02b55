from datetime import datetime, timedelta, timezone

from conftest import NOW, make_reminder

from reminderpay.datamodel import ReminderPriority
from reminderpay.scheduling.priority import classify, is_overdue, priority_of, time_until_due

MS = timedelta(milliseconds=1)


def test_boundaries_fall_into_lower_tier():
    assert classify(NOW + timedelta(hours=24), NOW) is ReminderPriority.URGENT
    assert classify(NOW + timedelta(hours=24) + MS, NOW) is ReminderPriority.SOON
    assert classify(NOW + timedelta(hours=72), NOW) is ReminderPriority.SOON
    assert classify(NOW + timedelta(hours=72) + MS, NOW) is ReminderPriority.UPCOMING


def test_overdue_is_urgent():
    due = NOW - timedelta(days=10)
    assert classify(due, NOW) is ReminderPriority.URGENT
    assert is_overdue(due, NOW)
    assert not is_overdue(NOW, NOW)


def test_time_until_due_ignores_tzinfo_identity():
    shanghai_due = datetime(2026, 3, 3, 9, 0, tzinfo=timezone(timedelta(hours=8)))
    assert time_until_due(shanghai_due, NOW) == timedelta(hours=24)


def test_priority_of_uses_effective_due():
    reminder = make_reminder(NOW + timedelta(days=5))
    assert priority_of(reminder, NOW) is ReminderPriority.UPCOMING
    assert priority_of(reminder, NOW + timedelta(days=3)) is ReminderPriority.SOON
