"""时间计算工具

提醒的日期和时间由两个独立的时间戳给出，这里负责把它们合并成唯一的“有效到期时刻”，
以及 UTC/毫秒时间戳之间的换算。所有比较都在 UTC 下进行，避免同一时区对象下
datetime 相减按墙钟计算而在夏令时切换时出错。
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from reminderpay.config.settings import USER_TIMEZONE
from reminderpay.errors import InvalidReminderState

__all__ = [
    "HOURS_1", "HOURS_24", "DAYS_3",
    "now_utc", "to_utc", "to_epoch_ms", "from_epoch_ms",
    "combine_date_and_time", "effective_due",
    "format_date", "format_time", "format_full", "format_time_remaining",
    "epoch_plus_days",
]

HOURS_1 = timedelta(hours=1)
HOURS_24 = timedelta(hours=24)
DAYS_3 = timedelta(days=3)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidReminderState(f"未知时区: {tz_name}") from e


def now_utc() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime, tz_name: str = USER_TIMEZONE) -> datetime:
    """无时区信息的时间按用户时区解释"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_zone(tz_name))
    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: datetime, tz_name: str = USER_TIMEZONE) -> int:
    delta = to_utc(dt, tz_name) - _EPOCH
    return delta // timedelta(milliseconds=1)


def from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms // 1000, tz=timezone.utc) + timedelta(milliseconds=ms % 1000)


def _to_local(dt: datetime, tz: ZoneInfo) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def combine_date_and_time(
    date_value: Union[datetime, date, None],
    time_value: Union[datetime, time, None],
    tz_name: str = USER_TIMEZONE,
) -> datetime:
    """取 date_value 的日期部分与 time_value 的时、分，秒与微秒清零，结果带用户时区"""
    if date_value is None or time_value is None:
        raise InvalidReminderState("提醒缺少日期或时间，无法计算到期时刻")

    tz = _zone(tz_name)

    if isinstance(date_value, datetime):
        day = _to_local(date_value, tz).date()
    elif isinstance(date_value, date):
        day = date_value
    else:
        raise InvalidReminderState(f"无法识别的日期类型: {type(date_value).__name__}")

    if isinstance(time_value, datetime):
        local_time = _to_local(time_value, tz)
        hour, minute = local_time.hour, local_time.minute
    elif isinstance(time_value, time):
        hour, minute = time_value.hour, time_value.minute
    else:
        raise InvalidReminderState(f"无法识别的时间类型: {type(time_value).__name__}")

    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def effective_due(reminder, tz_name: str = USER_TIMEZONE) -> datetime:
    return combine_date_and_time(reminder.due_date, reminder.due_time, tz_name)


def format_date(dt: datetime, tz_name: str = USER_TIMEZONE) -> str:
    return to_utc(dt, tz_name).astimezone(_zone(tz_name)).strftime("%Y-%m-%d")


def format_time(dt: datetime, tz_name: str = USER_TIMEZONE) -> str:
    return to_utc(dt, tz_name).astimezone(_zone(tz_name)).strftime("%H:%M")


def format_full(dt: datetime, tz_name: str = USER_TIMEZONE) -> str:
    return f"{format_date(dt, tz_name)} {format_time(dt, tz_name)}"


def format_time_remaining(diff: timedelta) -> str:
    """倒计时文案，例如 "还有 2 天"、"还有 3 小时"、"已过期" """
    if diff < timedelta(0):
        return "已过期"
    hours = int(diff // HOURS_1)
    days = diff.days
    if hours < 1:
        return "不到 1 小时！"
    if hours < 24:
        return f"还有 {hours} 小时"
    if days == 1:
        return "明天"
    return f"还有 {days} 天"


def epoch_plus_days(dt: datetime, days: int) -> datetime:
    """按绝对的 24 小时累加(days 可为负)，而非墙钟日期"""
    return to_utc(dt) + days * HOURS_24
