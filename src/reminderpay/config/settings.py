import os
from dotenv import load_dotenv
from reminderpay.logger import logger
load_dotenv()

__all__ = [
    "USER_TIMEZONE",
    "DB_PATH", "LOG_FILE", "LOG_LEVEL", "CONSOLE_LOG_LEVEL",
    "JOB_POLL_INTERVAL_SECONDS", "JOB_POLL_BATCH_SIZE", "RECOVERY_DELAY_SECONDS", "DELIVERY_MAX_ATTEMPTS",
    "NOTIFICATIONS_ENABLED",
    "DEFAULT_NOTIFICATION_TITLE", "DEFAULT_NOTIFICATION_BODY",
    "ONTIME_BODY_TEMPLATE", "EARLY_TITLE", "EARLY_BODY_TEMPLATE",
    "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default


def _parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default


# 用户时区，未带时区信息的提醒日期/时间都按此时区解释
USER_TIMEZONE = os.getenv("USER_TIMEZONE", "Asia/Shanghai")

# 存储与日志
DB_PATH = os.getenv("DB_PATH", "data/reminderpay.db")
LOG_FILE = os.getenv("LOG_FILE", "logs/reminderpay.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "TRACE").strip().upper()
CONSOLE_LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO").strip().upper()

# 任务队列
JOB_POLL_INTERVAL_SECONDS = _parse_float("JOB_POLL_INTERVAL_SECONDS", 5.0)
if JOB_POLL_INTERVAL_SECONDS <= 0:
    logger.warning("JOB_POLL_INTERVAL_SECONDS 必须大于 0, 已回退到 5 秒")
    JOB_POLL_INTERVAL_SECONDS = 5.0

JOB_POLL_BATCH_SIZE = _parse_int("JOB_POLL_BATCH_SIZE", 100)

# 开机/更新后等待系统稳定再对账
RECOVERY_DELAY_SECONDS = _parse_float("RECOVERY_DELAY_SECONDS", 5.0)
if RECOVERY_DELAY_SECONDS < 0:
    logger.warning("RECOVERY_DELAY_SECONDS 不能为负数, 已回退到 5 秒")
    RECOVERY_DELAY_SECONDS = 5.0

DELIVERY_MAX_ATTEMPTS = _parse_int("DELIVERY_MAX_ATTEMPTS", 3)
if DELIVERY_MAX_ATTEMPTS < 1:
    logger.warning("DELIVERY_MAX_ATTEMPTS 至少为 1, 已回退到 3")
    DELIVERY_MAX_ATTEMPTS = 3

# 通知权限，关闭时投递会被静默丢弃
NOTIFICATIONS_ENABLED = _parse_bool("NOTIFICATIONS_ENABLED", True)

# 通知文案
DEFAULT_NOTIFICATION_TITLE = os.getenv("DEFAULT_NOTIFICATION_TITLE", "ReminderPay")
DEFAULT_NOTIFICATION_BODY = os.getenv("DEFAULT_NOTIFICATION_BODY", "你有一条待处理的提醒")
ONTIME_BODY_TEMPLATE = os.getenv("ONTIME_BODY_TEMPLATE", "就是今天！{title}")
EARLY_TITLE = os.getenv("EARLY_TITLE", "即将到期的提醒")
EARLY_BODY_TEMPLATE = os.getenv("EARLY_BODY_TEMPLATE", "距离「{title}」还有 {days} 天")

# Admin API
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = _parse_int("ADMIN_HTTP_PORT", 18080)
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")
