"""ReminderPay 提醒调度核心

负责把提醒的到期时间换算成具体的通知触发时间，并在可持久化的任务队列中
创建、替换、取消这些通知任务；进程重启后由 RecoveryCoordinator 重新对账。
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
