"""
简单的运行时指标收集类，统计任务入队/取消/触发、通知投递与对账次数，方便后续扩展和监控。
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class RuntimeMetrics:
    jobs_enqueued_count: int = 0
    jobs_cancelled_count: int = 0
    jobs_fired_count: int = 0
    delivered_count: int = 0
    delivery_denied_count: int = 0
    delivery_error_count: int = 0
    reconcile_count: int = 0
    reconcile_failed_count: int = 0
    last_reconcile_at: float | None = None

    def record_job_enqueued(self) -> None:
        self.jobs_enqueued_count += 1

    def record_job_cancelled(self) -> None:
        self.jobs_cancelled_count += 1

    def record_job_fired(self) -> None:
        self.jobs_fired_count += 1

    def record_delivery(self, denied: bool = False, error: bool = False) -> None:
        if denied:
            self.delivery_denied_count += 1
        elif error:
            self.delivery_error_count += 1
        else:
            self.delivered_count += 1

    def record_reconcile(self, failed: int = 0) -> None:
        self.reconcile_count += 1
        self.reconcile_failed_count += max(0, failed)
        self.last_reconcile_at = time.time()

    def snapshot(self) -> dict:
        return {
            "jobs_enqueued_count": self.jobs_enqueued_count,
            "jobs_cancelled_count": self.jobs_cancelled_count,
            "jobs_fired_count": self.jobs_fired_count,
            "delivered_count": self.delivered_count,
            "delivery_denied_count": self.delivery_denied_count,
            "delivery_error_count": self.delivery_error_count,
            "reconcile_count": self.reconcile_count,
            "reconcile_failed_count": self.reconcile_failed_count,
            "last_reconcile_at_epoch": self.last_reconcile_at,
            "last_reconcile_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_reconcile_at))
                if self.last_reconcile_at is not None
                else None
            ),
        }


__all__ = ["RuntimeMetrics"]
