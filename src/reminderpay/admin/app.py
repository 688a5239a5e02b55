from __future__ import annotations

import asyncio
import hmac
import time
from dataclasses import replace
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from reminderpay import __version__
from reminderpay.config.settings import ADMIN_AUTH_TOKEN
from reminderpay.core.context import AppContext
from reminderpay.datamodel import Reminder
from reminderpay.errors import InvalidReminderState, ReminderNotFound
from reminderpay.events import E
from reminderpay.logger import logger
from reminderpay.scheduling.priority import classify, is_overdue, time_until_due
from reminderpay.utils import effective_due, format_full, format_time_remaining

from .schemas import BootSignalRequest, ReminderIn, RuntimeControl, ShutdownRequest


def extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    token_header = request.headers.get("X-ReminderPay-Token", "").strip()
    return token_header or None


def reminder_to_dict(reminder: Reminder, now) -> dict[str, Any]:
    due = effective_due(reminder)
    return {
        "reminder_id": reminder.reminder_id,
        "title": reminder.title,
        "description": reminder.description,
        "due_date": reminder.due_date.isoformat(),
        "due_time": reminder.due_time.isoformat(),
        "due_at": due.isoformat(),
        "due_label": format_full(due),
        "category": reminder.category.value,
        "reminder_type": reminder.reminder_type,
        "repeat_type": reminder.repeat_type.value,
        "notify_days_before": reminder.notify_days_before,
        "status": reminder.status.value,
        "created_at": reminder.created_at.isoformat(),
        "priority": classify(due, now).value,
        "overdue": is_overdue(due, now),
        "remaining": format_time_remaining(time_until_due(due, now)),
    }


def create_app(context: AppContext, control: RuntimeControl, auth_token: str = ADMIN_AUTH_TOKEN) -> FastAPI:
    app = FastAPI(title="ReminderPay Admin API", version=__version__)
    service = context.service

    if not auth_token:
        logger.warning("未配置 ADMIN_AUTH_TOKEN，管理 API 将不可访问")

    async def require_admin_auth(request: Request) -> dict[str, str]:
        if not auth_token:
            raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

        token = extract_token(request)
        if token and hmac.compare_digest(token, auth_token):
            return {"auth": "token", "user": "admin-token"}

        raise HTTPException(status_code=401, detail="未授权")

    async def load_reminder(reminder_id: int) -> Reminder:
        try:
            return await service.get_reminder(reminder_id)
        except ReminderNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "domain_now_utc": context.clock.now().isoformat(),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/metrics")
    async def get_metrics(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return {
            "runtime": context.metrics.snapshot(),
            "components": {
                "runner": context.runner.get_status(),
                "recovery": context.coordinator.get_status(),
            },
            "active_reminders": await context.store.count_active_reminders(),
            "active_tasks": len(asyncio.all_tasks()),
        }

    @app.get("/api/v1/reminders")
    async def list_reminders(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        now = context.clock.now()
        items = [reminder_to_dict(r, now) for r in await service.list_active()]
        return {"items": items, "total": len(items)}

    @app.get("/api/v1/reminders/history")
    async def list_history(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        now = context.clock.now()
        items = [reminder_to_dict(r, now) for r in await service.list_completed()]
        return {"items": items, "total": len(items)}

    @app.get("/api/v1/reminders/{reminder_id}")
    async def get_reminder(reminder_id: int, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        reminder = await load_reminder(reminder_id)
        return reminder_to_dict(reminder, context.clock.now())

    @app.post("/api/v1/reminders")
    async def create_reminder(payload: ReminderIn, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        try:
            saved = await service.add_reminder(payload.to_reminder())
        except InvalidReminderState as e:
            raise HTTPException(status_code=422, detail=str(e))
        return reminder_to_dict(saved, context.clock.now())

    @app.put("/api/v1/reminders/{reminder_id}")
    async def update_reminder(reminder_id: int, payload: ReminderIn, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        existing = await load_reminder(reminder_id)
        # created_at 不可变
        reminder = replace(payload.to_reminder(reminder_id), created_at=existing.created_at)
        try:
            updated = await service.update_reminder(reminder)
        except InvalidReminderState as e:
            raise HTTPException(status_code=422, detail=str(e))
        except ReminderNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        return reminder_to_dict(updated, context.clock.now())

    @app.delete("/api/v1/reminders/{reminder_id}")
    async def delete_reminder(reminder_id: int, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        try:
            await service.delete_reminder(reminder_id)
        except ReminderNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"ok": True, "reminder_id": reminder_id}

    @app.post("/api/v1/reminders/{reminder_id}/complete")
    async def complete_reminder(reminder_id: int, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        try:
            await service.mark_completed(reminder_id)
        except ReminderNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"ok": True, "reminder_id": reminder_id}

    @app.get("/api/v1/jobs")
    async def list_jobs(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        jobs = await context.queue.list_jobs()
        items = [
            {
                "job_id": job.job_id,
                "job_key": job.job_key,
                "reminder_id": job.reminder_id,
                "kind": job.kind.value,
                "fire_at": job.fire_at.isoformat(),
                "title": job.title,
                "body": job.body,
            }
            for job in jobs
        ]
        return {"items": items, "total": len(items)}

    @app.post("/api/v1/system/signal")
    async def system_signal(payload: BootSignalRequest, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        if payload.delay_seconds is not None:
            context.coordinator.request_reconcile(payload.delay_seconds)
        else:
            context.bus.emit(E.SYSTEM_BOOT if payload.kind == "boot" else E.SYSTEM_APP_UPDATED)
        logger.info(f"收到系统信号: kind={payload.kind}")
        return {"ok": True, "kind": payload.kind}

    @app.post("/api/v1/system/reconcile")
    async def reconcile_now(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        report = await context.coordinator.reconcile()
        return {"ok": True, "report": report.to_dict()}

    @app.post("/api/v1/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    return app
