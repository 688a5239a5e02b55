"""把管理 API 嵌入主进程运行，随 shutdown_event 一起退出"""

from __future__ import annotations

import asyncio
import time

import uvicorn

from reminderpay.config.settings import ADMIN_HTTP_HOST, ADMIN_HTTP_PORT
from reminderpay.core.context import AppContext
from reminderpay.logger import logger

from .app import create_app
from .schemas import RuntimeControl


def build_server(context: AppContext, control: RuntimeControl) -> uvicorn.Server:
    config = uvicorn.Config(
        create_app(context, control),
        host=ADMIN_HTTP_HOST,
        port=ADMIN_HTTP_PORT,
        # 日志已由 logger 模块桥接到 loguru，不让 uvicorn 覆盖
        log_config=None,
        access_log=False,
    )
    server = uvicorn.Server(config)
    server.install_signal_handlers = lambda: None
    return server


async def main_loop(context: AppContext, shutdown_event: asyncio.Event) -> None:
    control = RuntimeControl(shutdown_event=shutdown_event, started_at=time.time())
    server = build_server(context, control)

    async def stop_when_requested() -> None:
        await shutdown_event.wait()
        server.should_exit = True

    watcher = asyncio.create_task(stop_when_requested(), name="reminderpay-admin-watcher")
    logger.info(f"Admin HTTP 服务启动: http://{ADMIN_HTTP_HOST}:{ADMIN_HTTP_PORT}")
    try:
        await server.serve()
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)
        # 远程 shutdown 请求只设置了事件，这里保证其它组件也能退出
        shutdown_event.set()
        logger.info("Admin HTTP 服务已关闭")
