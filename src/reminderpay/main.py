from reminderpay.logger import setup_logging, logger
from reminderpay.config.settings import *

import asyncio
import signal

from reminderpay.admin.http_server import main_loop as admin_http_main
from reminderpay.core.context import AppContext

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


async def main():
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    context = await AppContext.create(DB_PATH)
    try:
        # 重启后队列中的任务视为全部丢失，延迟对账
        event = await context.emit_startup_signal()
        logger.info(f"已发出启动信号: {event}")

        tasks = [context.runner.main_loop(shutdown_event)]
        if ADMIN_AUTH_TOKEN:
            tasks.append(admin_http_main(context, shutdown_event))
        else:
            logger.warning("未配置 ADMIN_AUTH_TOKEN，Admin HTTP 服务已禁用")

        await asyncio.gather(*tasks)
    finally:
        logger.info("关闭 ReminderPay...")
        await context.close()
        logger.info("ReminderPay 已关闭")


def run() -> None:
    setup_logging(
        log_level=LOG_LEVEL,
        log_file=LOG_FILE,
        console_level=CONSOLE_LOG_LEVEL,
    )
    logger.info("启动 ReminderPay...")
    asyncio.run(main())


if __name__ == "__main__":
    run()
