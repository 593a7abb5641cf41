from logger import setup_logging, logger
from config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    console_level=CONSOLE_LOG_LEVEL,
)

import asyncio
import signal

import storage.db_config as db_config
import storage.reminder as reminder_storage
from admin.http_server import main_loop as http_main
from core.service import ReminderService

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


async def _open_store() -> None:
    try:
        await db_config.init_db(DB_PATH)
    except Exception as e:
        logger.opt(exception=e).error(f"打开数据库失败: {e}")
        return
    if not await reminder_storage.check_connection():
        logger.warning("存储不可用, 以离线模式运行")


async def main():
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    await _open_store()

    service = ReminderService(
        reminder_storage,
        tick_interval=TICK_INTERVAL_SECONDS,
        window_seconds=FIRE_WINDOW_SECONDS,
        send_timeout=SEND_TIMEOUT_SECONDS,
        scope_to_owner=SCOPE_NOTIFICATIONS_TO_OWNER,
        test_reminder_delay_seconds=TEST_REMINDER_DELAY_SECONDS,
    )

    try:
        await service.start()
        await http_main(shutdown_event, service)
    finally:
        logger.info("关闭 GoutDeau 提醒服务...")
        await service.stop()

        logger.info("关闭数据库连接...")
        await db_config.close_db()
        logger.info("GoutDeau 已关闭")


if __name__ == "__main__":
    logger.info("启动 GoutDeau 提醒服务...")
    asyncio.run(main())
