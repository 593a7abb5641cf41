from __future__ import annotations

import asyncio
import time

import uvicorn
from config.settings import CORS_ALLOW_ORIGINS, HTTP_HOST, HTTP_PORT, WS_PATH
from core.service import ReminderService
from logger import logger

from .app import create_app
from .schemas import RuntimeControl


async def _wait_shutdown_signal(shutdown_event: asyncio.Event, server: uvicorn.Server) -> None:
    await shutdown_event.wait()
    server.should_exit = True


async def main_loop(shutdown_event: asyncio.Event, service: ReminderService) -> None:
    control = RuntimeControl(
        shutdown_event=shutdown_event,
        started_at=time.time(),
    )
    app = create_app(control, service, ws_path=WS_PATH, cors_allow_origins=CORS_ALLOW_ORIGINS)

    config = uvicorn.Config(
        app,
        host=HTTP_HOST,
        port=HTTP_PORT,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(config)
    # 嵌入到主进程时，统一由 main.py 处理系统信号。
    server.install_signal_handlers = lambda: None

    watcher = asyncio.create_task(_wait_shutdown_signal(shutdown_event, server))
    logger.info(f"HTTP 服务准备启动: http://{HTTP_HOST}:{HTTP_PORT}, WebSocket: ws://{HTTP_HOST}:{HTTP_PORT}{WS_PATH}")
    try:
        await server.serve()
    finally:
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass
        logger.info("HTTP 服务已关闭")
