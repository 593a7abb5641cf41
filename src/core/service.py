from __future__ import annotations

from datetime import datetime
from typing import Callable

from channels.dispatcher import ConnectionSet, NotificationDispatcher
from channels.ws_push import ChannelProtocolHandler
from logger import logger
from utils import now_utc
from world.registry import ReminderRegistry, ReminderSource
from world.scheduler import ReminderScheduler


class ReminderService:
    """提醒服务: 持有提醒集合、连接集合、分发器、调度器和协议处理器。

    进程启动时显式构造并交给 HTTP/WebSocket 层, start() 先全量加载再启动调度,
    stop() 停止调度并清空提醒与连接, 不等待未送达的通知。
    """

    def __init__(
        self,
        source: ReminderSource,
        *,
        tick_interval: float = 1.0,
        window_seconds: float = 2.0,
        send_timeout: float | None = 10.0,
        scope_to_owner: bool = False,
        test_reminder_delay_seconds: int = 60,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.registry = ReminderRegistry(source)
        self.connections = ConnectionSet()
        self.dispatcher = NotificationDispatcher(
            self.connections,
            send_timeout=send_timeout,
            scope_to_owner=scope_to_owner,
        )
        self.scheduler = ReminderScheduler(
            self.registry,
            self.dispatcher,
            tick_interval=tick_interval,
            window_seconds=window_seconds,
            clock=clock,
        )
        self.protocol = ChannelProtocolHandler(
            self.registry,
            self.dispatcher,
            self.connections,
            test_reminder_delay_seconds=test_reminder_delay_seconds,
            clock=clock,
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        logger.info("初始化提醒服务...")
        await self.registry.load_all()
        self.scheduler.start()
        self._started = True
        logger.info("提醒服务已启动")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.scheduler.stop()
        await self.registry.clear()
        for channel in self.connections.snapshot():
            close = getattr(channel, "close", None)
            if close is not None:
                await close(code=1001, reason="service_shutdown")
        self.connections.clear()
        logger.info("提醒服务已关闭")

    def get_status(self) -> dict[str, object]:
        return {
            "started": self._started,
            "reminders": len(self.registry),
            "connections": len(self.connections),
            "last_loaded_at_epoch": self.registry.last_loaded_at,
            "scheduler": self.scheduler.get_status(),
            "scope_to_owner": self.dispatcher.scope_to_owner,
        }


__all__ = ["ReminderService"]
