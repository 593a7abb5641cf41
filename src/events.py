"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

总线只承载旁路事件(指标、审计日志), 调度与推送的主路径不经过总线,
处理器抛出的异常不会影响发送方。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Awaitable, Callable

from logger import logger

AsyncHandler = Callable[..., Awaitable[None]]

# 事件名集中定义
class E:
    REMINDER_TRIGGERED = "reminder.triggered"
    NOTIFICATION_BROADCAST = "notification.broadcast"
    CHANNEL_CONNECTED = "channel.connected"
    CHANNEL_DISCONNECTED = "channel.disconnected"
    CHANNEL_MESSAGE_RECEIVED = "channel.message_received"
    REGISTRY_SYNCED = "registry.synced"


class Bus(AsyncIOEventEmitter):
    def __init__(self) -> None:
        super().__init__()
        super(Bus, self).on("error", self._log_handler_error)

    @staticmethod
    def _log_handler_error(error: Exception) -> None:
        logger.opt(exception=error).error(f"事件处理器异常: {error}")

    def on(self, event: str) -> Callable[[AsyncHandler], AsyncHandler]:
        """注册事件处理器装饰器"""
        def decorator(handler: AsyncHandler) -> AsyncHandler:
            logger.debug(f"注册事件处理器: {event} -> {handler.__name__}")
            super(Bus, self).on(event, handler)
            return handler

        return decorator


bus = Bus()

__all__ = ["bus", "E"]
