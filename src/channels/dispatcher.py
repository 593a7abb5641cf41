"""
连接集合与通知分发。

广播时先对连接集合取快照再并发写入, 每个连接各自处理异常与超时:
写入失败或超时的连接视为已断开并移出集合, 不影响其他连接。
通知不确认、不重试、不持久化, 发送时已关闭的连接直接收不到。
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Iterator, List, Optional, Set

from channels.base import PushChannel
from datamodel import NotificationEvent, Reminder
from events import E, bus
from logger import logger


class ConnectionSet:
    def __init__(self) -> None:
        self._channels: Set[PushChannel] = set()

    def register(self, channel: PushChannel) -> None:
        self._channels.add(channel)
        logger.info(f"客户端已连接: channel={channel.channel_id}, 当前共 {len(self._channels)} 个")

    def unregister(self, channel: PushChannel) -> bool:
        if channel not in self._channels:
            return False
        self._channels.discard(channel)
        logger.info(f"客户端已断开: channel={channel.channel_id}, 当前共 {len(self._channels)} 个")
        return True

    def snapshot(self) -> List[PushChannel]:
        return list(self._channels)

    def clear(self) -> None:
        self._channels.clear()

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, channel: object) -> bool:
        return channel in self._channels

    def __iter__(self) -> Iterator[PushChannel]:
        return iter(self.snapshot())


class NotificationDispatcher:
    """把通知事件序列化一次后推送给连接集合中的所有连接。

    scope_to_owner=False 时沿用旧行为: 所有连接都会收到所有用户的提醒(存在跨用户泄露);
    开启后带 owner_id 的事件只发给绑定了同一用户的连接。
    """

    def __init__(
        self,
        connections: ConnectionSet,
        *,
        send_timeout: Optional[float] = 10.0,
        scope_to_owner: bool = False,
    ) -> None:
        self.connections = connections
        self.send_timeout = send_timeout
        self.scope_to_owner = scope_to_owner

    def _targets(self, event: NotificationEvent) -> List[PushChannel]:
        channels = self.connections.snapshot()
        if not self.scope_to_owner or event.owner_id is None:
            return channels
        return [c for c in channels if c.owner_id == event.owner_id]

    async def _deliver(self, channel: PushChannel, data: str) -> bool:
        if not channel.is_open:
            logger.debug(f"连接已关闭, 跳过推送: channel={channel.channel_id}")
            return False
        try:
            if self.send_timeout:
                await asyncio.wait_for(channel.send_text(data), timeout=self.send_timeout)
            else:
                await channel.send_text(data)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"推送超时, 视为断开: channel={channel.channel_id}")
            return False
        except Exception as e:
            logger.warning(f"推送失败, 视为断开: channel={channel.channel_id}, error={e}")
            return False

    async def broadcast(self, event: NotificationEvent) -> int:
        """推送给当前所有连接, 返回成功投递的数量, 不向调用方抛出写入异常"""
        data = event.to_json()
        targets = self._targets(event)
        if not targets:
            logger.debug(f"没有可推送的连接: type={event.type.value}")
            bus.emit(E.NOTIFICATION_BROADCAST, type=event.type.value, delivered=0, dropped=0)
            return 0

        results = await asyncio.gather(*(self._deliver(c, data) for c in targets))

        dropped = 0
        for channel, ok in zip(targets, results):
            if not ok and self.connections.unregister(channel):
                dropped += 1
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"推送完成: type={event.type.value}, delivered={delivered}, dropped={dropped}")
        bus.emit(E.NOTIFICATION_BROADCAST, type=event.type.value, delivered=delivered, dropped=dropped)
        return delivered

    async def dispatch_reminder(self, reminder: Reminder, now: Optional[datetime] = None) -> int:
        logger.info(f"推送提醒: id={reminder.id}, title={reminder.title}")
        return await self.broadcast(NotificationEvent.reminder(reminder, now))

    async def send_test(self, owner_id: Optional[str]) -> int:
        logger.info(f"推送测试通知: user_id={owner_id}")
        return await self.broadcast(NotificationEvent.test(owner_id))

    async def send_to(self, channel: PushChannel, event: NotificationEvent) -> bool:
        """直接回复单个连接, 失败时同样移出集合"""
        ok = await self._deliver(channel, event.to_json())
        if not ok:
            self.connections.unregister(channel)
        return ok


__all__ = ["ConnectionSet", "NotificationDispatcher"]
