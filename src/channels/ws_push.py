from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from channels.base import PushChannel, PushSession
from channels.dispatcher import ConnectionSet, NotificationDispatcher
from datamodel import EventType, NotificationEvent, Reminder
from events import E, bus
from logger import logger
from utils import iso_weekday, now_utc
from world.registry import ReminderRegistry

TEST_REMINDER_TITLE = "Test Scheduled Reminder"


def _describe_delay(seconds: float) -> str:
    if seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds:g} seconds"


def _caller_id(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("userId", payload.get("user_id"))
    if value is None or str(value).strip() == "":
        return None
    return str(value)


class ChannelProtocolHandler:
    """单个推送连接上的入站消息处理, 每条消息独立处理, 按接收顺序执行"""

    def __init__(
        self,
        registry: ReminderRegistry,
        dispatcher: NotificationDispatcher,
        connections: ConnectionSet,
        *,
        test_reminder_delay_seconds: int = 60,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.connections = connections
        self.test_reminder_delay_seconds = test_reminder_delay_seconds
        self._clock = clock
        self._next_test_id = -1
        self._handlers: Dict[str, Callable[[PushChannel, Dict[str, Any]], Awaitable[None]]] = {
            "ping": self._handle_ping,
            "test_notification": self._handle_test_notification,
            "create_test_reminder": self._handle_create_test_reminder,
            "get_reminders": self._handle_get_reminders,
            "sync_reminders": self._handle_sync_reminders,
        }

    async def _reply(self, channel: PushChannel, event: NotificationEvent) -> None:
        await self.dispatcher.send_to(channel, event)

    async def on_connect(self, channel: PushChannel) -> None:
        self.connections.register(channel)
        bus.emit(E.CHANNEL_CONNECTED, channel_id=channel.channel_id)
        await self._reply(channel, NotificationEvent(
            type=EventType.WELCOME,
            payload={"message": "Connected to GoutDeau reminder service"},
        ))

    def on_disconnect(self, channel: PushChannel) -> None:
        if self.connections.unregister(channel):
            bus.emit(E.CHANNEL_DISCONNECTED, channel_id=channel.channel_id)

    async def handle_raw(self, channel: PushChannel, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"收到无法解析的消息, 已忽略: channel={channel.channel_id}")
            return
        if not isinstance(payload, dict):
            logger.warning(f"收到非对象消息, 已忽略: channel={channel.channel_id}")
            return
        await self.handle_message(channel, payload)

    async def handle_message(self, channel: PushChannel, payload: Dict[str, Any]) -> None:
        bus.emit(E.CHANNEL_MESSAGE_RECEIVED, channel_id=channel.channel_id)
        msg_type = payload.get("type")
        logger.debug(f"收到消息: channel={channel.channel_id}, type={msg_type}")

        caller = _caller_id(payload)
        if caller is not None and isinstance(channel, PushSession):
            channel.bind_owner(caller)

        handler = self._handlers.get(msg_type) if isinstance(msg_type, str) else None
        if handler is None:
            logger.info(f"未知消息类型, 已忽略: type={msg_type!r}")
            return

        try:
            await handler(channel, payload)
        except Exception as e:
            logger.opt(exception=e).error(f"处理消息异常: type={msg_type}, error={e}")

    async def _handle_ping(self, channel: PushChannel, payload: Dict[str, Any]) -> None:
        await self._reply(channel, NotificationEvent(type=EventType.PONG))

    async def _handle_test_notification(self, channel: PushChannel, payload: Dict[str, Any]) -> None:
        await self.dispatcher.send_test(_caller_id(payload) or channel.owner_id)

    def build_test_reminder(self, owner_id: str, now: Optional[datetime] = None) -> Reminder:
        """构造一条 test_reminder_delay_seconds 秒后触发的临时提醒, 使用负数 id 避免与存储冲突"""
        now = (now or self._clock()).replace(microsecond=0)
        fire_at = now + timedelta(seconds=self.test_reminder_delay_seconds)
        reminder_id = self._next_test_id
        self._next_test_id -= 1
        stamp = now.isoformat()
        delay = _describe_delay(self.test_reminder_delay_seconds)
        return Reminder(
            id=reminder_id,
            owner_id=owner_id,
            title=TEST_REMINDER_TITLE,
            message=f"This is a test reminder scheduled for {delay} from now!",
            time_of_day=fire_at.time(),
            days_of_week=[iso_weekday(fire_at)],
            enabled=True,
            created_at=stamp,
            updated_at=stamp,
        )

    async def _handle_create_test_reminder(self, channel: PushChannel, payload: Dict[str, Any]) -> None:
        owner_id = _caller_id(payload) or channel.owner_id
        if owner_id is None:
            await self._reply(channel, NotificationEvent.error("create_test_reminder", "userId is required"))
            return
        try:
            reminder = self.build_test_reminder(owner_id)
            await self.registry.add(reminder)
        except Exception as e:
            logger.opt(exception=e).error(f"创建测试提醒失败: user_id={owner_id}, error={e}")
            await self._reply(channel, NotificationEvent.error("create_test_reminder", "Failed to create test reminder"))
            return

        logger.info(f"已创建测试提醒: id={reminder.id}, time={reminder.time_of_day}, days={reminder.days_of_week}")
        await self._reply(channel, NotificationEvent(
            type=EventType.TEST_REMINDER_CREATED,
            payload={
                "data": reminder.to_record(),
                "message": f"Test reminder created for {_describe_delay(self.test_reminder_delay_seconds)} from now",
            },
        ))

    async def _handle_get_reminders(self, channel: PushChannel, payload: Dict[str, Any]) -> None:
        owner_id = _caller_id(payload) or channel.owner_id
        reminders = self.registry.get_by_owner(owner_id) if owner_id is not None else []
        await self._reply(channel, NotificationEvent(
            type=EventType.REMINDERS,
            payload={"data": [r.to_record() for r in reminders]},
        ))

    async def _handle_sync_reminders(self, channel: PushChannel, payload: Dict[str, Any]) -> None:
        ok = await self.registry.load_all()
        if not ok:
            await self._reply(channel, NotificationEvent.error("sync_reminders", "Failed to sync reminders"))
            return
        await self._reply(channel, NotificationEvent(
            type=EventType.SYNC_COMPLETE,
            payload={"message": "Reminders synced successfully"},
        ))


def register_fastapi_routes(app: FastAPI, handler: ChannelProtocolHandler, path: str = "/ws") -> None:
    @app.websocket(path)
    async def reminder_push_ws(websocket: WebSocket):
        await websocket.accept()
        session = PushSession(websocket, owner_id=websocket.query_params.get("userId") or None)
        logger.info(f"推送通道已连接: channel={session.channel_id}, path={path}")

        try:
            await handler.on_connect(session)
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    logger.warning(f"收到非文本帧, 已忽略: channel={session.channel_id}")
                    continue
                await handler.handle_raw(session, raw)
        except WebSocketDisconnect:
            logger.debug(f"推送通道已断开: channel={session.channel_id}")
        except Exception as e:
            logger.opt(exception=e).error(f"推送通道处理异常: channel={session.channel_id}, error={e}")
        finally:
            handler.on_disconnect(session)
            await session.close()


__all__ = ["ChannelProtocolHandler", "register_fastapi_routes"]
