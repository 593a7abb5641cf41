from __future__ import annotations

import asyncio
import uuid
from typing import Optional, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState


class PushChannel(Protocol):
    """推送通道的最小接口, 连接集合与分发器只依赖这些成员"""

    channel_id: str
    owner_id: Optional[str]

    @property
    def is_open(self) -> bool: ...

    async def send_text(self, text: str) -> None: ...


class PushSession:
    """一个客户端 WebSocket 连接, 同一连接上的写入串行进行"""

    def __init__(self, websocket: WebSocket, owner_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.channel_id = uuid.uuid4().hex[:12]
        self.owner_id = owner_id
        self.send_lock = asyncio.Lock()
        self._closed = False

    @property
    def is_open(self) -> bool:
        if self._closed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def bind_owner(self, owner_id: Optional[str]) -> None:
        if owner_id and self.owner_id is None:
            self.owner_id = str(owner_id)

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise ConnectionError(f"连接已关闭: channel={self.channel_id}")
        async with self.send_lock:
            try:
                await self.websocket.send_text(text)
            except Exception:
                self._closed = True
                raise

    async def close(self, code: int = 1001, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception:
            pass  # 对端可能已断开

    def __repr__(self) -> str:
        return f"PushSession(channel_id={self.channel_id!r}, owner_id={self.owner_id!r})"


__all__ = ["PushChannel", "PushSession"]
