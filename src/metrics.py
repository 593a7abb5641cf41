"""
运行时指标, 统计提醒触发、推送投递和连接变化, 通过事件总线被动收集。
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from events import E, bus


@dataclass
class RuntimeMetrics:
    reminder_triggered_count: int = 0
    broadcast_count: int = 0
    delivered_count: int = 0
    dropped_connection_count: int = 0
    connection_opened_count: int = 0
    connection_closed_count: int = 0
    msg_in_count: int = 0
    sync_count: int = 0
    sync_error_count: int = 0
    last_triggered_at: float | None = None

    def record_reminder_triggered(self) -> None:
        self.reminder_triggered_count += 1
        self.last_triggered_at = time.time()

    def record_broadcast(self, delivered: int, dropped: int) -> None:
        self.broadcast_count += 1
        self.delivered_count += max(0, delivered)
        self.dropped_connection_count += max(0, dropped)

    def record_connection(self, opened: bool) -> None:
        if opened:
            self.connection_opened_count += 1
        else:
            self.connection_closed_count += 1

    def record_msg_in(self) -> None:
        self.msg_in_count += 1

    def record_sync(self, ok: bool) -> None:
        self.sync_count += 1
        if not ok:
            self.sync_error_count += 1

    def snapshot(self) -> dict:
        return {
            "reminder_triggered_count": self.reminder_triggered_count,
            "broadcast_count": self.broadcast_count,
            "delivered_count": self.delivered_count,
            "dropped_connection_count": self.dropped_connection_count,
            "connection_opened_count": self.connection_opened_count,
            "connection_closed_count": self.connection_closed_count,
            "msg_in_count": self.msg_in_count,
            "sync_count": self.sync_count,
            "sync_error_count": self.sync_error_count,
            "last_triggered_at_epoch": self.last_triggered_at,
            "last_triggered_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_triggered_at))
                if self.last_triggered_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


# 处理器保持同步函数, 无事件循环时也能安全 emit
@bus.on(E.REMINDER_TRIGGERED)
def _on_reminder_triggered(**_: object) -> None:
    runtime_metrics.record_reminder_triggered()


@bus.on(E.NOTIFICATION_BROADCAST)
def _on_broadcast(delivered: int = 0, dropped: int = 0, **_: object) -> None:
    runtime_metrics.record_broadcast(delivered, dropped)


@bus.on(E.CHANNEL_CONNECTED)
def _on_connected(**_: object) -> None:
    runtime_metrics.record_connection(True)


@bus.on(E.CHANNEL_DISCONNECTED)
def _on_disconnected(**_: object) -> None:
    runtime_metrics.record_connection(False)


@bus.on(E.CHANNEL_MESSAGE_RECEIVED)
def _on_message_received(**_: object) -> None:
    runtime_metrics.record_msg_in()


@bus.on(E.REGISTRY_SYNCED)
def _on_synced(ok: bool = True, **_: object) -> None:
    runtime_metrics.record_sync(ok)


__all__ = ["RuntimeMetrics", "runtime_metrics"]
