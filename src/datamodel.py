from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from utils import format_time_of_day, iso_utc, now_utc, parse_time_of_day

__all__ = [
    "DEFAULT_REMINDER_MESSAGE", "ReminderValidationError", "Reminder",
    "EventType", "NotificationEvent",
]

DEFAULT_REMINDER_MESSAGE = "Time to hydrate!"
MAX_TITLE_LENGTH = 100


class ReminderValidationError(ValueError):
    pass


# ----------------- Reminder 数据模型 ----------------
@dataclass
class Reminder:
    id: int
    owner_id: str
    title: str
    time_of_day: time  # UTC, 精确到秒
    days_of_week: List[int]  # 1=周一 ... 7=周日
    message: Optional[str] = None
    enabled: bool = True
    created_at: Optional[str] = None  # 由存储层维护
    updated_at: Optional[str] = None

    @property
    def display_message(self) -> str:
        return self.message or DEFAULT_REMINDER_MESSAGE

    def validate(self) -> None:
        if not isinstance(self.title, str) or self.title.strip() == "":
            raise ReminderValidationError("title 不能为空")
        if len(self.title) > MAX_TITLE_LENGTH:
            raise ReminderValidationError(f"title 长度不能超过 {MAX_TITLE_LENGTH}")
        if not isinstance(self.time_of_day, time):
            raise ReminderValidationError("time_of_day 必须是合法的时间")
        if not self.days_of_week:
            raise ReminderValidationError("days_of_week 不能为空")
        for day in self.days_of_week:
            if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 7:
                raise ReminderValidationError(f"days_of_week 含非法星期: {day!r}")
        if self.owner_id is None or str(self.owner_id).strip() == "":
            raise ReminderValidationError("owner_id 不能为空")

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Reminder":
        """从存储记录或客户端消息构造, 兼容 user_id/reminder_time 等列名"""
        owner_id = record.get("owner_id", record.get("user_id"))
        raw_time = record.get("time_of_day", record.get("reminder_time"))
        if raw_time is None:
            raise ReminderValidationError("缺少 reminder_time")
        try:
            time_of_day = parse_time_of_day(raw_time)
        except ValueError as e:
            raise ReminderValidationError(str(e)) from e

        days = record.get("days_of_week")
        if isinstance(days, str):
            try:
                days = json.loads(days)
            except json.JSONDecodeError as e:
                raise ReminderValidationError(f"days_of_week 无法解析: {days!r}") from e
        if days is None:
            days = []
        try:
            days = sorted({int(d) for d in days})
        except (TypeError, ValueError) as e:
            raise ReminderValidationError(f"days_of_week 含非法星期: {days!r}") from e

        try:
            reminder_id = int(record["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ReminderValidationError(f"id 非法: {record.get('id')!r}") from e

        return cls(
            id=reminder_id,
            owner_id=str(owner_id) if owner_id is not None else "",
            title=record.get("title") or "",
            time_of_day=time_of_day,
            days_of_week=days,
            message=record.get("message"),
            enabled=bool(record.get("enabled", record.get("is_active", True))),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )

    def merged(self, partial: Dict[str, Any]) -> "Reminder":
        """返回合并了部分字段的新对象, id 不可修改"""
        record = {**self.to_record(), **partial, "id": self.id}
        if "time_of_day" in partial:
            record.pop("reminder_time", None)
        if "owner_id" in partial:
            record.pop("user_id", None)
        return Reminder.from_record(record)

    def to_record(self) -> Dict[str, Any]:
        """线上格式, 列名与存储保持一致"""
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "title": self.title,
            "message": self.message,
            "reminder_time": format_time_of_day(self.time_of_day),
            "days_of_week": list(self.days_of_week),
            "enabled": self.enabled,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def copy(self) -> "Reminder":
        return replace(self, days_of_week=list(self.days_of_week))


# ----------------- 推送事件 ----------------
class EventType(str, Enum):
    REMINDER = "reminder"
    TEST = "test"
    WELCOME = "welcome"
    PONG = "pong"
    SYNC_COMPLETE = "sync_complete"
    REMINDERS = "reminders"
    TEST_REMINDER_CREATED = "test_reminder_created"
    ERROR = "error"


@dataclass
class NotificationEvent:
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=now_utc)
    owner_id: Optional[str] = None  # 仅用于按用户路由, 不序列化

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.payload, "timestamp": iso_utc(self.timestamp)}

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)

    @classmethod
    def reminder(cls, reminder: Reminder, now: Optional[datetime] = None) -> "NotificationEvent":
        data = {"id": reminder.id, "title": reminder.title, "message": reminder.display_message}
        return cls(
            type=EventType.REMINDER,
            payload={**data, "userId": reminder.owner_id, "data": data},
            timestamp=now or now_utc(),
            owner_id=reminder.owner_id,
        )

    @classmethod
    def test(cls, owner_id: Optional[str], now: Optional[datetime] = None) -> "NotificationEvent":
        data = {"title": "Test Notification", "message": "This is a test notification from GoutDeau server!"}
        return cls(
            type=EventType.TEST,
            payload={**data, "userId": owner_id, "data": data},
            timestamp=now or now_utc(),
            owner_id=owner_id,
        )

    @classmethod
    def error(cls, request: str, message: str) -> "NotificationEvent":
        return cls(type=EventType.ERROR, payload={"request": request, "message": message})
