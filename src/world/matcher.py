"""
提醒触发判定, 纯函数, 不保存任何状态。

判定规则: 设 delta = (提醒时刻 - 当前时刻) mod 86400, 当 0 <= delta < window 时触发,
即提醒时刻落在 [now, now + window) 内。跨午夜时(例如 23:59:59 检查 00:00:00 的提醒),
星期与去重日期都以"应触发时刻"所在的那一天为准, 而不是检查时刻所在的那一天。
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from datamodel import Reminder
from utils import SECONDS_PER_DAY, iso_weekday, seconds_of_day

__all__ = ["seconds_until_due", "due_at", "should_fire", "firing_date"]


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def seconds_until_due(now: datetime, reminder: Reminder) -> int:
    """距离下一次提醒时刻的秒数, 范围 [0, 86400)"""
    now = _as_utc(now)
    return (seconds_of_day(reminder.time_of_day) - seconds_of_day(now)) % SECONDS_PER_DAY


def due_at(now: datetime, reminder: Reminder, window_seconds: float) -> datetime | None:
    """若当前应触发, 返回本次触发对应的提醒时刻(UTC, 秒精度), 否则返回 None"""
    now = _as_utc(now).replace(microsecond=0)
    delta = seconds_until_due(now, reminder)
    if not 0 <= delta < window_seconds:
        return None

    due = now + timedelta(seconds=delta)
    if iso_weekday(due) not in reminder.days_of_week:
        return None
    return due


def should_fire(now: datetime, reminder: Reminder, window_seconds: float) -> bool:
    return due_at(now, reminder, window_seconds) is not None


def firing_date(now: datetime, reminder: Reminder, window_seconds: float) -> date | None:
    due = due_at(now, reminder, window_seconds)
    return due.date() if due is not None else None
