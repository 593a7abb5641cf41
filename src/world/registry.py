from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Dict, List, Optional, Protocol

from datamodel import Reminder
from events import E, bus
from logger import logger


class ReminderSource(Protocol):
    """持久化存储的只读接口, storage.reminder 模块本身即满足该协议"""

    def list_enabled_reminders(self) -> Awaitable[List[Reminder]]: ...

    def get_reminder_by_id(self, reminder_id: int) -> Awaitable[Optional[Reminder]]: ...


class ReminderRegistry:
    """内存中的启用提醒集合, 调度循环只读取这里, 不直接访问存储。

    所有修改都经过同一把锁串行执行; 调度循环取快照时也持有该锁,
    因此 remove() 返回之后开始的检查一定看不到被删除的提醒。
    存储读失败时保留原有内容, 异常不会向调用方抛出。
    """

    def __init__(self, source: ReminderSource) -> None:
        self._source = source
        self._reminders: Dict[int, Reminder] = {}
        self._lock = asyncio.Lock()
        self.last_loaded_at: float | None = None

    def __len__(self) -> int:
        return len(self._reminders)

    def __contains__(self, reminder_id: object) -> bool:
        return reminder_id in self._reminders

    async def load_all(self) -> bool:
        """用存储中所有启用的提醒整体替换内存集合, 成功返回 True"""
        logger.debug("从存储加载提醒...")
        try:
            reminders = await self._source.list_enabled_reminders()
        except Exception as e:
            logger.opt(exception=e).error(f"加载提醒失败, 保留现有 {len(self._reminders)} 条: {e}")
            bus.emit(E.REGISTRY_SYNCED, ok=False, count=len(self._reminders))
            return False

        loaded: Dict[int, Reminder] = {}
        for reminder in reminders:
            if not reminder.enabled:
                continue
            try:
                reminder.validate()
            except ValueError as e:
                logger.warning(f"跳过非法提醒: id={reminder.id}, error={e}")
                continue
            loaded[reminder.id] = reminder

        async with self._lock:
            self._reminders = loaded
            self.last_loaded_at = time.time()

        logger.info(f"已加载 {len(loaded)} 条启用的提醒")
        bus.emit(E.REGISTRY_SYNCED, ok=True, count=len(loaded))
        return True

    async def add(self, reminder: Reminder) -> None:
        """加入或替换一条提醒; 未启用的提醒会被移出, 非法提醒直接拒绝"""
        reminder.validate()
        async with self._lock:
            if not reminder.enabled:
                self._reminders.pop(reminder.id, None)
                logger.debug(f"提醒未启用, 不加入调度: id={reminder.id}")
                return
            self._reminders[reminder.id] = reminder.copy()
        logger.info(f"加入提醒: id={reminder.id}, title={reminder.title}")

    async def update(self, reminder_id: int, partial: Dict[str, Any]) -> Optional[Reminder]:
        """合并部分字段; 不在集合中的提醒忽略并返回 None"""
        async with self._lock:
            current = self._reminders.get(reminder_id)
            if current is None:
                logger.debug(f"更新的提醒不在调度集合中, 忽略: id={reminder_id}")
                return None
            updated = current.merged(partial)
            updated.validate()
            if not updated.enabled:
                del self._reminders[reminder_id]
                logger.info(f"提醒已停用, 移出调度: id={reminder_id}")
                return updated
            self._reminders[reminder_id] = updated
        logger.info(f"更新提醒: id={reminder_id}, title={updated.title}")
        return updated.copy()

    async def remove(self, reminder_id: int) -> bool:
        async with self._lock:
            reminder = self._reminders.pop(reminder_id, None)
        if reminder is None:
            return False
        logger.info(f"移除提醒: id={reminder_id}, title={reminder.title}")
        return True

    async def snapshot(self) -> List[Reminder]:
        async with self._lock:
            return list(self._reminders.values())

    def get_by_owner(self, owner_id: str) -> List[Reminder]:
        owner_id = str(owner_id)
        return [r.copy() for r in self._reminders.values() if r.owner_id == owner_id]

    async def get_by_id(self, reminder_id: int, *, from_store: bool = False) -> Optional[Reminder]:
        """按 id 查询; from_store=True 时绕过缓存直接读取存储"""
        if not from_store:
            reminder = self._reminders.get(reminder_id)
            return reminder.copy() if reminder is not None else None

        try:
            return await self._source.get_reminder_by_id(reminder_id)
        except Exception as e:
            logger.opt(exception=e).error(f"从存储读取提醒失败: id={reminder_id}, error={e}")
            return None

    async def clear(self) -> None:
        async with self._lock:
            self._reminders.clear()


__all__ = ["ReminderRegistry", "ReminderSource"]
