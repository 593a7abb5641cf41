"""
提醒调度主循环: 按固定周期检查内存中的提醒, 命中后交给推送分发器。

注意: 提醒时刻精确到秒, 统一按 UTC 解释。触发窗口必须不小于检查周期,
否则两次检查之间的提醒会被漏掉。同一提醒在同一天内最多触发一次。
进程暂停超过触发窗口时当天的提醒会被跳过, 这是预期行为。
"""

from __future__ import annotations

import asyncio
import time
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, List, Protocol, Set, Tuple

from datamodel import Reminder
from events import E, bus
from logger import logger
from utils import now_utc
from world import matcher
from world.registry import ReminderRegistry


class ReminderDispatcher(Protocol):
    def dispatch_reminder(self, reminder: Reminder, now: datetime | None = None) -> Awaitable[int]: ...


class ReminderScheduler:
    def __init__(
        self,
        registry: ReminderRegistry,
        dispatcher: ReminderDispatcher,
        *,
        tick_interval: float = 1.0,
        window_seconds: float = 2.0,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        if tick_interval <= 0:
            raise ValueError("tick_interval 必须为正数")
        if window_seconds < tick_interval:
            raise ValueError(
                f"触发窗口({window_seconds}s)小于检查周期({tick_interval}s), 提醒会被漏发"
            )
        self.registry = registry
        self.dispatcher = dispatcher
        self.tick_interval = tick_interval
        self.window_seconds = window_seconds
        self._clock = clock
        self._fired: Set[Tuple[int, date]] = set()
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.last_tick_at_epoch: float | None = None
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_status(self) -> dict[str, object]:
        return {
            "running": self.running,
            "last_tick_at_epoch": self.last_tick_at_epoch,
            "tick_interval_seconds": self.tick_interval,
            "window_seconds": self.window_seconds,
            "skipped_ticks": self.skipped_ticks,
            "fired_markers": len(self._fired),
        }

    def _prune_markers(self, today: date) -> None:
        # 跨午夜的提醒会记在次日, 因此保留昨天及以后的标记
        oldest = today - timedelta(days=1)
        self._fired = {key for key in self._fired if key[1] >= oldest}

    async def tick(self, now: datetime | None = None) -> List[Reminder]:
        """执行一次检查, 返回本次触发的提醒"""
        now = now or self._clock()
        self.last_tick_at_epoch = time.time()
        self._prune_markers(now.date())

        reminders = await self.registry.snapshot()
        logger.trace(f"检查提醒: now={now.isoformat()}, active={len(reminders)}")

        fired: List[Reminder] = []
        for reminder in reminders:
            try:
                due_date = matcher.firing_date(now, reminder, self.window_seconds)
            except Exception as e:
                logger.opt(exception=e).error(f"提醒判定异常, 本次跳过: id={reminder.id}, error={e}")
                continue
            if due_date is None:
                continue

            key = (reminder.id, due_date)
            if key in self._fired:
                continue
            # 前面的分发可能让出了控制权, 期间提醒可能已被移除
            if reminder.id not in self.registry:
                continue

            self._fired.add(key)
            fired.append(reminder)
            logger.info(f"触发提醒: id={reminder.id}, title={reminder.title}, user_id={reminder.owner_id}")
            bus.emit(E.REMINDER_TRIGGERED, reminder_id=reminder.id)
            try:
                await self.dispatcher.dispatch_reminder(reminder, now)
            except Exception as e:
                logger.opt(exception=e).error(f"提醒推送失败: id={reminder.id}, error={e}")

        return fired

    async def run_loop(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        logger.info(
            f"Reminder 调度循环已启动: interval={self.tick_interval}s, window={self.window_seconds}s"
        )
        next_at = loop.time()
        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.opt(exception=e).error(f"提醒检查异常: {e}")

            next_at += self.tick_interval
            behind = loop.time() - next_at
            if behind > 0:
                # 检查耗时超过周期时直接跳过积压的周期, 不排队补跑
                skipped = int(behind // self.tick_interval) + 1
                self.skipped_ticks += skipped
                next_at += skipped * self.tick_interval
                logger.warning(f"提醒检查耗时过长, 跳过 {skipped} 个周期")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, next_at - loop.time()))
            except asyncio.TimeoutError:
                pass

        logger.info("Reminder 调度循环已关闭")

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run_loop(self._stop_event), name="reminder-scheduler")

    async def stop(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._fired.clear()


__all__ = ["ReminderScheduler", "ReminderDispatcher"]
