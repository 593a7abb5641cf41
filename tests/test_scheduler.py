"""Tests for the ReminderScheduler tick and loop."""

from __future__ import annotations

import asyncio
from datetime import datetime, time, timezone
from unittest.mock import AsyncMock

import pytest

from world import matcher
from world.registry import ReminderRegistry
from world.scheduler import ReminderScheduler

from conftest import FakeSource, make_reminder

UTC = timezone.utc


def at(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def make_scheduler(*reminders, **kwargs):
    registry = ReminderRegistry(FakeSource())
    registry._reminders = {r.id: r for r in reminders}
    dispatcher = AsyncMock()
    scheduler = ReminderScheduler(registry, dispatcher, tick_interval=1.0, window_seconds=2, **kwargs)
    return scheduler, registry, dispatcher


def dispatched_ids(dispatcher) -> list[int]:
    return [call.args[0].id for call in dispatcher.dispatch_reminder.await_args_list]


def test_window_smaller_than_tick_is_rejected():
    registry = ReminderRegistry(FakeSource())
    with pytest.raises(ValueError):
        ReminderScheduler(registry, AsyncMock(), tick_interval=5.0, window_seconds=2)


@pytest.mark.asyncio
async def test_weekday_example_fires_once_per_day():
    scheduler, _, dispatcher = make_scheduler(
        make_reminder(id=1, time_of_day=time(8, 0, 0), days_of_week=[1, 2, 3, 4, 5])
    )

    fired = await scheduler.tick(at(2024, 1, 8, 8, 0, 0))  # Monday
    assert [r.id for r in fired] == [1]

    assert await scheduler.tick(at(2024, 1, 8, 8, 0, 1)) == []
    assert await scheduler.tick(at(2024, 1, 13, 8, 0, 0)) == []  # Saturday
    assert dispatched_ids(dispatcher) == [1]


@pytest.mark.asyncio
async def test_dedup_when_two_ticks_fall_in_window():
    scheduler, _, dispatcher = make_scheduler(make_reminder(id=1, time_of_day=time(8, 0, 0)))

    await scheduler.tick(at(2024, 1, 8, 7, 59, 59))
    await scheduler.tick(at(2024, 1, 8, 8, 0, 0))

    assert dispatched_ids(dispatcher) == [1]


@pytest.mark.asyncio
async def test_fires_again_next_day():
    scheduler, _, dispatcher = make_scheduler(make_reminder(id=1, time_of_day=time(8, 0, 0)))

    await scheduler.tick(at(2024, 1, 8, 8, 0, 0))
    await scheduler.tick(at(2024, 1, 9, 8, 0, 0))

    assert dispatched_ids(dispatcher) == [1, 1]


@pytest.mark.asyncio
async def test_dedup_across_midnight():
    scheduler, _, dispatcher = make_scheduler(
        make_reminder(id=1, time_of_day=time(0, 0, 0), days_of_week=[2])
    )

    await scheduler.tick(at(2024, 1, 8, 23, 59, 59))  # Monday, due Tuesday 00:00
    await scheduler.tick(at(2024, 1, 9, 0, 0, 0))

    assert dispatched_ids(dispatcher) == [1]


@pytest.mark.asyncio
async def test_removed_reminder_is_not_dispatched():
    scheduler, registry, dispatcher = make_scheduler(make_reminder(id=1), make_reminder(id=2))

    await registry.remove(2)
    await scheduler.tick(at(2024, 1, 8, 8, 0, 0))

    assert dispatched_ids(dispatcher) == [1]


@pytest.mark.asyncio
async def test_removal_during_dispatch_skips_remaining():
    scheduler, registry, dispatcher = make_scheduler(make_reminder(id=1), make_reminder(id=2))

    async def remove_other(reminder, now=None):
        await registry.remove(2 if reminder.id == 1 else 1)
        return 1

    dispatcher.dispatch_reminder.side_effect = remove_other
    await scheduler.tick(at(2024, 1, 8, 8, 0, 0))

    assert len(dispatched_ids(dispatcher)) == 1


@pytest.mark.asyncio
async def test_evaluation_error_does_not_stop_tick(monkeypatch):
    scheduler, _, dispatcher = make_scheduler(make_reminder(id=1), make_reminder(id=2))
    original = matcher.firing_date

    def flaky(now, reminder, window):
        if reminder.id == 1:
            raise TypeError("bad schedule")
        return original(now, reminder, window)

    monkeypatch.setattr(matcher, "firing_date", flaky)
    await scheduler.tick(at(2024, 1, 8, 8, 0, 0))

    assert dispatched_ids(dispatcher) == [2]


@pytest.mark.asyncio
async def test_dispatch_error_does_not_stop_tick():
    scheduler, _, dispatcher = make_scheduler(make_reminder(id=1), make_reminder(id=2))
    dispatcher.dispatch_reminder.side_effect = [RuntimeError("send failed"), 1]

    fired = await scheduler.tick(at(2024, 1, 8, 8, 0, 0))

    assert len(fired) == 2
    assert dispatcher.dispatch_reminder.await_count == 2


@pytest.mark.asyncio
async def test_run_loop_uses_clock_and_stops():
    now = at(2024, 1, 8, 8, 0, 0)
    registry = ReminderRegistry(FakeSource())
    await registry.add(make_reminder(id=1))
    dispatcher = AsyncMock()
    scheduler = ReminderScheduler(
        registry, dispatcher, tick_interval=0.01, window_seconds=2, clock=lambda: now
    )

    scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0.08)
    await scheduler.stop()

    assert not scheduler.running
    assert dispatcher.dispatch_reminder.await_count == 1
    assert scheduler.get_status()["last_tick_at_epoch"] is not None


@pytest.mark.asyncio
async def test_error_text_with_braces_does_not_stop_tick(monkeypatch):
    scheduler, _, dispatcher = make_scheduler(make_reminder(id=1), make_reminder(id=2))
    original = matcher.firing_date

    def broken(now, reminder, window):
        if reminder.id == 1:
            raise ValueError("schedule {broken}")
        return original(now, reminder, window)

    monkeypatch.setattr(matcher, "firing_date", broken)
    dispatcher.dispatch_reminder.side_effect = RuntimeError("send {failed}")

    fired = await scheduler.tick(at(2024, 1, 8, 8, 0, 0))

    assert [r.id for r in fired] == [2]


@pytest.mark.asyncio
async def test_run_loop_survives_failing_tick():
    scheduler = ReminderScheduler(ReminderRegistry(FakeSource()), AsyncMock(), tick_interval=0.01, window_seconds=2)
    calls = 0

    async def failing_tick(now=None):
        nonlocal calls
        calls += 1
        raise RuntimeError("tick {exploded}")

    scheduler.tick = failing_tick
    scheduler.start()
    await asyncio.sleep(0.08)
    assert scheduler.running
    await scheduler.stop()

    assert calls > 1
