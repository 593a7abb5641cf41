"""Tests for the aiosqlite reminder store."""

from __future__ import annotations

from datetime import time

import pytest
import pytest_asyncio

import storage.db_config as db_config
import storage.reminder as reminder_storage
from datamodel import ReminderValidationError


@pytest_asyncio.fixture
async def db(tmp_path):
    await db_config.init_db(str(tmp_path / "data" / "test.db"))
    yield db_config.conn
    await db_config.close_db()


@pytest.mark.asyncio
async def test_requires_init():
    assert db_config.conn is None
    with pytest.raises(RuntimeError):
        await reminder_storage.list_enabled_reminders()
    assert await reminder_storage.check_connection() is False


@pytest.mark.asyncio
async def test_create_and_get(db):
    created = await reminder_storage.create_reminder(
        user_id="u1", title=" Water ", reminder_time="08:00", days_of_week=[5, 1], message="Drink",
    )

    assert created.id > 0
    assert created.title == "Water"
    assert created.time_of_day == time(8, 0, 0)
    assert created.days_of_week == [1, 5]
    assert created.created_at is not None

    fetched = await reminder_storage.get_reminder_by_id(created.id)
    assert fetched == created
    assert await reminder_storage.check_connection() is True


@pytest.mark.asyncio
@pytest.mark.parametrize("days,title", [([], "ok"), ([0], "ok"), ([1, 8], "ok"), ([1], "  ")])
async def test_create_rejects_invalid(db, days, title):
    with pytest.raises(ReminderValidationError):
        await reminder_storage.create_reminder(
            user_id="u1", title=title, reminder_time="08:00:00", days_of_week=days,
        )
    assert await reminder_storage.list_reminders_by_user("u1") == []


@pytest.mark.asyncio
async def test_list_enabled_only(db):
    a = await reminder_storage.create_reminder("u1", "A", "08:00:00", [1])
    await reminder_storage.create_reminder("u1", "B", "09:00:00", [1], enabled=False)
    c = await reminder_storage.create_reminder("u2", "C", "10:00:00", [2])

    enabled = await reminder_storage.list_enabled_reminders()

    assert [r.id for r in enabled] == [a.id, c.id]
    assert len(await reminder_storage.list_reminders_by_user("u1")) == 2


@pytest.mark.asyncio
async def test_update(db):
    created = await reminder_storage.create_reminder("u1", "A", "08:00:00", [1])

    updated = await reminder_storage.update_reminder(
        created.id, {"reminder_time": "08:30:15", "enabled": False, "user_id": "ignored"}
    )

    assert updated.time_of_day == time(8, 30, 15)
    assert updated.enabled is False
    assert updated.owner_id == "u1"
    assert await reminder_storage.list_enabled_reminders() == []


@pytest.mark.asyncio
async def test_update_invalid_leaves_row_untouched(db):
    created = await reminder_storage.create_reminder("u1", "A", "08:00:00", [1])

    with pytest.raises(ReminderValidationError):
        await reminder_storage.update_reminder(created.id, {"days_of_week": []})

    assert (await reminder_storage.get_reminder_by_id(created.id)).days_of_week == [1]


@pytest.mark.asyncio
async def test_update_missing(db):
    assert await reminder_storage.update_reminder(999, {"title": "x"}) is None


@pytest.mark.asyncio
async def test_delete(db):
    created = await reminder_storage.create_reminder("u1", "A", "08:00:00", [1])

    assert await reminder_storage.delete_reminder(created.id) is True
    assert await reminder_storage.delete_reminder(created.id) is False
    assert await reminder_storage.get_reminder_by_id(created.id) is None
