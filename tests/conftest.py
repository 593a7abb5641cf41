"""Shared fixtures: reminder factory, in-memory reminder source and fake push channels."""

from __future__ import annotations

import json
import uuid
from datetime import time
from typing import Any

import pytest

from datamodel import Reminder


def make_reminder(
    id: int = 1,
    owner_id: str = "user-a",
    title: str = "Drink water",
    time_of_day: time = time(8, 0, 0),
    days_of_week: list[int] | None = None,
    **kwargs: Any,
) -> Reminder:
    return Reminder(
        id=id,
        owner_id=owner_id,
        title=title,
        time_of_day=time_of_day,
        days_of_week=[1, 2, 3, 4, 5] if days_of_week is None else days_of_week,
        **kwargs,
    )


class FakeSource:
    """Stands in for storage.reminder; set `error` to make reads fail."""

    def __init__(self, reminders: list[Reminder] | None = None) -> None:
        self.reminders = list(reminders or [])
        self.error: Exception | None = None
        self.list_calls = 0

    async def list_enabled_reminders(self) -> list[Reminder]:
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        return [r.copy() for r in self.reminders if r.enabled]

    async def get_reminder_by_id(self, reminder_id: int) -> Reminder | None:
        if self.error is not None:
            raise self.error
        for r in self.reminders:
            if r.id == reminder_id:
                return r.copy()
        return None


class FakeChannel:
    def __init__(self, owner_id: str | None = None, fail: bool = False) -> None:
        self.channel_id = uuid.uuid4().hex[:12]
        self.owner_id = owner_id
        self.fail = fail
        self.open = True
        self.sent: list[dict] = []

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(json.loads(text))

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def reminder_factory():
    return make_reminder
