"""Tests for ConnectionSet and NotificationDispatcher."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from channels.dispatcher import ConnectionSet, NotificationDispatcher
from datamodel import EventType, NotificationEvent

from conftest import FakeChannel, make_reminder


def make_dispatcher(*channels, **kwargs):
    connections = ConnectionSet()
    for channel in channels:
        connections.register(channel)
    return connections, NotificationDispatcher(connections, **kwargs)


def test_register_and_unregister():
    connections = ConnectionSet()
    channel = FakeChannel()

    connections.register(channel)
    assert channel in connections and len(connections) == 1

    assert connections.unregister(channel) is True
    assert connections.unregister(channel) is False
    assert len(connections) == 0


@pytest.mark.asyncio
async def test_broadcast_reaches_every_connection():
    a, b = FakeChannel(), FakeChannel()
    _, dispatcher = make_dispatcher(a, b)

    delivered = await dispatcher.broadcast(NotificationEvent.test("user-a"))

    assert delivered == 2
    assert a.types() == ["test"] and b.types() == ["test"]
    assert a.sent[0]["userId"] == "user-a"


@pytest.mark.asyncio
async def test_closed_connection_is_dropped_silently():
    a, b = FakeChannel(), FakeChannel()
    connections, dispatcher = make_dispatcher(a, b)

    await dispatcher.broadcast(NotificationEvent.test("u"))
    a.open = False
    delivered = await dispatcher.broadcast(NotificationEvent.test("u"))

    assert delivered == 1
    assert len(a.sent) == 1 and len(b.sent) == 2
    assert a not in connections and b in connections


@pytest.mark.asyncio
async def test_failing_write_does_not_block_others():
    bad = FakeChannel(fail=True)
    good = FakeChannel()
    connections, dispatcher = make_dispatcher(bad, good)

    delivered = await dispatcher.broadcast(NotificationEvent.test("u"))

    assert delivered == 1
    assert good.types() == ["test"]
    assert bad not in connections


@pytest.mark.asyncio
async def test_stalled_write_times_out_and_is_dropped():
    class StalledChannel(FakeChannel):
        async def send_text(self, text: str) -> None:
            await asyncio.sleep(10)

    stalled, good = StalledChannel(), FakeChannel()
    connections, dispatcher = make_dispatcher(stalled, good, send_timeout=0.05)

    delivered = await dispatcher.broadcast(NotificationEvent.test("u"))

    assert delivered == 1
    assert stalled not in connections


@pytest.mark.asyncio
async def test_unregistered_before_call_gets_nothing():
    a, b = FakeChannel(), FakeChannel()
    connections, dispatcher = make_dispatcher(a, b)

    connections.unregister(a)
    await dispatcher.broadcast(NotificationEvent.test("u"))

    assert a.sent == []
    assert b.types() == ["test"]


@pytest.mark.asyncio
async def test_broadcast_with_no_connections():
    _, dispatcher = make_dispatcher()
    assert await dispatcher.broadcast(NotificationEvent.test("u")) == 0


@pytest.mark.asyncio
async def test_dispatch_reminder_payload():
    channel = FakeChannel()
    _, dispatcher = make_dispatcher(channel)
    now = datetime(2024, 1, 8, 8, 0, 0, tzinfo=timezone.utc)

    await dispatcher.dispatch_reminder(make_reminder(id=3, title="Hydrate", owner_id="u1"), now)

    msg = channel.sent[0]
    assert msg["type"] == "reminder"
    assert msg["id"] == 3
    assert msg["title"] == "Hydrate"
    assert msg["message"] == "Time to hydrate!"
    assert msg["userId"] == "u1"
    assert msg["data"] == {"id": 3, "title": "Hydrate", "message": "Time to hydrate!"}
    assert msg["timestamp"] == "2024-01-08T08:00:00.000Z"


@pytest.mark.asyncio
async def test_unscoped_broadcast_reaches_other_owners():
    mine, theirs = FakeChannel(owner_id="u1"), FakeChannel(owner_id="u2")
    _, dispatcher = make_dispatcher(mine, theirs)

    await dispatcher.dispatch_reminder(make_reminder(owner_id="u1"))

    assert mine.types() == ["reminder"] and theirs.types() == ["reminder"]


@pytest.mark.asyncio
async def test_scoped_broadcast_only_reaches_owner():
    mine, theirs, anonymous = FakeChannel(owner_id="u1"), FakeChannel(owner_id="u2"), FakeChannel()
    _, dispatcher = make_dispatcher(mine, theirs, anonymous, scope_to_owner=True)

    await dispatcher.dispatch_reminder(make_reminder(owner_id="u1"))

    assert mine.types() == ["reminder"]
    assert theirs.sent == [] and anonymous.sent == []


@pytest.mark.asyncio
async def test_send_to_single_channel():
    a, b = FakeChannel(), FakeChannel()
    _, dispatcher = make_dispatcher(a, b)

    assert await dispatcher.send_to(a, NotificationEvent(type=EventType.PONG)) is True
    assert a.types() == ["pong"] and b.sent == []
