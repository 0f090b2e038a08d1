"""
Unit tests for the outcome event bus.
"""

import asyncio

import pytest

from events import OutcomeEventBus
from models import ProcessFailure, ProcessSuccess, UploadStarted


def test_try_send_and_get_preserve_order():
    async def scenario():
        bus = OutcomeEventBus(capacity=3)
        assert bus.try_send(UploadStarted(group_id=1, status_handle=5))
        assert bus.try_send(ProcessSuccess(group_id=1, status_handle=5, file_names=("a.mp4",)))
        return [await bus.get(), bus.get_nowait()], bus.size()

    events, size = asyncio.run(scenario())
    assert isinstance(events[0], UploadStarted)
    assert isinstance(events[1], ProcessSuccess)
    assert size == 0


def test_full_bus_drops_event_without_blocking():
    async def scenario():
        bus = OutcomeEventBus(capacity=1)
        first = bus.try_send(ProcessFailure(group_id=1, error_message="x"))
        second = bus.try_send(ProcessFailure(group_id=2, error_message="x"))
        return bus, first, second

    bus, first, second = asyncio.run(scenario())
    assert first is True
    assert second is False
    assert bus.dropped == 1
    assert bus.size() == 1


def test_async_iteration_yields_events():
    async def scenario():
        bus = OutcomeEventBus(capacity=5)
        for group_id in (1, 2, 3):
            bus.try_send(ProcessSuccess(group_id=group_id))
        received = []
        async for event in bus:
            received.append(event.group_id)
            if len(received) == 3:
                break
        return received

    assert asyncio.run(scenario()) == [1, 2, 3]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        OutcomeEventBus(capacity=0)
