import asyncio

import pytest

from offpeak.errors import AwaitTimeout
from offpeak.events import EventBus, Notification, NotificationWaiter


def test_publish_reaches_subscribers_until_unsubscribed():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)

    bus.publish(Notification("CP1", "Heartbeat"))
    unsubscribe()
    bus.publish(Notification("CP1", "Heartbeat"))

    assert seen == [Notification("CP1", "Heartbeat")]


def test_failing_listener_does_not_stop_others():
    bus = EventBus()
    seen = []

    def broken(notification):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.publish(Notification("CP1", "Heartbeat"))

    assert len(seen) == 1


@pytest.mark.asyncio
async def test_waiter_resolves_on_matching_notification():
    bus = EventBus()
    waiter = NotificationWaiter(bus)
    future = waiter.expect("CP1", "StatusNotification")

    asyncio.get_running_loop().call_soon(
        bus.publish, Notification("CP1", "StatusNotification", {"status": "Available"})
    )
    payload = await waiter.wait("CP1", "StatusNotification", future, timeout=1)

    assert payload == {"status": "Available"}
    assert waiter.waiting("CP1", "StatusNotification") == 0


@pytest.mark.asyncio
async def test_waiter_ignores_other_chargers_and_actions():
    bus = EventBus()
    waiter = NotificationWaiter(bus)
    future = waiter.expect("CP1", "StatusNotification")

    bus.publish(Notification("CP2", "StatusNotification", {"status": "Faulted"}))
    bus.publish(Notification("CP1", "Heartbeat"))

    assert not future.done()
    waiter.discard("CP1", "StatusNotification", future)


@pytest.mark.asyncio
async def test_waiter_is_single_shot():
    bus = EventBus()
    waiter = NotificationWaiter(bus)
    future = waiter.expect("CP1", "Heartbeat")

    bus.publish(Notification("CP1", "Heartbeat", {"n": 1}))
    bus.publish(Notification("CP1", "Heartbeat", {"n": 2}))

    assert future.result() == {"n": 1}


@pytest.mark.asyncio
async def test_waiter_times_out_and_unregisters():
    bus = EventBus()
    waiter = NotificationWaiter(bus)
    future = waiter.expect("CP1", "MeterValues")

    with pytest.raises(AwaitTimeout):
        await waiter.wait("CP1", "MeterValues", future, timeout=0.05)

    assert waiter.waiting("CP1", "MeterValues") == 0
    # a late notification has nobody to resolve
    bus.publish(Notification("CP1", "MeterValues"))
