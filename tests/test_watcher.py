"""Status watcher tests — one redis_status frame per edge, resubscribe on recovery."""

import asyncio
from types import SimpleNamespace

import pytest

from sserelay.realtime.registry import Connection, ConnectionRegistry
from sserelay.realtime.watcher import StatusWatcher


class CountingSubscriptions:
    def __init__(self):
        self.calls = 0

    async def subscribe(self):
        self.calls += 1
        return True


def drain(connection: Connection) -> list[str]:
    frames = []
    while not connection._queue.empty():
        frames.append(connection._queue.get_nowait())
    return frames


@pytest.fixture()
def setup():
    bus = SimpleNamespace(connected=False, connect_generation=0)
    products, users = ConnectionRegistry("product"), ConnectionRegistry("user")
    conns = [Connection("42"), Connection("43"), Connection("7")]
    products.register("42", conns[0])
    products.register("43", conns[1])
    users.register("7", conns[2])
    subscriptions = CountingSubscriptions()
    watcher = StatusWatcher(bus, [products, users], subscriptions, interval=0.01)
    return bus, watcher, subscriptions, conns


@pytest.mark.asyncio
async def test_reconnect_broadcasts_once_and_resubscribes(setup):
    bus, watcher, subscriptions, conns = setup

    bus.connected = True
    assert await watcher.poll()
    assert not await watcher.poll()
    assert not await watcher.poll()

    assert subscriptions.calls == 1
    for conn in conns:
        assert drain(conn) == ['data: {"type":"redis_status","connected":true}\n\n']


@pytest.mark.asyncio
async def test_disconnect_broadcasts_without_subscribing(setup):
    bus, watcher, subscriptions, conns = setup
    bus.connected = True
    await watcher.poll()
    for conn in conns:
        drain(conn)

    bus.connected = False
    assert await watcher.poll()

    assert subscriptions.calls == 1
    for conn in conns:
        assert drain(conn) == ['data: {"type":"redis_status","connected":false}\n\n']


@pytest.mark.asyncio
async def test_unchanged_state_does_nothing(setup):
    bus, watcher, subscriptions, conns = setup

    for _ in range(5):
        assert not await watcher.poll()

    assert subscriptions.calls == 0
    assert all(drain(conn) == [] for conn in conns)


@pytest.mark.asyncio
async def test_each_flip_is_one_broadcast(setup):
    bus, watcher, subscriptions, conns = setup

    for value in (True, True, False, False, True):
        bus.connected = value
        await watcher.poll()

    assert subscriptions.calls == 2
    assert len(drain(conns[0])) == 3


@pytest.mark.asyncio
async def test_background_loop_picks_up_changes(setup):
    bus, watcher, subscriptions, conns = setup
    watcher.start()
    try:
        bus.connected = True
        for _ in range(100):
            if subscriptions.calls:
                break
            await asyncio.sleep(0.01)
        assert subscriptions.calls == 1
    finally:
        await watcher.stop()


@pytest.mark.asyncio
async def test_reconnect_between_ticks_resubscribes_silently(setup):
    bus, watcher, subscriptions, conns = setup
    bus.connected, bus.connect_generation = True, 1
    await watcher.poll()
    for conn in conns:
        drain(conn)

    # dropped and reconnected since the last tick
    bus.connect_generation = 2
    assert await watcher.poll()
    assert not await watcher.poll()

    assert subscriptions.calls == 2
    assert all(drain(conn) == [] for conn in conns)
