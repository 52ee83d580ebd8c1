"""Test fixtures — an in-memory Redis stand-in and a relay wired to it.

Learn: The relay only needs five things from redis.asyncio.Redis: ping(),
pubsub(), publish(), aclose() and a PubSub with psubscribe()/listen()/
aclose(). FakeRedis implements exactly those, with switches to take the
"server" down and bring it back, so reconnect and resubscribe paths run
for real on the event loop with millisecond timers.
"""

import asyncio
from fnmatch import fnmatchcase
from typing import Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from sserelay.api.dependencies import get_relay
from sserelay.main import app
from sserelay.realtime.bus import BusConnection
from sserelay.realtime.service import RelayService


class FakePubSub:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.patterns: list[str] = []
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    async def psubscribe(self, *patterns: str) -> None:
        if self.redis.hold_subscribe is not None:
            await self.redis.hold_subscribe.wait()
        if not self.redis.up or self.redis.fail_subscribe:
            raise RedisConnectionError("Error 111 connecting to localhost:6380.")
        self.patterns.extend(patterns)
        self.redis.pubsubs.append(self)

    async def listen(self):
        while True:
            item = await self._queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    def deliver(self, channel: str, data: str) -> bool:
        for pattern in self.patterns:
            if fnmatchcase(channel, pattern):
                self._queue.put_nowait(
                    {"type": "pmessage", "pattern": pattern, "channel": channel, "data": data}
                )
                return True
        return False

    def drop(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    async def aclose(self) -> None:
        self.closed = True
        if self in self.redis.pubsubs:
            self.redis.pubsubs.remove(self)


class FakeRedis:
    def __init__(self, up: bool = True):
        self.up = up
        self.fail_subscribe = False
        self.hold_subscribe: Optional[asyncio.Event] = None
        self.closed = False
        self.pings = 0
        self.pubsubs: list[FakePubSub] = []
        self.created: list[FakePubSub] = []
        self.published: list[tuple[str, str]] = []

    async def ping(self) -> bool:
        self.pings += 1
        if not self.up:
            raise RedisConnectionError("Error 111 connecting to localhost:6380.")
        return True

    def pubsub(self, ignore_subscribe_messages: bool = False) -> FakePubSub:
        pubsub = FakePubSub(self)
        self.created.append(pubsub)
        return pubsub

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return sum(ps.deliver(channel, message) for ps in list(self.pubsubs))

    def go_down(self) -> None:
        self.up = False
        for ps in list(self.pubsubs):
            ps.drop(RedisConnectionError("Connection closed by server."))

    def come_up(self) -> None:
        self.up = True

    def drop_subscriptions(self) -> None:
        """Kill the pub/sub sockets only; ping() keeps answering."""
        for ps in list(self.pubsubs):
            ps.drop(RedisConnectionError("Connection reset by peer."))

    async def aclose(self) -> None:
        self.closed = True


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll predicate() on the loop until true, failing after timeout."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


def make_bus(fake: FakeRedis) -> BusConnection:
    return BusConnection(
        "redis://fake:6380",
        reconnect_step=0.01,
        reconnect_ceiling=0.05,
        health_check_interval=0.01,
        connect_timeout=0.5,
        client_factory=lambda: fake,
    )


def make_relay(fake: FakeRedis, **kwargs) -> RelayService:
    options = {
        "heartbeat_interval": 30.0,
        "status_poll_interval": 0.01,
        "resubscribe_delay": 0.02,
    }
    options.update(kwargs)
    return RelayService(make_bus(fake), **options)


@pytest_asyncio.fixture()
async def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture()
async def relay(fake_redis):
    """A relay that is constructed but not started (no background tasks)."""
    service = make_relay(fake_redis)
    service.bus.client = fake_redis
    try:
        yield service
    finally:
        await service.stop()


@pytest_asyncio.fixture()
async def client(relay):
    """HTTP client with the app's relay dependency pointed at the test relay.

    Learn: ASGITransport doesn't run the lifespan, so no real Redis
    connection is attempted; every route gets the fixture's relay.
    """
    app.dependency_overrides[get_relay] = lambda: relay

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
