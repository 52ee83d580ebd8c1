"""Redis status watcher — turns connectivity edges into client notices.

Learn: Polling on a short interval keeps this independent of which code
path noticed the outage. Every tick compares bus.connected with the
previous tick; on a change it tells every open stream
({"type": "redis_status", "connected": ...}) and, when Redis came back,
re-subscribes. An unchanged value does nothing.

A drop and reconnect can both happen between two ticks, so connected
reads True each time. The bus connect_generation still moves, and that
counts as a reconnect: re-subscribe, but send no status frame since
clients last heard "connected" and still are.
"""

import asyncio
from typing import Optional, Sequence

import structlog

from sserelay.realtime.bus import BusConnection
from sserelay.realtime.registry import ConnectionRegistry
from sserelay.realtime.subscriber import SubscriptionManager

logger = structlog.get_logger()


class StatusWatcher:
    def __init__(
        self,
        bus: BusConnection,
        registries: Sequence[ConnectionRegistry],
        subscriptions: SubscriptionManager,
        interval: float = 1.0,
    ):
        self.bus = bus
        self.registries = registries
        self.subscriptions = subscriptions
        self.interval = interval
        self.was_connected = bus.connected
        self.seen_generation = bus.connect_generation
        self._task: Optional[asyncio.Task] = None

    async def poll(self) -> bool:
        """One tick. Returns True if a transition was seen."""
        connected = self.bus.connected
        generation = self.bus.connect_generation
        reconnected = connected and generation != self.seen_generation
        self.seen_generation = generation

        if connected == self.was_connected:
            if reconnected:
                logger.info("watcher.missed_reconnect", generation=generation)
                await self.subscriptions.subscribe()
            return reconnected
        self.was_connected = connected

        status = {"type": "redis_status", "connected": connected}
        notified = sum(r.broadcast_all(status) for r in self.registries)
        logger.info("watcher.status_changed", connected=connected, notified=notified)

        if connected:
            await self.subscriptions.subscribe()
        return True

    def start(self) -> None:
        self.was_connected = self.bus.connected
        self.seen_generation = self.bus.connect_generation
        self._task = asyncio.create_task(self._run(), name="status-watcher")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.poll()
