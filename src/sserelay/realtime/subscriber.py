"""Pattern subscription + demultiplexing.

Learn: The relay holds a single PSUBSCRIBE covering every interest domain
(sse:product:* and sse:user:*). Each incoming pmessage is routed by
channel prefix: the prefix picks the registry, the rest of the channel
name is the key.

The Redis client does not carry subscriptions across a reconnect, so
subscribe() is not incremental: it tears down the previous PubSub and
builds a fresh one. A failed subscribe is logged and retried after a
fixed delay, forever.
"""

import asyncio
import json
from typing import Any, Optional

import structlog

from sserelay.realtime.bus import BUS_ERRORS, BusConnection
from sserelay.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


class SubscriptionManager:
    """Keeps one pattern subscription alive and fans its messages out."""

    def __init__(
        self,
        bus: BusConnection,
        routes: dict[str, ConnectionRegistry],
        retry_delay: float = 5.0,
    ):
        self.bus = bus
        self.routes = routes  # channel prefix → registry
        self.retry_delay = retry_delay
        self._pubsub: Optional[Any] = None
        self._listener: Optional[asyncio.Task] = None
        self._retry: Optional[asyncio.Task] = None

    @property
    def patterns(self) -> list[str]:
        return [f"{prefix}*" for prefix in self.routes]

    @property
    def active(self) -> bool:
        return self._listener is not None and not self._listener.done()

    async def subscribe(self) -> bool:
        """(Re)issue the pattern subscription. Returns False if it will retry."""
        self._cancel_retry()
        await self._teardown()

        pubsub = None
        try:
            if self.bus.client is None:
                raise ConnectionError("Redis client not started")
            pubsub = self.bus.client.pubsub(ignore_subscribe_messages=True)
            await pubsub.psubscribe(*self.patterns)
        except BUS_ERRORS as e:
            if pubsub is not None:
                await self._close_pubsub(pubsub)
            logger.error(
                "subscriber.subscribe_failed",
                error=str(e),
                retry_in=self.retry_delay,
            )
            self._retry = asyncio.create_task(self._retry_later())
            return False
        except asyncio.CancelledError:
            if pubsub is not None:
                await self._close_pubsub(pubsub)
            raise

        self._pubsub = pubsub
        self._listener = asyncio.create_task(
            self._listen(pubsub), name="bus-subscriber"
        )
        logger.info("subscriber.ready", patterns=self.patterns)
        return True

    def handle_message(self, channel: str, data: Any) -> bool:
        """Route one bus message to its registry. Returns True if routed."""
        try:
            payload = json.loads(data)
        except (TypeError, ValueError) as e:
            logger.error("subscriber.malformed_message", channel=channel, error=str(e))
            return False

        for prefix, registry in self.routes.items():
            if channel.startswith(prefix):
                registry.broadcast(channel[len(prefix):], payload)
                return True

        logger.debug("subscriber.unrouted", channel=channel)
        return False

    async def close(self) -> None:
        self._cancel_retry()
        await self._teardown()

    # ─── Internals ────────────────────────────────────────

    async def _listen(self, pubsub) -> None:
        try:
            async for message in pubsub.listen():
                if message["type"] == "pmessage":
                    self.handle_message(message["channel"], message["data"])
        except BUS_ERRORS as e:
            logger.warning("subscriber.connection_lost", error=str(e))
            self.bus.report_failure(e)
            if self._pubsub is pubsub:
                self._pubsub = None
            await self._close_pubsub(pubsub)

    async def _retry_later(self) -> None:
        await asyncio.sleep(self.retry_delay)
        await self.subscribe()

    def _cancel_retry(self) -> None:
        if self._retry is not None and self._retry is not asyncio.current_task():
            self._retry.cancel()
        self._retry = None

    async def _teardown(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None and not listener.done():
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass

        pubsub, self._pubsub = self._pubsub, None
        if pubsub is not None:
            await self._close_pubsub(pubsub)

    async def _close_pubsub(self, pubsub) -> None:
        try:
            await pubsub.aclose()
        except BUS_ERRORS as e:
            logger.debug("subscriber.close_error", error=str(e))
