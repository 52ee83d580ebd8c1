"""RelayService — the relay's single composition root.

Learn: Instead of module-level maps and flags, one RelayService is built
at startup (in the FastAPI lifespan) and handed to the routes through a
dependency. It owns:

- two ConnectionRegistry instances (product, user)
- the BusConnection (Redis + reconnect state machine)
- the SubscriptionManager (PSUBSCRIBE + demux)
- the StatusWatcher (connectivity edges → redis_status frames)

Opening a stream: queue the greeting frame, register, start the
heartbeat. Closing it (client gone, write failure, heartbeat failure)
always goes through registry.unregister, which also stops the heartbeat.
"""

import enum
from typing import Any, AsyncIterator

import structlog

from sserelay.config import Settings
from sserelay.realtime.bus import BusConnection
from sserelay.realtime.frames import encode_data
from sserelay.realtime.registry import Connection, ConnectionRegistry
from sserelay.realtime.subscriber import SubscriptionManager
from sserelay.realtime.watcher import StatusWatcher

logger = structlog.get_logger()


class Domain(str, enum.Enum):
    """Interest domains. The value names the registry; key_field the id field."""

    PRODUCT = "product"
    USER = "user"

    @property
    def key_field(self) -> str:
        return f"{self.value}Id"


class RelayService:
    def __init__(
        self,
        bus: BusConnection,
        *,
        product_prefix: str = "sse:product:",
        user_prefix: str = "sse:user:",
        heartbeat_interval: float = 30.0,
        status_poll_interval: float = 1.0,
        resubscribe_delay: float = 5.0,
        max_pending_frames: int = 256,
    ):
        self.bus = bus
        self.heartbeat_interval = heartbeat_interval
        self.max_pending_frames = max_pending_frames

        self.registries = {
            Domain.PRODUCT: ConnectionRegistry(Domain.PRODUCT.value),
            Domain.USER: ConnectionRegistry(Domain.USER.value),
        }
        self.prefixes = {Domain.PRODUCT: product_prefix, Domain.USER: user_prefix}
        self.subscriptions = SubscriptionManager(
            bus,
            {self.prefixes[d]: self.registries[d] for d in Domain},
            retry_delay=resubscribe_delay,
        )
        self.watcher = StatusWatcher(
            bus,
            list(self.registries.values()),
            self.subscriptions,
            interval=status_poll_interval,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayService":
        bus = BusConnection(
            settings.redis_url,
            reconnect_step=settings.reconnect_step,
            reconnect_ceiling=settings.reconnect_ceiling,
            health_check_interval=settings.redis_health_check_interval,
            connect_timeout=settings.redis_connect_timeout,
        )
        return cls(
            bus,
            product_prefix=settings.product_prefix,
            user_prefix=settings.user_prefix,
            heartbeat_interval=settings.heartbeat_interval,
            status_poll_interval=settings.status_poll_interval,
            resubscribe_delay=settings.resubscribe_delay,
            max_pending_frames=settings.max_pending_frames,
        )

    @property
    def products(self) -> ConnectionRegistry:
        return self.registries[Domain.PRODUCT]

    @property
    def users(self) -> ConnectionRegistry:
        return self.registries[Domain.USER]

    # ─── Lifecycle ────────────────────────────────────────

    async def start(self, startup_timeout: float = 5.0) -> None:
        """Connect to Redis (waiting at most startup_timeout) and start watching.

        Redis being down is not an error: the relay serves anyway and
        tells clients to fall back to polling.
        """
        await self.bus.start()
        if await self.bus.wait_connected(startup_timeout):
            await self.subscriptions.subscribe()
        self.watcher.start()
        logger.info("relay.started", redis_connected=self.bus.connected)

    async def stop(self) -> None:
        await self.watcher.stop()
        await self.subscriptions.close()
        await self.bus.close()
        logger.info("relay.stopped")

    # ─── Streams ──────────────────────────────────────────

    def greeting(self, domain: Domain, key: str) -> dict[str, Any]:
        """The first frame of every stream: who you are and whether Redis is up."""
        connected = self.bus.connected
        message: dict[str, Any] = {
            "type": "connected",
            domain.key_field: key,
            "redis": "connected" if connected else "disconnected",
        }
        if domain is Domain.PRODUCT:
            message["fallbackPolling"] = not connected
        return message

    def open_stream(self, domain: Domain, key: str) -> Connection:
        registry = self.registries[domain]
        connection = Connection(key, max_pending=self.max_pending_frames)
        connection.write(encode_data(self.greeting(domain, key)))
        registry.register(key, connection)
        connection.start_heartbeat(
            self.heartbeat_interval,
            lambda conn: registry.unregister(key, conn),
        )
        return connection

    async def stream(self, domain: Domain, key: str) -> AsyncIterator[str]:
        """Frames for one client, from greeting until the stream ends."""
        connection = self.open_stream(domain, key)
        try:
            async for frame in connection.frames():
                yield frame
        finally:
            self.registries[domain].unregister(key, connection)

    # ─── Health ───────────────────────────────────────────

    def health(self) -> dict[str, Any]:
        connected = self.bus.connected
        return {
            "status": "ok" if connected else "degraded",
            "productConnections": len(self.products),
            "userConnections": len(self.users),
            "redis": "connected" if connected else "disconnected",
            "reconnectAttempts": self.bus.reconnect_attempts,
        }
