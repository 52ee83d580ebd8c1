"""Redis connection manager — one logical connection with automatic recovery.

Learn: The connection is an explicit state machine rather than a bag of
event listeners:

    DISCONNECTED → CONNECTING → CONNECTED
         ↑              |            |  (error / close)
         |              ↓            ↓
         +------ DISCONNECTED ← ------+
                       |
                 RECONNECTING → CONNECTING → ...

One supervisor task drives it. While CONNECTED it pings Redis on a fixed
interval and also wakes up early when another component (the pub/sub
listener) reports that the socket died. Every reconnect waits
min(attempt × step, ceiling) seconds and it retries forever; losing Redis
is never fatal, it just shows up in `connected` and `reconnect_attempts`.
"""

import asyncio
import enum
from typing import Callable, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger()

# Everything a dead or unreachable Redis can throw at us
BUS_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class BusState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


_TRANSITIONS: dict[BusState, frozenset[BusState]] = {
    BusState.DISCONNECTED: frozenset({BusState.CONNECTING, BusState.RECONNECTING}),
    BusState.CONNECTING: frozenset({BusState.CONNECTED, BusState.DISCONNECTED}),
    BusState.CONNECTED: frozenset({BusState.DISCONNECTED}),
    BusState.RECONNECTING: frozenset({BusState.CONNECTING}),
}


class InvalidTransition(RuntimeError):
    """A state change the connection state machine does not allow."""


def reconnect_delay(attempt: int, step: float = 0.5, ceiling: float = 5.0) -> float:
    """Linear backoff, capped: attempt 1 → step, attempt 2 → 2×step, ..."""
    return min(attempt * step, ceiling)


class BusConnection:
    """Owns the Redis client and its connect/reconnect lifecycle."""

    def __init__(
        self,
        url: str,
        *,
        reconnect_step: float = 0.5,
        reconnect_ceiling: float = 5.0,
        health_check_interval: float = 1.0,
        connect_timeout: float = 2.0,
        client_factory: Optional[Callable[[], aioredis.Redis]] = None,
    ):
        self.url = url
        self.reconnect_step = reconnect_step
        self.reconnect_ceiling = reconnect_ceiling
        self.health_check_interval = health_check_interval
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory or self._default_client
        self.client: Optional[aioredis.Redis] = None

        self.state = BusState.DISCONNECTED
        self.reconnect_attempts = 0
        self.last_error: Optional[str] = None
        self.connect_generation = 0  # bumped on every successful connect

        self._connected = asyncio.Event()
        self._lost = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def _default_client(self) -> aioredis.Redis:
        return aioredis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.connect_timeout,
        )

    @property
    def connected(self) -> bool:
        return self.state is BusState.CONNECTED

    # ─── State machine ────────────────────────────────────

    def transition(self, new: BusState, error: Optional[BaseException] = None) -> None:
        """Move to `new`, applying its side effects (counters, events, logs)."""
        old = self.state
        if new not in _TRANSITIONS[old]:
            raise InvalidTransition(f"{old.value} → {new.value}")
        self.state = new

        if new is BusState.CONNECTED:
            self.reconnect_attempts = 0
            self.connect_generation += 1
            self.last_error = None
            self._lost.clear()
            self._connected.set()
            logger.info("bus.connected", url=self.url)
        elif new is BusState.DISCONNECTED:
            self._connected.clear()
            if error is not None:
                self.last_error = str(error) or type(error).__name__
                logger.error("bus.error", error=self.last_error)
            if old is BusState.CONNECTED:
                logger.warning("bus.disconnected")
        elif new is BusState.RECONNECTING:
            self.reconnect_attempts += 1
            logger.info("bus.reconnecting", attempt=self.reconnect_attempts)
        elif new is BusState.CONNECTING:
            logger.debug("bus.connecting", url=self.url)

    def report_failure(self, error: BaseException) -> None:
        """Tell the supervisor the connection died (e.g. from a pub/sub reader)."""
        if self.state is BusState.CONNECTED and not self._lost.is_set():
            self.last_error = str(error) or type(error).__name__
            self._lost.set()

    # ─── Lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        """Create the client and start the supervisor task."""
        if self._task is not None:
            return
        if self.client is None:
            self.client = self._client_factory()
        self._task = asyncio.create_task(self._run(), name="bus-connection")

    async def wait_connected(self, timeout: float) -> bool:
        """Block until the first successful connect or `timeout` seconds."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("bus.startup_timeout", timeout=timeout, url=self.url)
            return False
        return True

    async def close(self) -> None:
        """Stop reconnecting and close the client."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.client is not None:
            try:
                await self.client.aclose()
            except BUS_ERRORS as e:
                logger.debug("bus.close_error", error=str(e))
            self.client = None
        self.state = BusState.DISCONNECTED
        self._connected.clear()
        logger.info("bus.closed")

    # ─── Supervisor ───────────────────────────────────────

    async def _run(self) -> None:
        while True:
            self.transition(BusState.CONNECTING)
            try:
                await asyncio.wait_for(self.client.ping(), timeout=self.connect_timeout)
            except BUS_ERRORS as e:
                self.transition(BusState.DISCONNECTED, error=e)
            else:
                self.transition(BusState.CONNECTED)
                await self._monitor()

            self.transition(BusState.RECONNECTING)
            delay = reconnect_delay(
                self.reconnect_attempts, self.reconnect_step, self.reconnect_ceiling
            )
            logger.info(
                "bus.retry_scheduled", delay=delay, attempt=self.reconnect_attempts
            )
            await asyncio.sleep(delay)

    async def _monitor(self) -> None:
        """Return once the connection is lost, leaving the state DISCONNECTED."""
        while True:
            try:
                await asyncio.wait_for(
                    self._lost.wait(), timeout=self.health_check_interval
                )
            except asyncio.TimeoutError:
                try:
                    await asyncio.wait_for(
                        self.client.ping(), timeout=self.connect_timeout
                    )
                except BUS_ERRORS as e:
                    self.transition(BusState.DISCONNECTED, error=e)
                    return
            else:
                self.transition(
                    BusState.DISCONNECTED,
                    error=ConnectionError(self.last_error or "connection lost"),
                )
                return
