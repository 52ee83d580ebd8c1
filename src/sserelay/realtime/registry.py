"""Connection registry — interest key → open SSE streams.

Learn: A Connection is the relay's end of one browser stream. Writes never
touch the socket directly; they land in a bounded queue that the HTTP
response generator drains. That makes write() synchronous, so a broadcast
runs start to finish inside one event-loop turn and nothing can register
or unregister in the middle of it.

A write fails when the connection is already closed or its queue is full
(the client stopped reading). Either way the registry treats it as a
disconnect: the connection is unregistered and closed, and delivery to
everyone else continues.
"""

import asyncio
from typing import Any, Callable, Iterator, Optional

import structlog

from sserelay.realtime.frames import encode_data, encode_heartbeat

logger = structlog.get_logger()

_CLOSED = None  # queue sentinel that ends Connection.frames()


class ConnectionClosed(Exception):
    """Raised by Connection.write when the stream can no longer accept frames."""


class Connection:
    """One open, one-directional client stream.

    Owns its heartbeat task: close() cancels it, so every path that
    removes the connection from a registry also stops the heartbeat.
    """

    def __init__(self, key: str, max_pending: int = 256):
        self.key = key
        self.closed = False
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=max_pending)
        self._heartbeat: Optional[asyncio.Task] = None

    def write(self, frame: str) -> None:
        if self.closed:
            raise ConnectionClosed(self.key)
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as e:
            raise ConnectionClosed(f"{self.key}: client is not reading") from e

    def start_heartbeat(
        self,
        interval: float,
        on_failure: Callable[["Connection"], None],
    ) -> None:
        """Write a comment frame every `interval` seconds until closed."""
        self._heartbeat = asyncio.create_task(self._beat(interval, on_failure))

    async def _beat(self, interval: float, on_failure: Callable[["Connection"], None]):
        while True:
            await asyncio.sleep(interval)
            try:
                self.write(encode_heartbeat())
            except ConnectionClosed:
                on_failure(self)
                return

    def close(self) -> None:
        """Stop the heartbeat and end the frame stream. Idempotent."""
        if self.closed:
            return
        self.closed = True
        if self._heartbeat is not None and self._heartbeat is not asyncio.current_task():
            self._heartbeat.cancel()
        self._heartbeat = None
        # Pending frames are dropped; the reader is gone or too slow anyway.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def frames(self):
        """Yield queued frames in write order until the connection closes."""
        while True:
            frame = await self._queue.get()
            if frame is _CLOSED:
                return
            yield frame

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class ConnectionRegistry:
    """Map of interest key → connections, for one interest domain.

    Connections per key are kept in a dict used as an ordered set, so
    broadcasts reach them in registration order. A key whose last
    connection leaves is removed from the map.
    """

    def __init__(self, domain: str):
        self.domain = domain
        self._connections: dict[str, dict[Connection, None]] = {}

    def register(self, key: str, connection: Connection) -> None:
        self._connections.setdefault(key, {})[connection] = None
        logger.info(
            "relay.registered",
            domain=self.domain,
            key=key,
            total=len(self._connections[key]),
        )

    def unregister(self, key: str, connection: Connection) -> None:
        """Remove and close a connection. Unknown connections are ignored."""
        connection.close()
        connections = self._connections.get(key)
        if connections is None or connection not in connections:
            return
        del connections[connection]
        if not connections:
            del self._connections[key]
        logger.info(
            "relay.unregistered",
            domain=self.domain,
            key=key,
            remaining=len(connections),
        )

    def broadcast(self, key: str, payload: Any) -> int:
        """Send payload to every connection under key. Returns frames delivered."""
        connections = self._connections.get(key)
        if not connections:
            return 0
        sent = self._deliver(key, list(connections), encode_data(payload))
        logger.debug("relay.broadcast", domain=self.domain, key=key, sent=sent)
        return sent

    def broadcast_all(self, payload: Any) -> int:
        """Send payload to every connection under every key."""
        frame = encode_data(payload)
        sent = 0
        for key, connections in list(self._connections.items()):
            sent += self._deliver(key, list(connections), frame)
        return sent

    def _deliver(self, key: str, connections: list[Connection], frame: str) -> int:
        # Iterates a snapshot: a failed write unregisters from the live set.
        sent = 0
        for connection in connections:
            try:
                connection.write(frame)
            except ConnectionClosed as e:
                logger.warning(
                    "relay.write_failed",
                    domain=self.domain,
                    key=key,
                    error=str(e),
                )
                self.unregister(key, connection)
            else:
                sent += 1
        return sent

    def connections(self, key: str) -> tuple[Connection, ...]:
        return tuple(self._connections.get(key, ()))

    def keys(self) -> Iterator[str]:
        return iter(list(self._connections))

    def connection_count(self) -> int:
        return sum(len(c) for c in self._connections.values())

    def __contains__(self, key: str) -> bool:
        return key in self._connections

    def __len__(self) -> int:
        """Number of keys with at least one open connection."""
        return len(self._connections)
