"""sse-relay CLI — run the relay, poke it, publish test events.

Usage:
    sse-relay serve                              # Run the relay (uvicorn)
    sse-relay serve --port 3002
    sse-relay health                             # GET /health on a running relay
    sse-relay publish product 42 '{"bid": 100}'  # Publish an event to Redis
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import click
import httpx
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from sserelay import __version__
from sserelay.config import settings
from sserelay.realtime.pubsub import channel_for, publish_event
from sserelay.realtime.service import Domain

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _relay_url() -> str:
    default = f"http://localhost:{settings.port}"
    return os.environ.get("SSE_RELAY_URL", default).rstrip("/")


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="sse-relay")
def main():
    """SSE relay — Redis pub/sub to Server-Sent Events."""


@main.command()
@click.option("--host", default=None, help=f"Bind address (default: {settings.host})")
@click.option("--port", "-p", type=int, default=None, help=f"Port (default: {settings.port})")
def serve(host: Optional[str], port: Optional[int]):
    """Run the relay server."""
    import uvicorn

    uvicorn.run(
        "sserelay.main:app",
        host=host or settings.host,
        port=port or settings.port,
        timeout_graceful_shutdown=settings.shutdown_timeout,
        log_level=settings.log_level.lower(),
    )


@main.command()
@click.option("--url", default=None, help="Relay base URL (or set SSE_RELAY_URL)")
def health(url: Optional[str]):
    """Show a running relay's health. Exits 1 when degraded or unreachable."""
    base = (url or _relay_url()).rstrip("/")
    try:
        resp = httpx.get(f"{base}/health", timeout=10.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        click.secho(f"Error: relay not reachable at {base}: {e}", fg="red", err=True)
        sys.exit(1)

    data = resp.json()
    click.echo(_pretty_json(data))
    if data.get("status") != "ok":
        click.secho("Relay is degraded (Redis disconnected)", fg="yellow", err=True)
        sys.exit(1)


@main.command()
@click.argument("domain", type=click.Choice([d.value for d in Domain]))
@click.argument("key")
@click.argument("payload")
@click.option("--redis-url", default=None, help="Redis URL (default: from settings)")
def publish(domain: str, key: str, payload: str, redis_url: Optional[str]):
    """Publish a JSON PAYLOAD to the DOMAIN channel for KEY."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="PAYLOAD")

    try:
        receivers = asyncio.run(_publish_impl(redis_url or settings.redis_url, Domain(domain), key, data))
    except RedisError as e:
        click.secho(f"Error: publish failed: {e}", fg="red", err=True)
        sys.exit(1)

    click.echo(f"Published to {channel_for(Domain(domain), key)} ({receivers} subscribers)")


async def _publish_impl(url: str, domain: Domain, key: str, data: dict) -> int:
    r = aioredis.from_url(url, decode_responses=True)
    try:
        return await publish_event(r, domain, key, data)
    finally:
        await r.aclose()


if __name__ == "__main__":
    main()
