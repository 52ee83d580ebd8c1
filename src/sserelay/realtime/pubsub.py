"""Publishing side — how producers put events on the relay's channels.

Learn: Redis pub/sub is fire-and-forget. If no relay is subscribed (or
Redis is down) the event is lost; that's fine for live bid and message
feeds because clients fall back to polling the API while the relay
reports Redis as disconnected.

Channel naming: sse:product:{product_id} and sse:user:{user_id}
"""

import json
from typing import Any

import redis.asyncio as aioredis

from sserelay.config import settings
from sserelay.realtime.service import Domain


def channel_for(domain: Domain, key: Any) -> str:
    prefix = {
        Domain.PRODUCT: settings.product_prefix,
        Domain.USER: settings.user_prefix,
    }[Domain(domain)]
    return f"{prefix}{key}"


async def publish_event(
    redis: aioredis.Redis,
    domain: Domain,
    key: Any,
    payload: dict[str, Any],
) -> int:
    """Publish one JSON event. Returns how many subscribers received it."""
    return await redis.publish(channel_for(domain, key), json.dumps(payload))


async def publish_product_update(
    redis: aioredis.Redis, product_id: Any, payload: dict[str, Any]
) -> int:
    """Bid results, status changes, typing notices: anything on a product feed."""
    return await publish_event(redis, Domain.PRODUCT, product_id, payload)


async def publish_message_notification(
    redis: aioredis.Redis, user_id: Any, payload: dict[str, Any]
) -> int:
    return await publish_event(redis, Domain.USER, user_id, payload)
