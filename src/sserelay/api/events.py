"""SSE stream endpoints — one per interest domain.

Learn: Each GET opens a long-lived text/event-stream response. The body is
an async generator over the client's Connection queue (see
RelayService.stream): first the greeting frame, then whatever the relay
broadcasts to that key, plus a heartbeat comment every 30s. When the
client goes away Starlette cancels the generator and its finally block
unregisters the connection.

X-Accel-Buffering: no stops nginx from holding frames back.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from sserelay.api.dependencies import get_relay
from sserelay.realtime.service import Domain, RelayService

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _event_stream(relay: RelayService, domain: Domain, key: str) -> StreamingResponse:
    return StreamingResponse(
        relay.stream(domain, key),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/events/products/{product_id}")
async def product_events(product_id: str, relay: RelayService = Depends(get_relay)):
    """Bid feed for one product."""
    return _event_stream(relay, Domain.PRODUCT, product_id)


@router.get("/events/users/{user_id}")
async def user_events(user_id: str, relay: RelayService = Depends(get_relay)):
    """Message feed for one user."""
    return _event_stream(relay, Domain.USER, user_id)
