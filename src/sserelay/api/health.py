"""Health check endpoint.

Learn: Reports whether Redis is reachable and how many keys have open
streams. "degraded" means streams still work but carry no pushed events
(clients are polling), so load balancers should keep routing here.
"""

from fastapi import APIRouter, Depends

from sserelay.api.dependencies import get_relay
from sserelay.realtime.service import RelayService

router = APIRouter()


@router.get("/health")
async def health_check(relay: RelayService = Depends(get_relay)):
    """Relay status, open-stream key counts and Redis connectivity."""
    return relay.health()
