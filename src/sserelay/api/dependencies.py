"""FastAPI dependencies shared by the route modules."""

from fastapi import Request

from sserelay.realtime.service import RelayService


def get_relay(request: Request) -> RelayService:
    """The RelayService built by the app lifespan."""
    return request.app.state.relay
