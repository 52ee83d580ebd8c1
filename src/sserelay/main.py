"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan builds the RelayService, connects to Redis (without
letting an unreachable Redis block startup for more than
settings.startup_timeout) and tears everything down on shutdown.
Middleware, CORS, and routers all registered here.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sserelay import __version__
from sserelay.api import api_router
from sserelay.config import settings
from sserelay.logs import configure_logging
from sserelay.middleware.request_id import RequestIdMiddleware
from sserelay.realtime.service import RelayService

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Open streams are not drained on shutdown; closing Redis is
    the only cleanup.
    """
    logger.info(
        "sserelay.starting",
        version=__version__,
        port=settings.port,
        redis_url=settings.redis_url,
        cors_origins=settings.cors_origins,
    )

    relay = RelayService.from_settings(settings)
    app.state.relay = relay
    await relay.start(startup_timeout=settings.startup_timeout)
    logger.info(
        "sserelay.ready",
        redis="connected" if relay.bus.connected else "disconnected",
    )

    yield

    logger.info("sserelay.shutdown")
    await relay.stop()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging(settings.log_level, settings.json_logs)

    app = FastAPI(
        title="SSE Relay",
        description="Fans Redis pub/sub events out to Server-Sent Event streams",
        version=__version__,
        lifespan=lifespan,
    )

    # Request flow: RequestId → CORS → handler
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    return app


# Default app instance, run by `sse-relay serve`. Started with plain
# `uvicorn sserelay.main:app`, pass --timeout-graceful-shutdown too:
# SSE bodies never finish on their own, so uvicorn would wait forever.
app = create_app()
