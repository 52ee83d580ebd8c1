"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with SSE_ prefix.
No YAML files, no file-based config, just env vars (12-factor app style).

The Redis URL also honours the plain REDIS_URL variable, since producers
and the relay usually share one.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All relay configuration. Set via SSE_* env vars."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3002
    shutdown_timeout: float = 1.0  # seconds uvicorn waits on open streams

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6380",
        validation_alias=AliasChoices("SSE_REDIS_URL", "REDIS_URL"),
    )
    redis_connect_timeout: float = 2.0
    redis_health_check_interval: float = 1.0
    reconnect_step: float = 0.5  # delay grows by this much per attempt
    reconnect_ceiling: float = 5.0
    startup_timeout: float = 5.0  # wait this long for Redis before serving anyway

    # Channels
    product_prefix: str = "sse:product:"
    user_prefix: str = "sse:user:"

    # Streams
    heartbeat_interval: float = 30.0
    status_poll_interval: float = 1.0
    resubscribe_delay: float = 5.0
    max_pending_frames: int = 256  # per connection; overflow counts as a dead client

    # CORS
    cors_origin: str = "http://localhost:5173"
    cors_extra_origins: list[str] = [
        "http://localhost:3001",
        "http://localhost:5173",
    ]

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    model_config = {"env_prefix": "SSE_"}

    @property
    def cors_origins(self) -> list[str]:
        """Configured origin first, extras after, without duplicates."""
        return list(dict.fromkeys([self.cors_origin, *self.cors_extra_origins]))


# Singleton, import this everywhere
settings = Settings()
