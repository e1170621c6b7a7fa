from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="COLLECTOR_", env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"
    # Path the collector endpoint is mounted on
    COLLECT_PATH: str = "/"
    # Identity cookie
    COOKIE_NAME: str = "acid"
    IDENTITY_BYTE_LENGTH: int = 16
    IDENTITY_MAX_AGE: int = 365 * 24 * 60 * 60  # seconds
    IDENTITY_SECRET: str | None = None  # unset: cookies are not signed
    COOKIE_SECURE: bool = False
    # "none", "all", a hop count, or comma-separated addresses/CIDRs
    TRUST_PROXY: str = "none"
    BODY_LIMIT: str = "10kb"
    # Per-subscriber buffer of the output channel
    CHANNEL_BUFFER: int = 1000
    # Downstream sink: "memory", "redis" or "none"
    SINK_ADAPTER: Literal["memory", "redis", "none"] = "memory"
    REDIS_URL: AnyUrl | None = None
    REDIS_STREAM_KEY: str = "collector:events"
    REDIS_STREAM_MAXLEN: int = 10000

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
