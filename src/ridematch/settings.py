from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["text", "json"] = "text"
    environment: str = "development"

    model_config = SettingsConfigDict(env_prefix="LOG_")


class StoreSettings(BaseSettings):
    backend: Literal["memory", "sql"] = "memory"
    url: str = Field(
        default="sqlite:///data/ridematch.db",
        description="SQLAlchemy URL of the driver store (used when backend=sql)",
    )
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=0.2, ge=0.0, le=5.0)
    retry_multiplier: float = Field(default=2.0, ge=1.0, le=5.0)

    model_config = SettingsConfigDict(env_prefix="STORE_")


class IndexSettings(BaseSettings):
    h3_resolution: int = Field(
        default=9,
        ge=0,
        le=15,
        description="H3 resolution of spatial index cells (9 = ~174m edge)",
    )

    model_config = SettingsConfigDict(env_prefix="INDEX_")


class CacheSettings(BaseSettings):
    backend: Literal["memory", "redis"] = "memory"
    ttl_seconds: int = Field(
        default=300,
        ge=1,
        le=3600,
        description="Maximum staleness of a cached availability set or device token",
    )
    key_prefix: str = "ridematch"

    model_config = SettingsConfigDict(env_prefix="CACHE_")


class RedisSettings(BaseSettings):
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str = ""
    ssl: bool = False
    socket_timeout: float = Field(default=0.5, gt=0.0)

    model_config = SettingsConfigDict(env_prefix="REDIS_")


class DispatcherSettings(BaseSettings):
    workers: int = Field(default=4, ge=1, le=256)
    max_attempts: int = Field(default=5, ge=1, le=20)
    base_delay: float = Field(default=0.5, ge=0.0, le=60.0)
    multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay: float = Field(default=30.0, ge=0.0, le=600.0)
    send_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description="Per-call timeout for the delivery provider; a timeout is a failed attempt",
    )
    provider: Literal["logging", "http"] = "logging"
    gateway_url: str = "http://localhost:8080"

    model_config = SettingsConfigDict(env_prefix="DISPATCH_")

    @field_validator("gateway_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Push gateway URL must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_delays(self) -> "DispatcherSettings":
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self


class SchedulerSettings(BaseSettings):
    refresh_enabled: bool = True
    refresh_interval_seconds: float = Field(default=60.0, ge=1.0, le=3600.0)

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")


class Settings(BaseSettings):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    dispatcher: DispatcherSettings = Field(default_factory=DispatcherSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
