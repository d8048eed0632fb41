"""Application configuration.

Settings are read from environment variables, falling back to a ``.env`` file
and then to the defaults below.

For local development:
    uvicorn flowscope.main:app --reload

Pointing the live view at another default broker:
    KAFKA_BOOTSTRAP_SERVERS=broker-1:9092,broker-2:9092 uvicorn flowscope.main:app
"""

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Falls back to:
    - .env file (if present)
    - Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse cors_origins from a JSON array or a comma-separated string."""
        if v is None or v == "":
            return []
        if isinstance(v, str):
            try:
                import json

                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("sentry_dsn", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        """Convert empty strings to None for optional fields."""
        if v == "" or v is None:
            return None
        return v

    # Kafka
    kafka_bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Default Kafka bootstrap servers when a request names none",
    )
    kafka_client_id: str = Field(
        default="subscriber-tool",
        description="Client ID used for consumers and producers",
    )
    kafka_group_prefix: str = Field(
        default="subscriber-tool",
        description="Consumer group prefix; the consumer ID is appended",
    )
    kafka_connection_timeout_ms: int = Field(
        default=10000,
        description="Broker connection and request timeout in milliseconds",
    )
    kafka_session_timeout_ms: int = Field(
        default=30000,
        description="Consumer group session timeout in milliseconds",
    )
    kafka_heartbeat_interval_ms: int = Field(
        default=3000,
        description="Consumer group heartbeat interval in milliseconds",
    )
    kafka_poll_timeout_ms: int = Field(
        default=1000,
        description="How long a consumer poll waits for records",
    )

    # Live streams
    stream_queue_max_size: int = Field(
        default=100,
        description="Messages buffered per stream session; the oldest are dropped first",
    )
    stream_history_max_size: int = Field(
        default=1000,
        description="Messages kept per stream session for the persisted live view",
    )
    stream_poll_interval_seconds: float = Field(
        default=0.1,
        description="How often the SSE endpoint drains a session buffer",
    )

    # Flow correlation
    flow_search_max_depth: int = Field(
        default=64,
        description="Maximum nesting depth searched for a flow ID",
    )

    # Persistence
    storage_dir: str = Field(
        default=".flowscope",
        description="Directory holding the last uploaded document and live session",
    )

    # Sentry
    sentry_dsn: str | None = Field(
        default=None,
        description="Sentry DSN for error monitoring",
    )

    # Application
    app_name: str = Field(
        default="FlowScope Message Flow Monitor",
        description="Application name",
    )
    app_version: str = Field(
        default="0.1.0",
        description="Application version",
    )
    debug: bool = Field(
        default=False,
        description="Debug mode",
    )
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="Allowed CORS origins (comma-separated or JSON array)",
    )
    cors_allow_credentials: bool = Field(
        default=True,
        description="Allow credentials in CORS requests",
    )
    cors_max_age: int = Field(
        default=3600,
        description="CORS preflight cache duration in seconds",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
