from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration, read from the environment and an optional .env file.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Valkey connection
    VALKEY_HOST: str = "localhost"
    VALKEY_PORT: int = 6379
    VALKEY_PASSWORD: Optional[str] = None
    VALKEY_DB: int = 0

    # Stream defaults
    STREAM_NAME: str = "vstream:messages"
    CONSUMER_GROUP_NAME: str = "vstream-group"
    CONSUMER_NAME: str = "vstream-consumer"
    STREAM_MAX_LENGTH: int = Field(default=10_000, gt=0)
    READ_BATCH_SIZE: int = Field(default=1000, gt=0)
    POLL_INTERVAL_MS: int = Field(default=500, gt=0)

    # Observability
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "vstream"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    # Admin API
    ADMIN_HOST: str = "0.0.0.0"
    ADMIN_PORT: int = 8001


settings = Settings()
