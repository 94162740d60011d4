"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.

The broker and puller variables have no defaults: a missing one fails
validation and the process exits with the configuration exit code.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from filepuller.constants import (
    DEFAULT_ACK_WAIT_SECONDS,
    DEFAULT_NAK_DELAY_SECONDS,
    DEFAULT_RETRIEVAL_TIMEOUT_SECONDS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Broker connection and mutual TLS material
    nats_url: str = Field(min_length=1)
    nats_ca: str = Field(min_length=1)
    nats_key: str = Field(min_length=1)
    nats_cert: str = Field(min_length=1)
    puller_connect_timeout_seconds: float = Field(default=5.0, gt=0)

    # Queue topology
    puller_stream: str = Field(min_length=1)
    puller_topicbase: str = Field(min_length=1)
    puller_consumer: str = Field(min_length=1)
    puller_bucket: str = Field(min_length=1)
    puller_ack_wait_seconds: float = Field(default=DEFAULT_ACK_WAIT_SECONDS, gt=0)
    puller_max_deliver: int = -1
    puller_provision_timeout_seconds: float = Field(default=10.0, gt=0)

    # Object store bucket
    puller_object_store_max_bytes: int | None = Field(default=None, gt=0)
    puller_object_store_compression: bool = True
    puller_object_store_replicas: int = Field(default=1, ge=1)

    # Destination
    puller_destination: Path
    puller_key_quote_chars: str = '"'
    puller_strip_destination_quotes: bool = True
    puller_sweep_partials: bool = True

    # Delivery handling
    puller_max_concurrency: int = Field(default=1, ge=1)
    puller_fetch_timeout_seconds: float = Field(default=1.0, gt=0)
    puller_retrieval_timeout_seconds: float = Field(
        default=DEFAULT_RETRIEVAL_TIMEOUT_SECONDS, gt=0
    )
    puller_nak_delay_seconds: float = Field(default=DEFAULT_NAK_DELAY_SECONDS, gt=0)
    puller_ack_timeout_seconds: float = Field(default=10.0, gt=0)
    puller_delete_timeout_seconds: float = Field(default=10.0, gt=0)
    puller_heartbeat_interval_seconds: float = Field(default=60.0, ge=0)
    puller_show_deleted: bool = False

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "filepuller"
    metrics_port: int = Field(default=9090, ge=0)
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    @field_validator("puller_topicbase")
    @classmethod
    def validate_topicbase(cls, value: str) -> str:
        """Reject wildcards and dangling separators in the subject prefix."""
        if any(token in value for token in ("*", ">", " ")):
            raise ValueError("topicbase must not contain wildcards or spaces")
        if value.startswith(".") or value.endswith("."):
            raise ValueError("topicbase must not start or end with '.'")
        return value

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value

    @property
    def stream_subjects(self) -> list[str]:
        """Subjects captured by the work-queue stream."""
        return [f"{self.puller_topicbase}.>"]

    @property
    def upload_subject(self) -> str:
        """Filter subject of the durable consumer."""
        return f"{self.puller_topicbase}.upload"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
