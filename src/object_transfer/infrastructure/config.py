"""Configuration management for the transfer engine using Pydantic Settings."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from object_transfer.domain.exceptions import InvalidArgumentError
from object_transfer.domain.value_objects.credentials import Credentials
from object_transfer.domain.value_objects.sizes import parse_size


def default_concurrency() -> int:
    """Worker count from the CPU count, clamped to 4-8."""
    return max(4, min(8, os.cpu_count() or 4))


def _check_size(value: str) -> str:
    try:
        parse_size(value)
    except InvalidArgumentError as exc:
        raise ValueError(str(exc)) from exc
    return value


class ConnectionConfig(BaseModel):
    """Object store endpoint and credentials."""

    endpoint: str = Field(default="localhost:9000", description="Store host[:port]")
    access_key: str = Field(default="", description="Access key id")
    secret_key: SecretStr = Field(default=SecretStr(""), description="Secret access key")
    session_token: SecretStr | None = Field(default=None, description="Temporary session token")
    region: str = Field(default="us-east-1", description="Signing region")
    use_ssl: bool = Field(default=True, description="Use https")
    verify_tls: bool = Field(default=True, description="Verify server certificates")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    max_connections: int = Field(default=10, ge=1, le=1000, description="Connection pool size")

    @property
    def base_url(self) -> str:
        if "://" in self.endpoint:
            return self.endpoint.rstrip("/")
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.endpoint.rstrip('/')}"


class TransferConfig(BaseModel):
    """Part sizing, concurrency and retry defaults."""

    part_size: str = Field(default="64MB", description="Upload part size")
    download_part_size: str = Field(default="32MB", description="Download part size")
    min_part_size: str = Field(default="5MB", description="Store minimum upload part size")
    download_min_part_size: str = Field(default="1MB", description="Minimum download part size")
    max_part_size: str = Field(default="5GB", description="Store maximum part size")
    max_part_count: int = Field(default=10000, ge=1, description="Store maximum part count")
    max_concurrency: int = Field(
        default_factory=default_concurrency, ge=1, le=64, description="Parts in flight"
    )
    max_retries: int = Field(default=3, ge=0, le=20, description="Retries after the first attempt")
    retry_base_delay_seconds: float = Field(default=0.5, ge=0, description="First retry delay")
    retry_max_delay_seconds: float = Field(default=20.0, ge=0, description="Retry delay cap")
    retry_jitter: float = Field(default=0.5, ge=0, le=1, description="Retry jitter fraction")
    part_timeout_seconds: float = Field(default=300.0, gt=0, description="Per-part deadline")
    transfer_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Whole-transfer deadline"
    )
    io_chunk_size: str = Field(default="64KB", description="Streaming chunk size")
    part_buffer_limit: str = Field(
        default="8MB", description="Download parts up to this size are buffered in memory"
    )
    progress_interval_seconds: float = Field(
        default=0.5, gt=0, description="Progress callback interval"
    )
    progress_window_seconds: float = Field(
        default=3.0, gt=0, description="Sliding window for throughput"
    )
    unsigned_payload: bool = Field(default=False, description="Skip part payload hashing")

    check_sizes = field_validator(
        "part_size",
        "download_part_size",
        "min_part_size",
        "download_min_part_size",
        "max_part_size",
        "io_chunk_size",
        "part_buffer_limit",
    )(_check_size)

    @property
    def part_size_bytes(self) -> int:
        return parse_size(self.part_size)

    @property
    def download_part_size_bytes(self) -> int:
        return parse_size(self.download_part_size)

    @property
    def min_part_size_bytes(self) -> int:
        return parse_size(self.min_part_size)

    @property
    def download_min_part_size_bytes(self) -> int:
        return parse_size(self.download_min_part_size)

    @property
    def max_part_size_bytes(self) -> int:
        return parse_size(self.max_part_size)

    @property
    def io_chunk_size_bytes(self) -> int:
        return parse_size(self.io_chunk_size)

    @property
    def part_buffer_limit_bytes(self) -> int:
        return parse_size(self.part_buffer_limit)


class SigningConfig(BaseModel):
    """Request signing configuration."""

    service: str = Field(default="s3", description="Service name in the credential scope")
    max_presign_expiry_seconds: int = Field(
        default=604800, ge=1, le=604800, description="Longest presigned URL validity"
    )
    default_presign_expiry_seconds: int = Field(
        default=3600, ge=1, le=604800, description="Presigned URL validity when unspecified"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    metrics_port: int = Field(default=8010, ge=1, le=65535, description="Prometheus metrics port")
    otlp_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="object_transfer", description="Service name for tracing")
    environment: str = Field(default="development", description="Deployment environment")


class Config(BaseSettings):
    """Main configuration for the transfer engine."""

    model_config = SettingsConfigDict(
        env_prefix="OBJECT_TRANSFER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    signing: SigningConfig = Field(default_factory=SigningConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def credentials(self) -> Credentials:
        """Build the immutable signing credentials."""
        token = self.connection.session_token
        return Credentials(
            access_key=self.connection.access_key,
            secret_key=self.connection.secret_key.get_secret_value(),
            region=self.connection.region,
            service=self.signing.service,
            session_token=token.get_secret_value() if token else None,
        )


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
