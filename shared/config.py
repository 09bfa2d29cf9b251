"""
Shared configuration management for the TokenGate access gateway.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PROGRAM_ID = "HRhuJDBenXrraLRfEQpFxNKkMBDbBXmjfKguyFGsxrAL"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="TOKENGATE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Observability
    enable_tracing: bool = False
    otel_exporter: str = "http://localhost:4317"
    enable_console_tracing: bool = False


class GatewayConfig(BaseConfig):
    """Gateway service configuration."""

    service_name: str = "gateway"
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origin: str = "*"

    # Ledger
    ledger_backend: Literal["memory", "solana"] = "memory"
    solana_rpc_url: str = "https://api.devnet.solana.com"
    program_id: str = DEFAULT_PROGRAM_ID
    commitment: str = "confirmed"
    oracle_timeout_seconds: float = Field(default=5.0, gt=0)
    rpc_max_attempts: int = Field(default=3, ge=1)
    rpc_failure_threshold: int = Field(default=5, ge=1)
    rpc_recovery_timeout: float = Field(default=30.0, gt=0)

    # Rate limiting
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_scope: Literal["holder_resource", "holder"] = "holder_resource"
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # Usage accounting
    usage_queue_size: int = Field(default=10000, ge=1)
    usage_max_attempts: int = Field(default=3, ge=1)
    usage_retry_base_delay: float = Field(default=0.5, ge=0)

    @property
    def cors_origins_list(self) -> list:
        """Parse CORS origins, filtering empty strings."""
        origins = [o.strip() for o in self.cors_origin.split(",") if o.strip()]
        return origins or ["*"]


@lru_cache
def get_config() -> GatewayConfig:
    """Get cached gateway configuration."""
    return GatewayConfig()
