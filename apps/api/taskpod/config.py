"""Application settings using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TASKPOD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "TaskPod"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ==========================================================================
    # Database
    # ==========================================================================
    database_url: str = Field(default="sqlite+aiosqlite:///./taskpod.db")
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ==========================================================================
    # Kubernetes
    # ==========================================================================
    # Empty URL means in-cluster discovery through the service account
    kube_api_url: str = Field(default="")
    kube_token: str = Field(default="")
    kube_ca_cert: str | None = Field(default=None)
    kube_verify_ssl: bool = True
    kube_namespace: str = "default"
    kube_request_timeout: float = 30.0
    executor_image: str = "busybox"

    # ==========================================================================
    # Execution
    # ==========================================================================
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    wait_timeout_seconds: float = Field(default=300.0, gt=0)
    max_poll_failures: int = Field(default=3, ge=0)
    max_output_bytes: int = Field(default=1024 * 1024, gt=0)

    # ==========================================================================
    # Validator
    # ==========================================================================
    denied_commands: list[str] = Field(
        default=["rm", "mkfs", "dd", "reboot", "shutdown"]
    )

    # ==========================================================================
    # API
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
