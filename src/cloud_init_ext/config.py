"""Service configuration with pydantic-settings.

Requires: DATABASE_URL
Optional: DISCORD_WEBHOOK_URL (failure notifications), PLAYBOOKS, ANSIBLE_SSH_KEY,
pool and worker sizing.

Complex values are read as JSON from the environment, e.g.::

    PLAYBOOKS='[{"function": "base_config", "path": "/etc/cloud-init-ext/ip.yml"}]'
"""

from functools import lru_cache
from ipaddress import IPv4Network
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cloud_init_ext.playbooks import Playbook


class Settings(BaseSettings):
    """cloud-init-ext settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Required ===

    database_url: str = Field(
        ...,
        description="Async SQLAlchemy connection URL",
        examples=["postgresql+asyncpg://user:pass@db:5432/cloud_init_ext"],
    )

    # === HTTP ===

    host: str = Field(default="0.0.0.0", description="Listen address")  # noqa: S104
    port: int = Field(default=4333, ge=1, le=65535)

    # === Notifications ===

    discord_webhook_url: str = Field(
        default="",
        description="Discord webhook for failure reports (empty disables delivery)",
    )
    notification_timeout: float = Field(default=10.0, gt=0)

    # === Playbooks ===

    playbooks: list[Playbook] = Field(default_factory=list)
    ansible_ssh_key: str = Field(
        default="/etc/cloud-init-ext/id_ed25519",
        description="Private key passed to ansible-playbook via --private-key",
    )
    ansible_playbook_bin: str = Field(default="ansible-playbook")
    playbook_timeout: float = Field(
        default=1200,
        gt=0,
        description="Seconds before a running playbook is killed",
    )

    # === Address pool ===

    pool_network: IPv4Network = Field(default=IPv4Network("10.10.0.0/24"))
    pool_first_host: int = Field(default=1, ge=1, le=254)
    pool_ceiling: int = Field(default=254, ge=1, le=254)

    # === Worker pool ===

    max_concurrent_jobs: int = Field(default=4, ge=1)
    max_queued_jobs: int = Field(default=64, ge=1)
    shutdown_grace_period: float = Field(default=30.0, ge=0)

    # === DNS (not used by the provisioning pipeline) ===

    dns_api: Literal["cloudflare"] = "cloudflare"
    cf_api_token: str | None = None

    # === Logging ===

    service_name: str = Field(default="cloud-init-ext")
    log_format: Literal["json", "console"] = "console"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @model_validator(mode="after")
    def validate_pool_bounds(self) -> "Settings":
        if self.pool_first_host > self.pool_ceiling:
            raise ValueError("pool_first_host must not exceed pool_ceiling")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Validates required env vars on first call.
    Raises ValidationError if DATABASE_URL is missing.
    """
    return Settings()
