"""
flytrap.tier0_core.config
──────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic; invalid values fail when the
config is first loaded, not deep inside a lookup.

Library settings use the FLYTRAP_ prefix. Values the Fly.io platform injects
(FLY_API_TOKEN) keep their platform names.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from flytrap.tier0_core.errors import ConfigurationError


class FlytrapConfig(BaseSettings):
    """Typed flytrap configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Discovery ─────────────────────────────────────────────────────────────
    discovery_backend: str = Field(default="dns", alias="FLYTRAP_DISCOVERY_BACKEND")
    record_policy: str = Field(default="skip", alias="FLYTRAP_RECORD_POLICY")

    # ── DNS ───────────────────────────────────────────────────────────────────
    dns_server: str | None = Field(default=None, alias="FLYTRAP_DNS_SERVER")
    dns_port: int = Field(default=53, alias="FLYTRAP_DNS_PORT")
    dns_timeout: float = Field(default=5.0, alias="FLYTRAP_DNS_TIMEOUT")

    # ── Machines API ──────────────────────────────────────────────────────────
    api_origin: str | None = Field(default=None, alias="FLYTRAP_API_ORIGIN")
    api_timeout: float = Field(default=30.0, alias="FLYTRAP_API_TIMEOUT")
    api_token: str | None = Field(default=None, alias="FLY_API_TOKEN")

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="FLYTRAP_LOG_LEVEL")
    log_format: str = Field(default="json", alias="FLYTRAP_LOG_FORMAT")

    @field_validator("discovery_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        allowed = {"dns", "api"}
        if v.lower() not in allowed:
            raise ValueError(f"discovery_backend must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("record_policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        allowed = {"skip", "strict"}
        if v.lower() not in allowed:
            raise ValueError(f"record_policy must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        allowed = {"json", "console"}
        if v.lower() not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v.lower()


@lru_cache(maxsize=1)
def get_config() -> FlytrapConfig:
    """
    Return the singleton flytrap config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.

    Raises ConfigurationError when a setting fails validation.
    """
    try:
        return FlytrapConfig()
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ConfigurationError(
            "invalid_config",
            f"Invalid flytrap settings: {fields}.",
            detail=str(exc),
        ) from exc


def _reset_config() -> None:
    """For tests — clear the config cache."""
    get_config.cache_clear()
