"""
Client Configuration — Validated settings and environment loading.

Reads settings from environment variables:
    VAULT_API_URL, VAULT_API_KEY, VAULT_ACCESS_TOKEN, VAULT_REFRESH_TOKEN,
    VAULT_TIMEOUT, VAULT_REQUEST_SIGNING, VAULT_AUDIT_LOG, VAULT_AUDIT_LOG_PATH

Security Note:
    Never log API keys or tokens. Only log the auth mode and base URL.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .security.tokens import DEFAULT_REFRESH_BUFFER_MS

logger = logging.getLogger("vault_sdk.config")

DEFAULT_API_URL = "https://vault.lifestreamdynamics.com"
DEFAULT_TIMEOUT = 30.0

_TRUE_VALUES = ("1", "true", "yes", "on")


def normalize_base_url(value: Optional[str]) -> str:
    """Strip trailing slashes; fall back to the default URL when empty."""
    value = (value or "").strip().rstrip("/")
    if not value:
        return DEFAULT_API_URL
    if not value.startswith(("http://", "https://")):
        raise ValueError(f"base_url must be an http(s) URL: {value}")
    return value


def _env_flag(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in _TRUE_VALUES


class ClientConfig(BaseModel):
    """Validated client configuration."""

    base_url: str = Field(default=DEFAULT_API_URL)
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    refresh_buffer_ms: int = Field(default=DEFAULT_REFRESH_BUFFER_MS, ge=0)
    enable_request_signing: Optional[bool] = None
    enable_audit_logging: bool = False
    audit_log_path: Optional[str] = None

    @field_validator("base_url", mode="before")
    @classmethod
    def validate_base_url(cls, v: Optional[str]) -> str:
        return normalize_base_url(v)

    @model_validator(mode="after")
    def validate_credentials(self) -> "ClientConfig":
        """Ensure an API key or an access token is present."""
        if not self.api_key and not self.access_token:
            raise ValueError("Either api_key or access_token is required")
        return self

    @property
    def uses_api_key(self) -> bool:
        return bool(self.api_key)

    @property
    def should_sign(self) -> bool:
        """Signing defaults to on for API-key auth and off for JWT auth."""
        if not self.api_key:
            return False
        if self.enable_request_signing is None:
            return True
        return self.enable_request_signing

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Create ClientConfig from environment variables.

        Keyword arguments take precedence over the environment.

        Returns:
            Populated ClientConfig instance.
        """
        values = {
            "base_url": os.environ.get("VAULT_API_URL", DEFAULT_API_URL),
            "api_key": os.environ.get("VAULT_API_KEY") or None,
            "access_token": os.environ.get("VAULT_ACCESS_TOKEN") or None,
            "refresh_token": os.environ.get("VAULT_REFRESH_TOKEN") or None,
            "timeout": os.environ.get("VAULT_TIMEOUT", DEFAULT_TIMEOUT),
            "enable_request_signing": _env_flag("VAULT_REQUEST_SIGNING"),
            "enable_audit_logging": _env_flag("VAULT_AUDIT_LOG") or False,
            "audit_log_path": os.environ.get("VAULT_AUDIT_LOG_PATH") or None,
        }
        values.update(overrides)
        config = cls(**values)
        logger.debug(
            "Loaded client config from environment: url=%s auth=%s",
            config.base_url, "api_key" if config.uses_api_key else "jwt",
        )
        return config
