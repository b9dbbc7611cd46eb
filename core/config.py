"""Configuration models and loading."""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.exceptions import ConfigurationError

ENV_FILE = Path.cwd() / ".env"

CREDENTIAL_HEADER = "x-bridge-key"

AuthMode = Literal["diagnostic", "strict", "open"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class BridgeSettings(_Frozen):
    host: str = "0.0.0.0"
    port: int = Field(default=10000, ge=1, le=65535)
    log_level: str = "warning"
    debug: bool = False


class UpstreamSettings(_Frozen):
    base_url: str = "http://127.0.0.1:5127"

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("upstream URL must start with http:// or https://")
        return v.rstrip("/")


class AuthSettings(_Frozen):
    mode: AuthMode = "diagnostic"
    key: str | None = None
    header: str = CREDENTIAL_HEADER

    @property
    def enabled(self) -> bool:
        return self.mode != "open"


class CorsSettings(_Frozen):
    allowed_origins: tuple[str, ...] = ()

    @property
    def unrestricted(self) -> bool:
        return not self.allowed_origins


class LimitSettings(_Frozen):
    timeout: float = Field(default=30.0, gt=0)
    max_body_size: int = Field(default=2 * 1024 * 1024, gt=0)
    keep_alive_timeout: int = Field(default=5, ge=0)
    max_connections: int = 100
    max_keepalive_connections: int = 20


class Config(_Frozen):
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)
    limits: LimitSettings = Field(default_factory=LimitSettings)


def parse_origins(value: str | None) -> tuple[str, ...]:
    """Split a comma-separated origin list, dropping blanks."""
    if not value:
        return ()
    return tuple(s.strip() for s in value.split(",") if s.strip())


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build the configuration from environment variables.

    When ``environ`` is omitted, a ``.env`` file in the working directory is
    loaded first (existing variables win) and ``os.environ`` is used.

    Raises:
        ConfigurationError: a value is invalid, or the gate is enabled
            without a shared secret.
    """
    if environ is None:
        load_dotenv(ENV_FILE, override=False)
        environ = os.environ

    def _get(name: str) -> str | None:
        value = environ.get(name)
        if value is None or not value.strip():
            return None
        return value.strip()

    data: dict = {
        "bridge": {"debug": _parse_bool(environ.get("BRIDGE_DEBUG"))},
        "upstream": {},
        "auth": {"key": environ.get("BRIDGE_KEY") or None},
        "cors": {"allowed_origins": parse_origins(environ.get("ALLOWED_ORIGINS"))},
        "limits": {},
    }
    for env_name, section, field in (
        ("HOST", "bridge", "host"),
        ("PORT", "bridge", "port"),
        ("PROXY_LOG_LEVEL", "bridge", "log_level"),
        ("TARGET_API", "upstream", "base_url"),
        ("BRIDGE_AUTH_MODE", "auth", "mode"),
        ("PROXY_TIMEOUT", "limits", "timeout"),
        ("MAX_BODY_SIZE", "limits", "max_body_size"),
        ("KEEP_ALIVE_TIMEOUT", "limits", "keep_alive_timeout"),
    ):
        value = _get(env_name)
        if value is not None:
            data[section][field] = value.lower() if field == "mode" else value

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if config.auth.enabled and not config.auth.key:
        raise ConfigurationError(
            "BRIDGE_KEY is not set. Set it, or set BRIDGE_AUTH_MODE=open to run "
            "the bridge without authentication."
        )
    return config
