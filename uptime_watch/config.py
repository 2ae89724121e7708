"""Configuration management for the uptime monitor."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


DEFAULT_CONFIG_PATH = "config.yaml"


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


class MonitorConfig(BaseModel):
    """Runtime configuration, loaded once at startup."""

    model_config = ConfigDict(frozen=True)

    check_interval_seconds: float = Field(default=60.0, gt=0, description="Polling period per endpoint")
    telegram_chat_id: str = Field(description="Destination chat for alerts")
    failure_threshold: int = Field(default=3, ge=1, description="Consecutive failures before a down alert")
    servers: list[str] = Field(min_length=1, description="Endpoint URLs to monitor")
    telegram_token: str = Field(min_length=1, description="Telegram bot token")

    probe_timeout_seconds: float = Field(default=15.0, gt=0, description="HTTP timeout for a single probe")
    poll_timeout_seconds: int = Field(default=30, ge=1, description="Telegram getUpdates long-poll wait")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("telegram_chat_id", mode="before")
    @classmethod
    def _chat_id_as_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("telegram_chat_id is empty")
        return value

    @field_validator("servers")
    @classmethod
    def _validate_servers(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        out: list[str] = []
        for idx, raw in enumerate(value):
            url = raw.strip()
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"servers[{idx}] must be an http(s) URL, got {raw!r}")
            if url in seen:
                raise ValueError(f"servers[{idx}] is a duplicate of {url!r}")
            seen.add(url)
            out.append(url)
        return out


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping")
    return data


def load_config(config_path: str | Path | None = None) -> MonitorConfig:
    """Load configuration from file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("UPTIME_WATCH_CONFIG", DEFAULT_CONFIG_PATH)

    config_data = _read_yaml(Path(config_path))

    env_overrides = {
        "telegram_token": os.getenv("TELEGRAM_BOT_TOKEN"),
        "telegram_chat_id": os.getenv("TELEGRAM_CHAT_ID"),
        "check_interval_seconds": os.getenv("UPTIME_WATCH_INTERVAL_SECONDS"),
        "failure_threshold": os.getenv("UPTIME_WATCH_FAILURE_THRESHOLD"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    for key, value in env_overrides.items():
        if value is not None and value.strip():
            config_data[key] = value.strip()

    try:
        return MonitorConfig(**config_data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{exc}") from exc
