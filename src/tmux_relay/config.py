"""Configuration management for the tmux relay."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_IDLE_PATTERN = "─" * 20
MAX_SESSION_PREFIX_LENGTH = 20


def _split_csv(value) -> tuple[str, ...]:
    if value is None or value == "":
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    raise TypeError("Expected a list of strings or a comma-separated string")


class RelaySettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    tmux_path: str | None = Field(default=None, validation_alias="RELAY_TMUX_PATH")
    data_dir: Path = Field(default=Path("~/.tmux-relay"), validation_alias="RELAY_DATA_DIR")
    working_dir: Path = Field(default=Path("."), validation_alias="RELAY_WORKING_DIR")
    session_prefix: str = Field(default="relay", validation_alias="RELAY_SESSION_PREFIX")
    assistant_command: str = Field(
        default="claude --dangerously-skip-permissions",
        validation_alias="RELAY_ASSISTANT_COMMAND",
    )
    idle_pattern: str = Field(default=DEFAULT_IDLE_PATTERN, validation_alias="RELAY_IDLE_PATTERN")
    busy_patterns: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("esc to interrupt",), validation_alias="RELAY_BUSY_PATTERNS"
    )
    poll_interval: float = Field(default=2.0, validation_alias="RELAY_POLL_INTERVAL")
    stabilize_timeout: float = Field(default=10.0, validation_alias="RELAY_STABILIZE_TIMEOUT")
    stabilize_interval: float = Field(default=1.0, validation_alias="RELAY_STABILIZE_INTERVAL")
    stable_checks: int = Field(default=2, validation_alias="RELAY_STABILIZE_CHECKS")
    ready_timeout: float = Field(default=45.0, validation_alias="RELAY_READY_TIMEOUT")
    startup_grace: float = Field(default=5.0, validation_alias="RELAY_STARTUP_GRACE")
    cleanup_interval_hours: float = Field(
        default=6.0, validation_alias="RELAY_CLEANUP_INTERVAL_HOURS"
    )
    max_session_age_hours: float = Field(
        default=24.0, validation_alias="RELAY_MAX_SESSION_AGE_HOURS"
    )
    channels_path: Path | None = Field(default=None, validation_alias="RELAY_CHANNELS_PATH")
    whitelist: Annotated[tuple[str, ...], NoDecode] = Field(default=(), validation_alias="RELAY_WHITELIST")
    channel_id: str | None = Field(default=None, validation_alias="RELAY_CHANNEL_ID")
    notify_subagent_waiting: bool = Field(
        default=False, validation_alias="RELAY_NOTIFY_SUBAGENT_WAITING"
    )
    log_level: str = Field(default="INFO", validation_alias="RELAY_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "RELAY_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("busy_patterns", "whitelist", mode="before")
    @classmethod
    def _parse_csv(cls, value):
        return _split_csv(value)

    @field_validator("idle_pattern")
    @classmethod
    def _validate_idle_pattern(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("RELAY_IDLE_PATTERN must not be empty")
        return value

    @field_validator("session_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized or not normalized.replace("-", "").isalnum():
            raise ValueError("RELAY_SESSION_PREFIX must be alphanumeric (hyphens allowed)")
        if len(normalized) > MAX_SESSION_PREFIX_LENGTH:
            raise ValueError(
                f"RELAY_SESSION_PREFIX must be at most {MAX_SESSION_PREFIX_LENGTH} characters"
            )
        return normalized

    @field_validator("stable_checks")
    @classmethod
    def _validate_stable_checks(cls, value: int) -> int:
        if value < 1:
            raise ValueError("RELAY_STABILIZE_CHECKS must be >= 1")
        return value

    @property
    def mappings_path(self) -> Path:
        return self.data_dir / "thread-mappings.json"

    @property
    def queue_path(self) -> Path:
        return self.data_dir / "relay-state.json"

    @property
    def tokens_path(self) -> Path:
        return self.data_dir / "reply-tokens.json"

    @property
    def subagents_path(self) -> Path:
        return self.data_dir / "subagent-activities.json"

    @property
    def resolved_channels_path(self) -> Path:
        return self.channels_path or self.data_dir / "channels.yaml"


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Return cached settings instance."""

    settings = RelaySettings()
    settings.data_dir = settings.data_dir.expanduser().resolve()
    settings.working_dir = settings.working_dir.expanduser().resolve()
    if settings.channels_path is not None:
        settings.channels_path = settings.channels_path.expanduser().resolve()
    return settings


__all__ = ["DEFAULT_IDLE_PATTERN", "RelaySettings", "get_settings"]
