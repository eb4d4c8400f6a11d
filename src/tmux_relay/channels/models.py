"""Channel configuration models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ChannelConfig(BaseModel):
    """Configuration for one notification channel."""

    type: str = Field(..., description="Channel implementation, e.g. console or outbox.")
    enabled: bool = Field(default=True, description="Disabled channels are skipped by the dispatcher.")
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Implementation specific options passed to the channel.",
    )

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("Channel type must not be empty")
        return normalized

    @field_validator("options", mode="before")
    @classmethod
    def _ensure_mapping(cls, value: Any):
        if value is None:
            return {}
        return value


class ChannelsDocument(BaseModel):
    channels: dict[str, ChannelConfig] = Field(default_factory=dict)


__all__ = ["ChannelConfig", "ChannelsDocument"]
