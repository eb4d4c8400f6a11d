"""Persisted record models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionMapping(BaseModel):
    """Maps an external thread to the tmux session serving it.

    Fields written by other tools are kept and written back unchanged.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    session_name: str = Field(..., alias="sessionName")
    working_dir: str = Field(..., alias="workingDir")
    created_at: datetime = Field(..., alias="createdAt")
    channel_id: str | None = Field(default=None, alias="channelId")
    thread_ts: str | None = Field(default=None, alias="threadTs")

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CommandStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in {CommandStatus.COMPLETED, CommandStatus.FAILED, CommandStatus.CANCELLED}


class RelayCommand(BaseModel):
    """An entry in the relay command queue."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    command: str
    status: CommandStatus = CommandStatus.PENDING
    queued_at: datetime = Field(..., alias="queuedAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    session_name: str | None = Field(default=None, alias="sessionName")
    error: str | None = None

    @field_validator("command")
    @classmethod
    def _validate_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Command must not be empty")
        return value

    @field_validator("queued_at", "completed_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value) if value is not None else None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ReplyToken(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    session_name: str = Field(..., alias="sessionName")
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at", "expires_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SubagentActivity(BaseModel):
    timestamp: datetime
    type: str = "subagent"
    description: str = "Subagent activity"
    details: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "CommandStatus",
    "RelayCommand",
    "ReplyToken",
    "SessionMapping",
    "SubagentActivity",
]
