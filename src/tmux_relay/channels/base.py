"""Notification payloads and built-in channels."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

NotificationType = Literal["completed", "waiting"]


class NotificationMetadata(BaseModel):
    """Conversation context attached to a notification."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_question: str = Field(default="", alias="userQuestion")
    claude_response: str = Field(default="", alias="claudeResponse")
    tmux_session: str | None = Field(default=None, alias="tmuxSession")
    full_execution_trace: str | None = Field(default=None, alias="fullExecutionTrace")
    reply_token: str | None = Field(default=None, alias="replyToken")
    thread_id: str | None = Field(default=None, alias="threadId")
    subagent_activities: str | None = Field(default=None, alias="subagentActivities")


class Notification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: NotificationType
    project: str = ""
    title: str = ""
    message: str = ""
    metadata: NotificationMetadata = Field(default_factory=NotificationMetadata)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )

    @classmethod
    def build(
        cls,
        type: NotificationType,
        metadata: dict[str, Any] | NotificationMetadata | None = None,
        *,
        project: str = "",
    ) -> "Notification":
        if not isinstance(metadata, NotificationMetadata):
            metadata = NotificationMetadata.model_validate(metadata or {})
        finished = type == "completed"
        return cls(
            type=type,
            project=project,
            title=f"Assistant {'Task Completed' if finished else 'Waiting for Input'}",
            message=f"Assistant has {'completed a task' if finished else 'is waiting for input'}",
            metadata=metadata,
        )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NotificationChannel(ABC):
    """A destination for notifications.

    ``send`` returns True on delivery. Raising is allowed; the dispatcher
    isolates each channel.
    """

    type_name: str = "base"

    def __init__(self, name: str, *, enabled: bool = True, options: dict[str, Any] | None = None) -> None:
        self.name = name
        self.enabled = enabled
        self.options = dict(options or {})

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, enabled={self.enabled})"


class ConsoleChannel(NotificationChannel):
    """Writes notifications to the process log."""

    type_name = "console"

    async def send(self, notification: Notification) -> bool:
        preview = notification.metadata.claude_response[: int(self.options.get("preview_chars", 200))]
        logger.info(
            notification.title or notification.type,
            extra={
                "channel": self.name,
                "type": notification.type,
                "session": notification.metadata.tmux_session,
                "question": notification.metadata.user_question,
                "response_preview": preview,
            },
        )
        return True


class OutboxChannel(NotificationChannel):
    """Appends notifications as JSON lines for an external sender to pick up."""

    type_name = "outbox"

    def __init__(self, name: str, *, enabled: bool = True, options: dict[str, Any] | None = None) -> None:
        super().__init__(name, enabled=enabled, options=options)
        path = self.options.get("path")
        if not path:
            raise ValueError(f"Outbox channel '{name}' requires a 'path' option")
        self.path = Path(path).expanduser()

    async def send(self, notification: Notification) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps({"channel": self.name, **notification.to_document()}, ensure_ascii=False))
            handle.write("\n")
        return True


__all__ = [
    "ConsoleChannel",
    "Notification",
    "NotificationChannel",
    "NotificationMetadata",
    "NotificationType",
    "OutboxChannel",
]
