"""Fan notifications out to the configured channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .channels.base import Notification, NotificationChannel, NotificationMetadata, NotificationType
from .storage.subagents import SubagentTracker
from .storage.tokens import ReplyTokenStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChannelResult:
    name: str
    success: bool
    error: str | None = None


@dataclass(slots=True)
class DispatchResult:
    success: bool
    results: list[ChannelResult] = field(default_factory=list)
    suppressed: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "suppressed": self.suppressed,
            "results": [
                {"name": result.name, "success": result.success, "error": result.error}
                for result in self.results
            ],
        }


class NotificationDispatcher:
    """Send a notification to every enabled channel independently.

    Waiting notifications that come from subagent activity are buffered in the
    tracker instead of being sent, unless ``notify_subagent_waiting`` is set.
    The buffer is folded into the next completed notification and cleared.
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        *,
        tracker: SubagentTracker | None = None,
        token_store: ReplyTokenStore | None = None,
        notify_subagent_waiting: bool = False,
        project: str = "",
    ) -> None:
        self._channels = list(channels)
        self._tracker = tracker
        self._token_store = token_store
        self._notify_subagent_waiting = notify_subagent_waiting
        self._project = project

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    async def notify(
        self,
        type: NotificationType,
        metadata: dict[str, Any] | NotificationMetadata | None = None,
        *,
        subagent: bool = False,
        project: str | None = None,
    ) -> DispatchResult:
        notification = Notification.build(type, metadata, project=project or self._project)
        session = notification.metadata.tmux_session

        if type == "waiting" and subagent and not self._notify_subagent_waiting:
            if self._tracker is not None and session:
                self._tracker.add_activity(
                    session,
                    description=notification.metadata.user_question or "Subagent activity",
                    details={
                        "userQuestion": notification.metadata.user_question,
                        "claudeResponse": notification.metadata.claude_response,
                    },
                )
            logger.info("Suppressed subagent waiting notification", extra={"session": session})
            return DispatchResult(success=True, suppressed=True)

        if type == "completed" and self._tracker is not None and session:
            summary = self._tracker.summarize(session)
            if summary:
                notification.metadata.subagent_activities = summary
            self._tracker.clear(session)

        if self._token_store is not None and session:
            token = self._token_store.issue(
                session, metadata={"threadId": notification.metadata.thread_id}
            )
            notification.metadata.reply_token = token.token

        results: list[ChannelResult] = []
        for channel in self._channels:
            if not channel.enabled:
                continue
            try:
                delivered = bool(await channel.send(notification))
                results.append(ChannelResult(channel.name, delivered))
            except Exception as exc:
                logger.exception("Channel send failed", extra={"channel": channel.name})
                results.append(ChannelResult(channel.name, False, str(exc)))

        succeeded = sum(1 for result in results if result.success)
        if results and not succeeded:
            logger.error("All notification channels failed", extra={"type": type, "session": session})
        else:
            logger.info(
                "Notification dispatched",
                extra={"type": type, "session": session, "succeeded": succeeded, "total": len(results)},
            )
        return DispatchResult(success=succeeded > 0, results=results)


__all__ = ["ChannelResult", "DispatchResult", "NotificationDispatcher"]
