from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

from tmux_relay.channels import Notification, NotificationChannel
from tmux_relay.dispatcher import NotificationDispatcher
from tmux_relay.storage import ReplyTokenStore, SubagentTracker


class RecordingChannel(NotificationChannel):
    type_name = "recording"

    def __init__(self, name: str, *, enabled: bool = True, result: bool = True) -> None:
        super().__init__(name, enabled=enabled)
        self.result = result
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return self.result


class ExplodingChannel(NotificationChannel):
    type_name = "exploding"

    async def send(self, notification: Notification) -> bool:
        raise ConnectionError("webhook unreachable")


def _clock() -> datetime:
    return datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


METADATA = {
    "userQuestion": "What is 2 + 2?",
    "claudeResponse": "4",
    "tmuxSession": "relay-a",
    "threadId": "C1:1.0",
}


def test_one_failing_channel_does_not_block_others() -> None:
    good = RecordingChannel("good")
    disabled = RecordingChannel("disabled", enabled=False)
    dispatcher = NotificationDispatcher([ExplodingChannel("bad"), good, disabled])

    result = asyncio.run(dispatcher.notify("completed", METADATA))

    assert result.success
    assert [(r.name, r.success) for r in result.results] == [("bad", False), ("good", True)]
    assert result.results[0].error == "webhook unreachable"
    assert good.sent[0].title == "Assistant Task Completed"
    assert good.sent[0].metadata.user_question == "What is 2 + 2?"
    assert disabled.sent == []


def test_all_channels_failing_reports_failure() -> None:
    dispatcher = NotificationDispatcher([ExplodingChannel("bad"), RecordingChannel("no", result=False)])

    result = asyncio.run(dispatcher.notify("waiting", METADATA))

    assert not result.success
    assert result.as_dict()["results"][1] == {"name": "no", "success": False, "error": None}


def test_reply_token_attached(tmp_path: Path) -> None:
    channel = RecordingChannel("good")
    tokens = ReplyTokenStore(tmp_path / "tokens.json", token_factory=lambda: "TOKEN123")
    dispatcher = NotificationDispatcher([channel], token_store=tokens)

    asyncio.run(dispatcher.notify("completed", METADATA))

    assert channel.sent[0].metadata.reply_token == "TOKEN123"
    resolved = tokens.resolve("token123")
    assert resolved.session_name == "relay-a"
    assert resolved.metadata == {"threadId": "C1:1.0"}


def test_subagent_waiting_is_buffered_then_folded(tmp_path: Path) -> None:
    channel = RecordingChannel("good")
    tracker = SubagentTracker(tmp_path / "subagents.json", clock=_clock)
    dispatcher = NotificationDispatcher([channel], tracker=tracker)

    waiting = asyncio.run(
        dispatcher.notify(
            "waiting",
            {"tmuxSession": "relay-a", "userQuestion": "Search the docs"},
            subagent=True,
        )
    )

    assert waiting.suppressed
    assert channel.sent == []

    asyncio.run(dispatcher.notify("completed", METADATA))

    summary = channel.sent[0].metadata.subagent_activities
    assert "subagent (1 activities)" in summary
    assert "- [09:30:00] Search the docs" in summary
    assert tracker.activities("relay-a") == []


def test_subagent_waiting_sent_when_enabled() -> None:
    channel = RecordingChannel("good")
    dispatcher = NotificationDispatcher([channel], notify_subagent_waiting=True)

    result = asyncio.run(dispatcher.notify("waiting", METADATA, subagent=True, project="demo"))

    assert not result.suppressed
    assert channel.sent[0].title == "Assistant Waiting for Input"
    assert channel.sent[0].project == "demo"
