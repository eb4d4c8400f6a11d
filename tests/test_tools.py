from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from tmux_relay.bridge import RelayError, RelayResult
from tmux_relay.storage import CommandQueue, CommandStatus, RelayCommand
from tmux_relay.tools import register_tools


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, message, extra=None):
        self.records.append(("info", message, extra or {}))

    def error(self, message, extra=None):
        self.records.append(("error", message, extra or {}))

    def debug(self, message, extra=None):
        self.records.append(("debug", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = StubLogger()


class StubBridge:
    def __init__(self, queue: CommandQueue) -> None:
        self.queue = queue
        self.messages: list[tuple[str, str, str, str | None]] = []
        self.cleaned: list[str] = []
        self.fail_with: str | None = None

    async def handle_message(self, channel_id, thread_ts, text, *, user_id=None):
        if self.fail_with:
            raise RelayError(self.fail_with)
        self.messages.append((channel_id, thread_ts, text, user_id))
        return RelayResult("relay-C1-1-0-abcdef12", is_new=True, message="Started")

    async def relay_reply(self, token, text):
        return RelayResult("relay-C1-1-0-abcdef12", message=f"Reply sent via {token}")

    def session_status(self, external_id):
        return {"thread": external_id, "active": False, "session_name": None}

    async def cleanup_session(self, external_id):
        self.cleaned.append(external_id)
        return True

    def list_sessions(self):
        return [{"thread": "C1:1.0", "session_name": "relay-C1-1-0-abcdef12"}]

    def cleanup_stale(self):
        return 2

    def queue_command(self, command, *, session_name=None):
        return self.queue.enqueue(command, session_name=session_name)

    async def run_queued(self, session_name):
        processed: list[RelayCommand] = []
        for entry in self.queue.pending():
            processed.append(self.queue.mark(entry.id, CommandStatus.COMPLETED))
        return processed


def _setup(tmp_path: Path):
    queue = CommandQueue(
        tmp_path / "relay-state.json",
        clock=lambda: datetime(2024, 5, 1, tzinfo=timezone.utc),
    )
    bridge = StubBridge(queue)
    server = StubServer()
    handles = register_tools(server, bridge=bridge)
    return server, handles, bridge


def test_all_tools_registered(tmp_path: Path) -> None:
    server, handles, _ = _setup(tmp_path)

    assert sorted(server._tools) == [
        "cleanup_session",
        "cleanup_stale",
        "list_commands",
        "list_sessions",
        "queue_command",
        "relay_prompt",
        "relay_reply",
        "run_queued_commands",
        "session_status",
    ]
    assert handles.relay_prompt.name == "relay_prompt"


def test_relay_prompt_logs_through_context(tmp_path: Path) -> None:
    _, handles, bridge = _setup(tmp_path)
    context = StubContext()

    result = asyncio.run(
        handles.relay_prompt.fn("C1", "1.0", "build it", user_id="U1", context=context)
    )

    assert result["session_name"] == "relay-C1-1-0-abcdef12"
    assert result["is_new"] is True
    assert bridge.messages == [("C1", "1.0", "build it", "U1")]
    assert context.logger.records[0][:2] == ("info", "Relayed message")


def test_relay_prompt_error_is_logged_and_raised(tmp_path: Path) -> None:
    _, handles, bridge = _setup(tmp_path)
    bridge.fail_with = "Failed to send message to assistant: boom"
    context = StubContext()

    with pytest.raises(RelayError, match="boom"):
        asyncio.run(handles.relay_prompt.fn("C1", "1.0", "hello", context=context))

    level, message, extra = context.logger.records[0]
    assert (level, message) == ("error", "Relay failed")
    assert "boom" in extra["error"]


def test_session_tools(tmp_path: Path) -> None:
    _, handles, bridge = _setup(tmp_path)

    assert handles.session_status.fn("C1", "1.0")["thread"] == "C1:1.0"
    assert asyncio.run(handles.cleanup_session.fn("C1", "1.0")) == {"removed": True}
    assert bridge.cleaned == ["C1:1.0"]
    assert handles.list_sessions.fn()["count"] == 1
    assert handles.cleanup_stale.fn() == {"removed": 2}
    reply = asyncio.run(handles.relay_reply.fn("ABCD1234", "yes"))
    assert reply["message"] == "Reply sent via ABCD1234"


def test_command_queue_tools(tmp_path: Path) -> None:
    _, handles, _ = _setup(tmp_path)

    queued = handles.queue_command.fn("make test", session_name="relay-a")
    assert queued["status"] == "pending"
    assert queued["sessionName"] == "relay-a"

    listed = handles.list_commands.fn(status="pending")
    assert listed["count"] == 1
    assert listed["commands"][0]["id"] == queued["id"]

    ran = asyncio.run(handles.run_queued_commands.fn("relay-a"))
    assert ran["processed"][0]["status"] == "completed"
    assert handles.list_commands.fn(status="pending")["count"] == 0
    assert handles.list_commands.fn()["count"] == 1


def test_list_commands_rejects_unknown_status(tmp_path: Path) -> None:
    _, handles, _ = _setup(tmp_path)

    with pytest.raises(ValueError):
        handles.list_commands.fn(status="exploded")
