from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path
from typing import Callable

import pytest

from tmux_relay.bridge import HELP_TEXT, RelayBridge, RelayError, RelayUnauthorizedError
from tmux_relay.channels import Notification, NotificationChannel
from tmux_relay.dispatcher import NotificationDispatcher
from tmux_relay.injector import CommandInjector
from tmux_relay.monitor import SessionRegistry, SessionState
from tmux_relay.storage import (
    CommandQueue,
    CommandStatus,
    ReplyTokenStore,
    ThreadSessionStore,
    derive_session_name,
)
from tmux_relay.tmux import ContentReader, FakeTmuxClient

RULE = "─" * 60
BOX = f"{RULE}\n> \n{RULE}\n"
READY = f"Welcome to the assistant\n\n{BOX}"
THREAD = "C1:1700.1"


class AssistantSimulator(FakeTmuxClient):
    """Fake tmux whose sessions run a scripted assistant.

    Launching the assistant draws the prompt box. Each prompt shows a busy
    screen for one capture, then the answer.
    """

    def __init__(self, assistant_command: str = "claude", answer: str = "All done.") -> None:
        super().__init__()
        self.assistant_command = assistant_command
        self.answer = answer
        self.pending: dict[str, str] = {}

    def send_keys(self, name: str, *keys: str, literal: bool = False) -> None:
        pane = self.panes.get(name)
        before = len(pane.executed) if pane else 0
        super().send_keys(name, *keys, literal=literal)
        for command in self.panes[name].executed[before:]:
            if command == self.assistant_command:
                self.set_content(name, READY)
                continue
            self.set_content(name, f"> {command}\n\n✻ Working… (esc to interrupt)\n\n{BOX}")
            self.pending[name] = f"> {command}\n\n⏺ {self.answer}\n\n{BOX}"

    def capture_pane(self, name: str, lines: int = 1000) -> str:
        output = super().capture_pane(name, lines)
        answer = self.pending.pop(name, None)
        if answer is not None:
            self.set_content(name, answer)
        return output


class RecordingChannel(NotificationChannel):
    type_name = "recording"

    def __init__(self, name: str = "recording") -> None:
        super().__init__(name)
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


async def _wait_until(predicate: Callable[[], bool], attempts: int = 5000) -> bool:
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


def make_bridge(tmp_path: Path, client: FakeTmuxClient | None = None, **options):
    client = client or AssistantSimulator()
    clock = FakeClock()
    registry = SessionRegistry(
        ContentReader(client),
        poll_interval=1.0,
        startup_grace=30.0,
        clock=clock,
        sleep=clock.sleep,
    )
    tokens_issued = count(1)
    tokens = ReplyTokenStore(
        tmp_path / "reply-tokens.json",
        token_factory=lambda: f"TOKEN{next(tokens_issued):03d}",
    )
    channel = RecordingChannel()
    bridge = RelayBridge(
        client=client,
        store=ThreadSessionStore(tmp_path / "thread-mappings.json", client, working_dir=tmp_path),
        registry=registry,
        injector=CommandInjector(client, sleep=clock.sleep, clock=clock),
        dispatcher=NotificationDispatcher([channel], token_store=tokens),
        queue=CommandQueue(tmp_path / "relay-state.json"),
        tokens=tokens,
        assistant_command="claude",
        ready_timeout=5.0,
        **options,
    )
    return bridge, client, channel


def test_new_thread_round_trip(tmp_path: Path) -> None:
    bridge, client, channel = make_bridge(tmp_path)
    session_name = derive_session_name(THREAD)

    async def scenario() -> None:
        result = await bridge.handle_message("C1", "1700.1", "What is 2 + 2?")
        assert result.is_new
        assert result.session_name == session_name
        assert result.message == f"Started new assistant session `{session_name}`: What is 2 + 2?"

        assert await _wait_until(lambda: len(channel.sent) == 1)
        assert bridge.registry.state(session_name) is SessionState.COMPLETED

        follow_up = await bridge.handle_message("C1", "1700.1", "And 3 + 3?")
        assert not follow_up.is_new
        assert follow_up.message.startswith("Message sent to assistant")
        assert await _wait_until(lambda: len(channel.sent) == 2)

        await bridge.shutdown()

    asyncio.run(scenario())

    first = channel.sent[0].metadata
    assert first.user_question == "What is 2 + 2?"
    assert first.claude_response == "All done."
    assert first.thread_id == THREAD
    assert first.tmux_session == session_name
    assert first.reply_token == "TOKEN001"
    assert channel.sent[1].metadata.user_question == "And 3 + 3?"
    assert client.panes[session_name].executed == [
        "claude",
        "User request: What is 2 + 2?",
        "User request: And 3 + 3?",
    ]
    assert bridge.last_dispatch is not None and bridge.last_dispatch.success


def test_reply_token_routes_to_session(tmp_path: Path) -> None:
    bridge, client, channel = make_bridge(tmp_path)

    async def scenario() -> None:
        await bridge.handle_message("C1", "1700.1", "Start the build")
        assert await _wait_until(lambda: len(channel.sent) == 1)

        result = await bridge.relay_reply("token001", "yes, continue")
        assert result.message.startswith("Reply sent to")
        assert await _wait_until(lambda: len(channel.sent) == 2)
        await bridge.shutdown()

    asyncio.run(scenario())

    assert channel.sent[1].metadata.thread_id == THREAD
    assert channel.sent[1].metadata.user_question == "yes, continue"


def test_unknown_reply_token(tmp_path: Path) -> None:
    bridge, _, _ = make_bridge(tmp_path)

    with pytest.raises(RelayError, match="Unknown or expired"):
        asyncio.run(bridge.relay_reply("NOPE0000", "hello"))


def test_send_failure_on_existing_session_keeps_mapping(tmp_path: Path) -> None:
    bridge, client, _ = make_bridge(tmp_path)
    lookup = bridge.store.get_or_create(THREAD)
    client.failing.add("send-keys")

    async def scenario() -> None:
        try:
            with pytest.raises(RelayError) as excinfo:
                await bridge.handle_message("C1", "1700.1", "hello")
        finally:
            await bridge.shutdown()
        message = str(excinfo.value)
        assert "simulated" in message
        assert lookup.session_name in message

    asyncio.run(scenario())

    assert THREAD in bridge.store.mappings
    assert lookup.session_name not in bridge.registry.callbacks


def test_failed_launch_tears_down_new_session(tmp_path: Path) -> None:
    bridge, client, _ = make_bridge(tmp_path)
    client.failing.add("send-keys")

    async def scenario() -> None:
        try:
            with pytest.raises(RelayError, match="Failed to send message to assistant"):
                await bridge.handle_message("C1", "1700.1", "hello")
        finally:
            await bridge.shutdown()

    asyncio.run(scenario())

    assert bridge.store.mappings == {}
    assert client.panes == {}


def test_session_create_failure(tmp_path: Path) -> None:
    bridge, client, _ = make_bridge(tmp_path)
    client.failing.add("new-session")

    with pytest.raises(RelayError, match="Failed to start assistant session"):
        asyncio.run(bridge.handle_message("C1", "1700.1", "hello"))


def test_unauthorized_sender(tmp_path: Path) -> None:
    bridge, client, _ = make_bridge(tmp_path, whitelist=("U1",))

    with pytest.raises(RelayUnauthorizedError, match="not in whitelist"):
        asyncio.run(bridge.handle_message("C9", "1.0", "hello", user_id="U2"))

    assert client.panes == {}


def test_builtin_commands(tmp_path: Path) -> None:
    bridge, client, _ = make_bridge(tmp_path)

    async def scenario() -> None:
        help_result = await bridge.handle_message("C1", "1700.1", "help")
        assert help_result.message == HELP_TEXT

        missing = await bridge.handle_message("C1", "1700.1", "/STATUS")
        assert missing.message == "No active session for this thread."

        lookup = bridge.store.get_or_create(THREAD)
        status = await bridge.handle_message("C1", "1700.1", "status")
        assert status.command == "status"
        assert f"Session: {lookup.session_name}" in status.message
        assert "Process: zsh" in status.message

        cleanup = await bridge.handle_message("C1", "1700.1", "/cleanup")
        assert cleanup.message == "Session terminated."
        assert lookup.session_name not in client.panes

        nothing = await bridge.handle_message("C1", "1700.1", "   ")
        assert nothing.message == "Nothing to relay."

    asyncio.run(scenario())


def test_run_queued_commands(tmp_path: Path) -> None:
    bridge, client, _ = make_bridge(tmp_path)
    lookup = bridge.store.get_or_create(THREAD)
    mine = bridge.queue_command("make test", session_name=lookup.session_name)
    other = bridge.queue_command("deploy", session_name="relay-other")
    anyone = bridge.queue_command("git status")

    async def scenario():
        processed = await bridge.run_queued(lookup.session_name)
        failed = await bridge.run_queued("relay-gone")
        await bridge.shutdown()
        return processed, failed

    processed, failed = asyncio.run(scenario())

    assert [entry.id for entry in processed] == [mine.id, anyone.id]
    assert all(entry.status is CommandStatus.COMPLETED for entry in processed)
    assert client.panes[lookup.session_name].executed == ["make test", "git status"]
    assert failed == []
    assert bridge.queue.get(other.id).status is CommandStatus.PENDING


def test_run_queued_batch_notifies_on_completion(tmp_path: Path) -> None:
    bridge, client, channel = make_bridge(tmp_path)
    lookup = bridge.store.get_or_create(THREAD)
    bridge.queue_command("make test", session_name=lookup.session_name)
    bridge.queue_command("make lint", session_name=lookup.session_name)

    async def scenario() -> None:
        await bridge.run_queued(lookup.session_name)
        assert await _wait_until(lambda: len(channel.sent) == 1)
        await bridge.shutdown()

    asyncio.run(scenario())

    metadata = channel.sent[0].metadata
    assert metadata.thread_id == THREAD
    assert metadata.tmux_session == lookup.session_name
    assert metadata.user_question == "make lint"
    assert metadata.claude_response == "All done."


def test_run_queued_marks_failures(tmp_path: Path) -> None:
    bridge, _, _ = make_bridge(tmp_path)
    entry = bridge.queue_command("make test")

    async def scenario():
        processed = await bridge.run_queued("relay-gone")
        await bridge.shutdown()
        return processed

    processed = asyncio.run(scenario())

    assert processed[0].id == entry.id
    assert processed[0].status is CommandStatus.FAILED
    assert "relay-gone" in processed[0].error


def test_stale_cleanup_stops_monitoring(tmp_path: Path) -> None:
    bridge, client, _ = make_bridge(tmp_path)
    lookup = bridge.store.get_or_create(THREAD)

    async def scenario() -> None:
        bridge.registry.start_monitoring(lookup.session_name)
        client.panes.pop(lookup.session_name)
        assert bridge.cleanup_stale() == 1
        assert not bridge.registry.is_monitoring(lookup.session_name)
        await bridge.shutdown()

    asyncio.run(scenario())

    assert bridge.list_sessions() == []


def test_periodic_cleanup_runs_immediately(tmp_path: Path) -> None:
    client = AssistantSimulator()
    client.add_session("relay-old")
    client.add_session("relay-fresh")
    now = datetime.now(timezone.utc)
    (tmp_path / "thread-mappings.json").write_text(
        json.dumps(
            {
                "C1:old": {
                    "sessionName": "relay-old",
                    "workingDir": str(tmp_path),
                    "createdAt": (now - timedelta(hours=48)).isoformat(),
                },
                "C1:fresh": {
                    "sessionName": "relay-fresh",
                    "workingDir": str(tmp_path),
                    "createdAt": now.isoformat(),
                },
            }
        )
    )
    bridge, _, _ = make_bridge(tmp_path, client, max_session_age_hours=24)

    async def scenario() -> None:
        bridge.start_periodic_cleanup()
        assert await _wait_until(lambda: "C1:old" not in bridge.store.mappings)
        await bridge.shutdown()

    asyncio.run(scenario())

    assert list(client.panes) == ["relay-fresh"]
    assert [entry["thread"] for entry in bridge.list_sessions()] == ["C1:fresh"]
